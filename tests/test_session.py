"""AISession state machine, request assembly and history."""

import asyncio
import base64

import pytest

from copilot.errors import (
    BackendError,
    BackendErrorKind,
    EmptyRequest,
    InitializationFailed,
    InvalidSample,
    SessionBusy,
    SessionClosed,
    SessionNotReady,
    StaleChatHandle,
)
from copilot.models import CaptureSample, ImagePart, TextPart
from copilot.profiles import ProfileId
from copilot.session import (
    ANALYZE_SCREEN_PROMPT,
    RESPOND_TO_AUDIO_PROMPT,
    SessionState,
    build_parts,
    decode_image,
)

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"
JPEG_DATA_URL = "data:image/jpeg;base64," + base64.b64encode(JPEG_BYTES).decode()


def run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Request assembly
# ---------------------------------------------------------------------------

class TestBuildParts:

    def test_question_transcript_and_image_in_order(self):
        sample = CaptureSample(image=JPEG_DATA_URL, audio_transcript="they asked about Kafka", captured_at=0)
        parts = build_parts("How do I answer?", sample)
        assert parts == [
            TextPart("How do I answer?"),
            TextPart("Audio transcript: they asked about Kafka"),
            ImagePart(data=JPEG_BYTES, mime_type="image/jpeg"),
        ]

    def test_image_only_gets_screen_instruction(self):
        parts = build_parts(None, CaptureSample(image=JPEG_DATA_URL, audio_transcript=None, captured_at=0))
        assert parts[0] == TextPart(ANALYZE_SCREEN_PROMPT)
        assert isinstance(parts[1], ImagePart)

    def test_transcript_only_gets_audio_instruction(self):
        parts = build_parts("", CaptureSample(image=None, audio_transcript="hello there", captured_at=0))
        assert parts == [TextPart(RESPOND_TO_AUDIO_PROMPT), TextPart("Audio transcript: hello there")]

    @pytest.mark.parametrize("question,sample", [
        (None, None),
        ("   ", None),
        (None, CaptureSample(image=None, audio_transcript=None, captured_at=0)),
        ("", CaptureSample(image="", audio_transcript="  ", captured_at=0)),
    ])
    def test_nothing_to_send(self, question, sample):
        assert build_parts(question, sample) == []


class TestDecodeImage:

    def test_data_url_mime_type_kept(self):
        png = "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
        assert decode_image(png) == ImagePart(data=b"\x89PNG", mime_type="image/png")

    def test_bare_base64_defaults_to_jpeg(self):
        part = decode_image(base64.b64encode(JPEG_BYTES).decode())
        assert part.mime_type == "image/jpeg"
        assert part.data == JPEG_BYTES

    @pytest.mark.parametrize("bad", ["not base64!!", "data:image/jpeg;base64,@@@", "data:image/jpeg;base64,"])
    def test_invalid_image_rejected(self, bad):
        with pytest.raises(InvalidSample):
            decode_image(bad)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestInitialize:

    def test_initialize_opens_profile_chat(self, session, backend):
        run(session.initialize("key", "sales", "Enterprise deal"))
        assert session.state == SessionState.READY
        assert session.profile == ProfileId.SALES
        assert len(backend.opened) == 1
        assert backend.opened[0].system_prompt.endswith("Additional context: Enterprise deal")

    def test_unknown_profile_falls_back(self, session):
        run(session.initialize("key", "nonsense"))
        assert session.profile == ProfileId.INTERVIEW

    def test_rejected_key_raises_initialization_failed(self, session, backend):
        backend.open_error = BackendError(BackendErrorKind.INVALID_KEY, "API key not valid")
        with pytest.raises(InitializationFailed) as exc_info:
            run(session.initialize("bad", "interview"))
        assert exc_info.value.kind == BackendErrorKind.INVALID_KEY
        assert session.state == SessionState.UNINITIALIZED
        assert session.chat_handle is None

    def test_failed_reinitialize_keeps_previous_chat(self, session, backend):
        run(session.initialize("key", "interview"))
        handle = session.chat_handle

        backend.open_error = BackendError(BackendErrorKind.NETWORK_ERROR, "offline")
        with pytest.raises(InitializationFailed):
            run(session.initialize("key", "exam"))

        assert session.chat_handle is handle
        assert not handle.closed
        assert session.profile == ProfileId.INTERVIEW
        assert session.state == SessionState.READY

    def test_unexpected_exception_maps_to_unknown(self, session, backend):
        backend.open_error = RuntimeError("boom")
        with pytest.raises(InitializationFailed) as exc_info:
            run(session.initialize("key", "interview"))
        assert exc_info.value.kind == BackendErrorKind.UNKNOWN


class TestAsk:

    def test_empty_request_makes_no_backend_call(self, session, backend):
        run(session.initialize("key", "interview"))
        with pytest.raises(EmptyRequest):
            run(session.ask())
        with pytest.raises(EmptyRequest):
            run(session.ask("  ", CaptureSample(image=None, audio_transcript=None, captured_at=0)))
        assert backend.calls == []
        assert session.state == SessionState.READY

    def test_empty_request_checked_before_state(self, session, backend):
        with pytest.raises(EmptyRequest):
            run(session.ask())
        assert backend.calls == []

    def test_ask_before_initialize(self, session):
        with pytest.raises(SessionNotReady):
            run(session.ask("hello"))

    def test_successful_turn_recorded(self, session):
        run(session.initialize("key", "meeting"))
        turn = run(session.ask("ping"))
        assert turn.answer_text == "OK"
        assert turn.question == "ping"
        assert turn.profile == "meeting"
        assert session.history() == [turn]

    def test_passive_turn_has_no_question(self, session):
        run(session.initialize("key", "interview"))
        turn = run(session.ask(None, CaptureSample(image=JPEG_DATA_URL, audio_transcript=None, captured_at=0)))
        assert turn.question is None

    def test_busy_rejects_second_ask_then_returns_ready(self, session, backend):

        async def scenario():
            backend.gate = asyncio.Event()
            await session.initialize("key", "interview")
            first = asyncio.create_task(session.ask("first"))
            await asyncio.sleep(0)
            assert session.state == SessionState.BUSY

            with pytest.raises(SessionBusy):
                await session.ask("second")

            backend.gate.set()
            return await first

        turn = run(scenario())
        assert turn.answer_text == "OK"
        assert session.state == SessionState.READY
        assert len(backend.calls) == 1
        assert [t.question for t in session.history()] == ["first"]

    @pytest.mark.parametrize("kind", [
        BackendErrorKind.INVALID_KEY,
        BackendErrorKind.QUOTA_EXCEEDED,
        BackendErrorKind.NETWORK_ERROR,
        BackendErrorKind.BLOCKED,
    ])
    def test_backend_failure_keeps_session_usable(self, session, backend, kind):
        backend.replies = [BackendError(kind, "nope"), "recovered"]
        run(session.initialize("key", "interview"))

        with pytest.raises(BackendError) as exc_info:
            run(session.ask("q1"))
        assert exc_info.value.kind == kind
        assert session.state == SessionState.READY
        assert session.history() == []

        assert run(session.ask("q2")).answer_text == "recovered"

    def test_unexpected_exception_becomes_unknown_backend_error(self, session, backend):
        backend.replies = [RuntimeError("socket exploded")]
        run(session.initialize("key", "interview"))
        with pytest.raises(BackendError) as exc_info:
            run(session.ask("q"))
        assert exc_info.value.kind == BackendErrorKind.UNKNOWN
        assert session.state == SessionState.READY


class TestHistory:

    def test_cap_evicts_oldest_and_stays_chronological(self, session, backend):
        backend.replies = [f"a{i}" for i in range(11)]
        run(session.initialize("key", "interview"))
        for i in range(11):
            run(session.ask(f"q{i}"))

        history = session.history()
        assert len(history) == 10
        assert [t.answer_text for t in history] == [f"a{i}" for i in range(1, 11)]
        assert [t.timestamp for t in history] == sorted(t.timestamp for t in history)

    def test_clear_history(self, session):
        run(session.initialize("key", "interview"))
        run(session.ask("q"))
        session.clear_history()
        assert session.history() == []


class TestProfileSwitch:

    def test_old_handle_is_stale_after_update_profile(self, session):
        run(session.initialize("key", "interview"))
        old = session.chat_handle

        run(session.update_profile("sales", "new context"))

        assert old.closed
        assert session.chat_handle is not old
        assert session.profile == ProfileId.SALES
        assert session.custom_context == "new context"
        with pytest.raises(StaleChatHandle):
            run(old.send([TextPart("hello")]))

    def test_ask_during_reopen_keeps_current_chat(self, session, backend):

        async def scenario():
            await session.initialize("key", "interview")
            old = session.chat_handle
            backend.open_gate = asyncio.Event()
            backend.gate = asyncio.Event()

            switching = asyncio.create_task(session.update_profile("sales"))
            await asyncio.sleep(0)
            asking = asyncio.create_task(session.ask("q"))
            await asyncio.sleep(0)
            assert session.state == SessionState.BUSY

            backend.open_gate.set()
            with pytest.raises(SessionBusy):
                await switching
            backend.gate.set()
            await asking
            return old

        old = run(scenario())
        assert session.chat_handle is old
        assert not old.closed
        assert backend.opened[-1].closed
        assert session.profile == ProfileId.INTERVIEW
        assert session.state == SessionState.READY

    def test_update_profile_requires_initialized_session(self, session):
        with pytest.raises(SessionNotReady):
            run(session.update_profile("sales"))


class TestClose:

    def test_closed_session_rejects_everything(self, session):
        run(session.initialize("key", "interview"))
        handle = session.chat_handle
        session.close()

        assert session.state == SessionState.CLOSED
        assert handle.closed
        with pytest.raises(SessionClosed):
            run(session.ask("q"))
        with pytest.raises(SessionClosed):
            run(session.initialize("key", "interview"))
