"""
Shared pytest fixtures for the Overlay Copilot test suite.

Provides a scripted fake AI backend, fake video/audio tracks and a headless
overlay so tests run without network access, a display, or audio hardware.
"""

import itertools
import sys
from pathlib import Path
from typing import List, Optional

import pytest
from PIL import Image

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Import after path fix
from copilot.backends.base_backend import BaseBackend, ChatHandle
from copilot.capture.sources import CaptureSource, SourceInfo, StreamHandle
from copilot.capture.transcript import TranscriptBuffer
from copilot.controller import SessionController
from copilot.errors import StreamAcquisitionFailed
from copilot.notifications import Notifier
from copilot.overlay import LocalTransport, OverlayCoordinator
from copilot.session import AISession
from copilot.settings import SettingsStore


# ---------------------------------------------------------------------------
# AI backend
# ---------------------------------------------------------------------------

class FakeChatHandle(ChatHandle):

    def __init__(self, system_prompt: str, backend: "FakeBackend"):
        super().__init__(system_prompt)
        self.backend = backend

    async def _send(self, parts: list) -> str:
        self.backend.calls.append(parts)
        if self.backend.gate is not None:
            await self.backend.gate.wait()
        reply = self.backend.replies.pop(0) if self.backend.replies else self.backend.default_reply
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeBackend(BaseBackend):
    """Scripted backend. ``replies`` are consumed in order (exceptions are raised)."""

    name = "fake"

    def __init__(self, replies=None, default_reply: str = "OK"):
        self.replies: list = list(replies or [])
        self.default_reply = default_reply
        self.calls: List[list] = []
        self.opened: List[FakeChatHandle] = []
        self.open_error: Optional[Exception] = None
        self.gate = None  # asyncio.Event holding every send until set
        self.open_gate = None  # same, for open_chat

    async def open_chat(self, api_key: str, system_prompt: str) -> ChatHandle:
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error
        handle = FakeChatHandle(system_prompt, self)
        self.opened.append(handle)
        return handle


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

class FakeVideoTrack:
    kind = "video"

    def __init__(self, size=(64, 48), color=(255, 0, 0)):
        self.size = size
        self.color = color
        self.stopped = 0

    def grab(self) -> Image.Image:
        return Image.new("RGB", self.size, self.color)

    def stop(self) -> None:
        self.stopped += 1


class FakeAudioTrack:
    kind = "audio"

    def __init__(self, level: float = 0.25):
        self.level = level
        self.stopped = 0

    def start(self) -> "FakeAudioTrack":
        return self

    def stop(self) -> None:
        self.stopped += 1


class FakeCaptureSource(CaptureSource):
    """Hands out streams over fake tracks; ``fail_with`` makes acquire raise."""

    def __init__(self):
        super().__init__(audio_factory=FakeAudioTrack)
        self.fail_with: Optional[Exception] = None
        self.handles: List[StreamHandle] = []

    def list_sources(self) -> List[SourceInfo]:
        return [SourceInfo(id="screen:1", name="Screen 1", thumbnail="data:image/png;base64,AAAA")]

    def acquire(self, source_id: str) -> StreamHandle:
        if self.fail_with is not None:
            raise self.fail_with
        if source_id != "screen:1":
            raise StreamAcquisitionFailed(f"Unknown capture source '{source_id}'")
        handle = StreamHandle(source_id, FakeVideoTrack(), FakeAudioTrack())
        self.handles.append(handle)
        return handle


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    """Deterministic clock: 1000.0, 1001.0, 1002.0, ..."""
    counter = itertools.count(1000)
    return lambda: float(next(counter))


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def session(backend, clock):
    return AISession(backend, history_limit=10, clock=clock)


@pytest.fixture
def settings_store(tmp_path):
    store = SettingsStore(tmp_path / "overlay-copilot" / "settings.json")
    store.load()
    return store


@pytest.fixture
def transport():
    return LocalTransport()


@pytest.fixture
def renderer(transport):
    return transport.display.renderer


@pytest.fixture
def coordinator(transport):
    return OverlayCoordinator(transport)


@pytest.fixture
def capture():
    return FakeCaptureSource()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def controller(session, coordinator, capture, settings_store, notifier):
    return SessionController(
        session=session,
        overlay=coordinator,
        capture=capture,
        settings_store=settings_store,
        notifier=notifier,
        transcripts=TranscriptBuffer(),
    )
