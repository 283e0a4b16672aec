"""AI session: one profile-scoped conversation with the generative backend."""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from collections import deque
from enum import Enum
from typing import Callable, Deque, List, Optional, Union

from copilot import profiles
from copilot.backends.base_backend import BaseBackend, ChatHandle
from copilot.config import Config
from copilot.errors import (
    BackendError,
    BackendErrorKind,
    EmptyRequest,
    InitializationFailed,
    InvalidSample,
    SessionBusy,
    SessionClosed,
    SessionNotReady,
)
from copilot.models import CaptureSample, ConversationTurn, ImagePart, Part, TextPart
from copilot.profiles import ProfileId

logger = logging.getLogger(__name__)


# Instructions used when a sample arrives without a user question
ANALYZE_SCREEN_PROMPT = "Analyze this screen and provide relevant assistance."
RESPOND_TO_AUDIO_PROMPT = "Provide a helpful response to what was just said."

TRANSCRIPT_LABEL = "Audio transcript"

_DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+);base64,", re.IGNORECASE)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    BUSY = "busy"
    CLOSED = "closed"


def decode_image(image: str) -> ImagePart:
    """Decode a base64 image (optionally a data URL) into an inline image part."""
    mime_type = "image/jpeg"
    match = _DATA_URL_RE.match(image)
    if match:
        mime_type = match.group(1).lower()
        image = image[match.end():]
    try:
        data = base64.b64decode(image, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidSample() from e
    if not data:
        raise InvalidSample()
    return ImagePart(data=data, mime_type=mime_type)


def build_parts(question: Optional[str], sample: Optional[CaptureSample]) -> List[Part]:
    """Assemble the multimodal request for one turn.

    Order: question (or a default instruction), labelled transcript, image.
    Returns an empty list when there is nothing to send.
    """
    question = (question or "").strip()
    transcript = ((sample.audio_transcript if sample else None) or "").strip()
    image = sample.image if sample else None

    parts: List[Part] = []
    if question:
        parts.append(TextPart(question))
    elif image:
        parts.append(TextPart(ANALYZE_SCREEN_PROMPT))
    elif transcript:
        parts.append(TextPart(RESPOND_TO_AUDIO_PROMPT))

    if transcript:
        parts.append(TextPart(f"{TRANSCRIPT_LABEL}: {transcript}"))
    if image:
        parts.append(decode_image(image))
    return parts


class AISession:
    """Owns the active chat handle, the profile it was built from, and the turn history.

    Uninitialized -> Ready -> Busy -> Ready ... -> Closed. At most one backend
    request is outstanding; a concurrent ``ask`` fails with SessionBusy.
    """

    def __init__(
        self,
        backend: BaseBackend,
        history_limit: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self._clock = clock
        self._history: Deque[ConversationTurn] = deque(maxlen=history_limit or Config.HISTORY_LIMIT)
        self._state = SessionState.UNINITIALIZED
        self._api_key: Optional[str] = None
        self._profile: Optional[ProfileId] = None
        self._custom_context = ""
        self._handle: Optional[ChatHandle] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def profile(self) -> Optional[ProfileId]:
        return self._profile

    @property
    def custom_context(self) -> str:
        return self._custom_context

    @property
    def chat_handle(self) -> Optional[ChatHandle]:
        return self._handle

    async def initialize(self, api_key: str, profile_id: Union[str, ProfileId, None], custom_context: str = "") -> None:
        """Open a new chat for the given profile and context.

        The previous handle (if any) is only torn down once the new one is open,
        so a failed re-initialization leaves the session as it was.

        Raises:
            InitializationFailed: The backend rejected the key or was unreachable.
            SessionBusy: A request is in flight.
            SessionClosed: The session was closed.
        """
        if self._state == SessionState.CLOSED:
            raise SessionClosed()
        if self._state == SessionState.BUSY:
            raise SessionBusy()

        profile = profiles.resolve(profile_id)
        system_prompt = profile.render(custom_context)

        try:
            handle = await self.backend.open_chat(api_key, system_prompt)
        except BackendError as e:
            raise InitializationFailed(e.kind, e.detail) from e
        except Exception as e:
            raise InitializationFailed(BackendErrorKind.UNKNOWN, str(e)) from e

        if self._state == SessionState.CLOSED:
            handle.close()
            raise SessionClosed()
        if self._state == SessionState.BUSY:
            # An ask started on the old chat while this one was opening
            handle.close()
            raise SessionBusy()

        old_handle = self._handle
        self._handle = handle
        self._api_key = api_key
        self._profile = profile.id
        self._custom_context = custom_context or ""
        self._state = SessionState.READY
        if old_handle is not None:
            old_handle.close()

        logger.info("AI session ready (profile=%s, backend=%s)", profile.id.value, self.backend.name)

    async def ask(self, question: Optional[str] = None, sample: Optional[CaptureSample] = None) -> ConversationTurn:
        """Send one question and/or capture sample and record the answer.

        Raises:
            EmptyRequest: Neither a question nor sample content was supplied.
            SessionBusy: Another request is outstanding.
            SessionNotReady: ``initialize`` has not succeeded yet.
            BackendError: The exchange failed; the session stays usable.
        """
        parts = build_parts(question, sample)
        if not parts:
            raise EmptyRequest()

        if self._state == SessionState.CLOSED:
            raise SessionClosed()
        if self._state == SessionState.BUSY:
            raise SessionBusy()
        if self._state != SessionState.READY or self._handle is None:
            raise SessionNotReady()

        handle = self._handle
        profile = self._profile
        self._state = SessionState.BUSY
        try:
            answer = await handle.send(parts)
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(BackendErrorKind.UNKNOWN, str(e)) from e
        finally:
            if self._state == SessionState.BUSY:
                self._state = SessionState.READY

        turn = ConversationTurn(
            timestamp=self._clock(),
            question=(question or "").strip() or None,
            answer_text=answer,
            profile=profile.value,
        )
        self._history.append(turn)
        return turn

    async def update_profile(self, profile_id: Union[str, ProfileId, None], custom_context: str = "") -> None:
        """Replace the chat with one built for a new profile/context. Prior turns are not carried over."""
        if self._api_key is None:
            raise SessionNotReady()
        await self.initialize(self._api_key, profile_id, custom_context)

    def history(self) -> List[ConversationTurn]:
        """Retained turns, oldest first."""
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        self._state = SessionState.CLOSED
