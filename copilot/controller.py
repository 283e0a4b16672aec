"""Top-level orchestration: capture -> AI session -> overlay."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from copilot.capture.sampler import FrameSampler
from copilot.capture.sources import CaptureSource, SourceInfo, StreamHandle
from copilot.capture.transcript import TranscriptBuffer
from copilot.config import Config
from copilot.errors import (
    AssistError,
    BackendErrorKind,
    InitializationFailed,
    SessionBusy,
    SettingsNotSaved,
    StreamAcquisitionFailed,
)
from copilot.models import CaptureSample, ConversationTurn, OverlayEvent, OverlayState, TranscriptEvent
from copilot.notifications import Notifier
from copilot.overlay.coordinator import OverlayCoordinator
from copilot.profiles import ProfileId
from copilot.session import AISession, SessionState
from copilot.settings import Settings, SettingsStore

logger = logging.getLogger(__name__)


class SessionController:
    """
    Binds sampler output to AISession input and AISession output to the overlay.

    start: initialize session -> show overlay -> (optional) acquire + sample
    stop:  stop sampler -> hide overlay -> release stream
    """

    def __init__(
        self,
        session: AISession,
        overlay: OverlayCoordinator,
        capture: CaptureSource,
        settings_store: SettingsStore,
        notifier: Optional[Notifier] = None,
        transcripts: Optional[TranscriptBuffer] = None,
    ):
        self.session = session
        self.overlay = overlay
        self.capture = capture
        self.settings_store = settings_store
        self.notifier = notifier or Notifier()
        self.transcripts = transcripts if transcripts is not None else TranscriptBuffer()

        self._stream: Optional[StreamHandle] = None
        self._sampler: Optional[FrameSampler] = None
        self._active = False

        # Every stored change is broadcast to the overlay
        self._unsubscribe = settings_store.subscribe(self._on_settings_changed)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def sampler(self) -> Optional[FrameSampler]:
        return self._sampler

    @property
    def audio_level(self) -> Optional[float]:
        """Input level of the active stream, None without one."""
        return self._stream.audio_level if self._stream is not None else None

    def _on_settings_changed(self, settings: Settings) -> None:
        self.overlay.push(OverlayEvent(kind="settingsChanged", payload=settings.to_dict()))

    async def start(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        custom_context: str = "",
        source_id: Optional[str] = None,
        auto_sample: Optional[bool] = None,
    ) -> Optional[OverlayState]:
        """Start a session. Starting while active stops the old one first.

        Raises:
            InitializationFailed: The backend rejected the key; nothing is shown.
            PermissionDenied, StreamAcquisitionFailed: Capture could not start;
                the overlay is rolled back.
        """
        if self._active:
            logger.info("Session already active, restarting")
            await self.stop()

        settings = settings or self.settings_store.current
        api_key = api_key or Config.GEMINI_API_KEY
        if not api_key:
            raise InitializationFailed(BackendErrorKind.INVALID_KEY, "no API key configured")

        await self.session.initialize(api_key, settings.profile, custom_context)

        await self.show_overlay(settings)
        self._active = True

        if source_id:
            loop = asyncio.get_running_loop()
            try:
                self._stream = await loop.run_in_executor(None, self.capture.acquire, source_id)
            except Exception:
                logger.error("Capture failed for %s, rolling back overlay", source_id)
                self._active = False
                await self.overlay.hide()
                raise
            self._sampler = FrameSampler(self._stream, self.transcripts)

            if Config.AUTO_SAMPLE if auto_sample is None else auto_sample:
                self._sampler.start(Config.SAMPLE_INTERVAL_MS, self._on_auto_sample, self._on_sample_error)

        logger.info("Session started (profile=%s, source=%s)", settings.profile.value, source_id or "-")
        return self.overlay.state

    async def stop(self) -> None:
        """Tear down in reverse order. Safe to call repeatedly."""
        if self._sampler is not None:
            await self._sampler.stop()
            self._sampler = None
        await self.overlay.hide()
        if self._stream is not None:
            self._stream.release()
            self._stream = None
        if self._active:
            logger.info("Session stopped")
        self._active = False

    async def show_overlay(self, settings: Optional[Settings] = None) -> Optional[OverlayState]:
        settings = settings or self.settings_store.current
        await self.overlay.apply_stealth(settings.stealth_level.value)
        state = await self.overlay.show()
        self.overlay.push(OverlayEvent(kind="settingsChanged", payload=settings.to_dict()))
        return state

    async def hide_overlay(self) -> None:
        await self.overlay.hide()

    async def _current_sample(self) -> Optional[CaptureSample]:
        if self._sampler is not None:
            return await self._sampler.capture()
        text = self.transcripts.recent_text(Config.TRANSCRIPT_WINDOW_SECONDS)
        if text:
            return CaptureSample(image=None, audio_transcript=text, captured_at=time.time())
        return None

    def _deliver(self, turn: ConversationTurn) -> None:
        self.overlay.push(OverlayEvent(kind="response", payload=turn.to_response_payload()))
        self.notifier.response(turn)

    async def ask(self, question: Optional[str] = None, include_context: bool = True) -> ConversationTurn:
        """Ask a question, optionally with the current screen frame and transcript."""
        sample = await self._current_sample() if include_context else None
        turn = await self.session.ask(question, sample)
        self._deliver(turn)
        return turn

    async def _on_auto_sample(self, sample: CaptureSample) -> None:
        try:
            turn = await self.session.ask(None, sample)
        except SessionBusy:
            logger.debug("Session busy, skipping automatic sample")
            return
        self._deliver(turn)

    def _on_sample_error(self, exc: Exception) -> None:
        if not isinstance(exc, AssistError):
            exc = StreamAcquisitionFailed(f"Automatic sampling failed: {exc}")
        self.notifier.error(exc)

    async def _switch_profile(self, profile: ProfileId) -> bool:
        """Re-open the chat for ``profile``. Returns False when there is no chat to re-open."""
        state = self.session.state
        if state == SessionState.BUSY:
            raise SessionBusy()
        if state != SessionState.READY:
            return False
        await self.session.update_profile(profile, self.session.custom_context)
        return True

    async def update_settings(self, partial: Mapping[str, Any]) -> Settings:
        """Merge, persist and broadcast a settings change.

        A profile switch re-opens the chat first; if that fails nothing is
        stored, and if storing fails the previous chat is restored.

        Raises:
            SessionBusy: The profile changed while a request is in flight.
            InitializationFailed: The chat for the new profile could not be opened.
            SettingsNotSaved: The settings file could not be written.
        """
        previous = self.settings_store.current
        candidate = previous.merged(partial)
        switched = False
        if candidate.profile != previous.profile:
            switched = await self._switch_profile(candidate.profile)

        try:
            settings = self.settings_store.update(partial)
        except SettingsNotSaved:
            if switched:
                logger.warning("Settings not saved, restoring %s chat", previous.profile.value)
                await self.session.update_profile(previous.profile, self.session.custom_context)
            raise

        await self.overlay.apply_stealth(settings.stealth_level.value)
        return settings

    def get_settings(self) -> Settings:
        return self.settings_store.current

    async def list_sources(self) -> List[SourceInfo]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.capture.list_sources)

    async def reposition(self, x: int, y: int) -> Optional[OverlayState]:
        return await self.overlay.reposition(x, y)

    async def resize(self, width: int, height: int) -> Optional[OverlayState]:
        return await self.overlay.resize(width, height)

    def history(self) -> List[Dict[str, Any]]:
        return [turn.to_dict() for turn in self.session.history()]

    def clear_history(self) -> None:
        self.session.clear_history()

    def add_transcript(self, stream: str, text: str, is_final: bool = True) -> Optional[TranscriptEvent]:
        return self.transcripts.add(stream, text, is_final)

    async def test_connection(self, api_key: Optional[str] = None) -> str:
        api_key = api_key or Config.GEMINI_API_KEY
        if not api_key:
            raise InitializationFailed(BackendErrorKind.INVALID_KEY, "no API key configured")
        return await self.session.backend.test_connection(api_key)

    async def shutdown(self) -> None:
        await self.stop()
        self.session.close()
        await self.overlay.close()
        self._unsubscribe()
