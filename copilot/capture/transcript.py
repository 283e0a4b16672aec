"""Buffer of transcript events produced by an external speech-to-text service."""

import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional

from copilot.models import TranscriptEvent


class TranscriptBuffer:
    """Thread-safe rolling buffer of transcript events."""

    def __init__(self, max_events: int = 500, clock: Callable[[], float] = time.time):
        self._events: Deque[TranscriptEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()
        self._clock = clock

    def add(self, stream: str, text: str, is_final: bool = True) -> Optional[TranscriptEvent]:
        """Callback when a transcript event occurs. Blank text is ignored."""
        text = (text or "").strip()
        if not text:
            return None
        event = TranscriptEvent(ts=self._clock(), stream=stream, text=text, is_final=is_final)
        with self._lock:
            self._events.append(event)
        return event

    def recent(self, seconds: float) -> List[TranscriptEvent]:
        """Get transcript events from the last N seconds.

        Args:
            seconds: Time window in seconds

        Returns:
            List of transcript events within the time window, oldest first
        """
        cutoff_time = self._clock() - seconds
        with self._lock:
            return [e for e in self._events if e.ts >= cutoff_time]

    def recent_text(self, seconds: float) -> Optional[str]:
        """Final transcript lines from the window, or the latest interim line if none are final."""
        events = self.recent(seconds)
        final_texts = [e.text for e in events if e.is_final]
        if final_texts:
            return "\n".join(final_texts)
        if events:
            return events[-1].text
        return None

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
