"""User-facing notifications (answers and errors) fanned out to the control UI."""

import logging
import time
from queue import Empty, Full, Queue
from typing import Any, Dict, List, Optional

from copilot.errors import AssistError, BackendError
from copilot.models import ConversationTurn

logger = logging.getLogger(__name__)


class Notifier:
    """Thread-safe queue of notification dicts, drained by the SSE stream."""

    def __init__(self, maxsize: int = 200):
        self._queue: "Queue[Dict[str, Any]]" = Queue(maxsize=maxsize)

    def publish(self, event_type: str, **fields) -> Dict[str, Any]:
        event = {"type": event_type, "ts": time.time(), **fields}
        # Drop oldest when nobody is listening
        while True:
            try:
                self._queue.put_nowait(event)
                return event
            except Full:
                try:
                    self._queue.get_nowait()
                except Empty:
                    pass

    def error(self, exc: AssistError) -> Dict[str, Any]:
        kind = exc.kind.value if isinstance(exc, BackendError) else type(exc).__name__
        logger.warning("Notifying error (%s): %s", kind, exc)
        return self.publish("error", kind=kind, message=exc.user_message)

    def response(self, turn: ConversationTurn) -> Dict[str, Any]:
        return self.publish("response", **turn.to_response_payload())

    def get(self, timeout: float = 0.0) -> Optional[Dict[str, Any]]:
        try:
            if timeout > 0:
                return self._queue.get(timeout=timeout)
            return self._queue.get_nowait()
        except Empty:
            return None

    def drain(self) -> List[Dict[str, Any]]:
        events = []
        while True:
            event = self.get()
            if event is None:
                return events
            events.append(event)
