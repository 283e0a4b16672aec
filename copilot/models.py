"""Data models for Overlay Copilot."""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class TranscriptEvent:
    """A single transcript event from the microphone or system audio."""
    ts: float  # Unix timestamp
    stream: Literal["mic", "system"]
    text: str
    is_final: bool  # True for final transcript, False for interim

    def to_dict(self):
        return {
            "ts": self.ts,
            "stream": self.stream,
            "text": self.text,
            "is_final": self.is_final
        }


@dataclass(frozen=True)
class CaptureSample:
    """One discrete unit of screen image plus optional transcript text.

    ``image`` is the encoded still frame as a base64 data URL
    (``data:image/jpeg;base64,...``); a bare base64 string is also accepted.
    """
    image: Optional[str]
    audio_transcript: Optional[str]
    captured_at: float


@dataclass(frozen=True)
class ConversationTurn:
    """One successful exchange with the AI backend."""
    timestamp: float
    question: Optional[str]  # None for passive frame analysis
    answer_text: str
    profile: str

    def to_dict(self):
        return {
            "timestamp": _iso(self.timestamp),
            "question": self.question,
            "answer_text": self.answer_text,
            "profile": self.profile
        }

    def to_response_payload(self) -> Dict[str, Any]:
        """Payload of the ``ai-response`` push delivered to the overlay."""
        return {
            "text": self.answer_text,
            "timestamp": _iso(self.timestamp),
            "profile": self.profile,
            "question": self.question
        }


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    data: bytes
    mime_type: str = "image/jpeg"


Part = Union[TextPart, ImagePart]


@dataclass
class OverlayState:
    """Geometry and input policy of the overlay surface."""
    visible: bool
    x: int
    y: int
    width: int
    height: int
    stealth_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OverlayState":
        return cls(
            visible=bool(data.get("visible", False)),
            x=int(data.get("x", 0)),
            y=int(data.get("y", 0)),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            stealth_active=bool(data.get("stealth_active", False)),
        )


@dataclass(frozen=True)
class OverlayEvent:
    """A one-way event delivered to the overlay surface."""
    kind: Literal["response", "settingsChanged"]
    payload: Dict[str, Any]
