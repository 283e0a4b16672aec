"""Error taxonomy shared by the capture pipeline, AI session and control surface."""

from enum import Enum
from typing import Optional


class BackendErrorKind(str, Enum):
    INVALID_KEY = "invalid_key"
    QUOTA_EXCEEDED = "quota_exceeded"
    NETWORK_ERROR = "network_error"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


_KIND_MESSAGES = {
    BackendErrorKind.INVALID_KEY: (
        "Invalid or missing API key. Please check your Gemini API key. "
        "Get your API key from: https://aistudio.google.com/app/apikey"
    ),
    BackendErrorKind.QUOTA_EXCEEDED: (
        "Rate limit exceeded. Please wait a moment and try again, "
        "or check your API quota at: https://console.cloud.google.com/"
    ),
    BackendErrorKind.NETWORK_ERROR: (
        "Network connection failed. Please check your internet connection and try again."
    ),
    BackendErrorKind.BLOCKED: (
        "The request was blocked by safety filters. Please try rephrasing your question."
    ),
    BackendErrorKind.UNKNOWN: "The AI backend returned an unexpected error.",
}


class AssistError(Exception):
    """Base class for every failure surfaced to the user."""

    default_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        return str(self)


class PermissionDenied(AssistError):
    default_message = "The operating system denied screen or microphone access. Grant permission and try again."


class CaptureUnavailable(AssistError):
    default_message = "No capturable screens or windows are available."


class StreamAcquisitionFailed(AssistError):
    default_message = "Could not open a combined screen and audio stream for the selected source."


class EmptyRequest(AssistError):
    default_message = "Nothing to send: provide a question or a capture sample."


class InvalidSample(AssistError):
    default_message = "The capture sample image is not valid base64 image data."


class SessionBusy(AssistError):
    default_message = "A request is already in progress. Wait for the current answer."


class SessionNotReady(AssistError):
    default_message = "The AI session has not been initialized. Start a session first."


class SessionClosed(AssistError):
    default_message = "The AI session has been closed."


class StaleChatHandle(AssistError):
    default_message = "This chat handle was invalidated by a profile or context change."


class OverlayUnavailable(AssistError):
    default_message = "The overlay display process is not responding."


class SettingsNotSaved(AssistError):
    default_message = "Settings could not be saved; the previous settings are still in effect."


class BackendError(AssistError):
    """A failed exchange with the AI backend, tagged with its category."""

    def __init__(self, kind: BackendErrorKind, detail: str = ""):
        self.kind = BackendErrorKind(kind)
        self.detail = detail
        super().__init__(f"{self.kind.value}: {detail}" if detail else self.kind.value)

    @property
    def user_message(self) -> str:
        return f"Error: {_KIND_MESSAGES[self.kind]}"


class InitializationFailed(BackendError):
    """The backend rejected the key or could not be reached while opening a chat."""

    @property
    def user_message(self) -> str:
        return f"Failed to initialize the AI session. {_KIND_MESSAGES[self.kind]}"


def classify_error_message(message: str) -> BackendErrorKind:
    """Best-effort classification of a backend failure from its message text."""
    error_msg = (message or "").lower()

    if "api key" in error_msg or "api_key" in error_msg or "unauthorized" in error_msg or "403" in error_msg:
        return BackendErrorKind.INVALID_KEY
    if "quota" in error_msg or "rate limit" in error_msg or "429" in error_msg or "resource exhausted" in error_msg:
        return BackendErrorKind.QUOTA_EXCEEDED
    if "network" in error_msg or "connection" in error_msg or "timed out" in error_msg or "unavailable" in error_msg:
        return BackendErrorKind.NETWORK_ERROR
    if "safety" in error_msg or "blocked" in error_msg:
        return BackendErrorKind.BLOCKED
    return BackendErrorKind.UNKNOWN
