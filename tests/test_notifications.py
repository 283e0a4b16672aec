"""Single notification path for responses and errors."""

from copilot.errors import BackendError, BackendErrorKind, InitializationFailed, SessionBusy
from copilot.models import ConversationTurn
from copilot.notifications import Notifier


def test_error_event_uses_user_message():
    notifier = Notifier()
    event = notifier.error(BackendError(BackendErrorKind.QUOTA_EXCEEDED, "429 quota"))
    assert event["type"] == "error"
    assert event["kind"] == "quota_exceeded"
    assert event["message"].startswith("Error: Rate limit exceeded")
    assert notifier.drain() == [event]


def test_non_backend_errors_use_class_name():
    event = Notifier().error(SessionBusy())
    assert event["kind"] == "SessionBusy"
    assert event["message"] == SessionBusy.default_message


def test_initialization_failure_message():
    event = Notifier().error(InitializationFailed(BackendErrorKind.INVALID_KEY, "bad"))
    assert event["message"].startswith("Failed to initialize the AI session. Invalid or missing API key.")


def test_response_event_matches_overlay_payload():
    turn = ConversationTurn(timestamp=0.0, question="ping", answer_text="OK", profile="interview")
    event = Notifier().response(turn)
    assert event["text"] == "OK"
    assert event["timestamp"] == "1970-01-01T00:00:00+00:00"
    assert event["question"] == "ping"


def test_oldest_dropped_when_full():
    notifier = Notifier(maxsize=2)
    for i in range(3):
        notifier.publish("tick", n=i)
    assert [e["n"] for e in notifier.drain()] == [1, 2]
    assert notifier.get() is None
