"""Message protocol between the control process and the overlay display process.

Wire format (tuples over a multiprocessing Connection):
  ("req", request_id:int, kind:str, payload:dict)   control -> display, expects a reply
  ("res", request_id:int, reply:dict)               display -> control
  ("push", kind:str, payload:dict)                  control -> display, no reply
"""

START_OVERLAY = "start-overlay"
STOP_OVERLAY = "stop-overlay"
UPDATE_POSITION = "update-overlay-position"
UPDATE_SIZE = "update-overlay-size"
APPLY_STEALTH = "apply-stealth"
GET_STATE = "get-overlay-state"

DISPLAY_RESPONSE = "display-response"
SETTINGS_UPDATED = "settings-updated"
SHUTDOWN = "shutdown"

REQUEST_KINDS = frozenset({START_OVERLAY, STOP_OVERLAY, UPDATE_POSITION, UPDATE_SIZE, APPLY_STEALTH, GET_STATE})
PUSH_KINDS = frozenset({DISPLAY_RESPONSE, SETTINGS_UPDATED, SHUTDOWN})

# OverlayEvent.kind -> push message kind
EVENT_KINDS = {
    "response": DISPLAY_RESPONSE,
    "settingsChanged": SETTINGS_UPDATED,
}

AUTHKEY = b"overlay-copilot"


def request(request_id: int, kind: str, payload=None) -> tuple:
    if kind not in REQUEST_KINDS:
        raise ValueError(f"Unknown request kind: {kind}")
    return ("req", request_id, kind, dict(payload or {}))


def push(kind: str, payload=None) -> tuple:
    if kind not in PUSH_KINDS:
        raise ValueError(f"Unknown push kind: {kind}")
    return ("push", kind, dict(payload or {}))


def reply(request_id: int, payload: dict) -> tuple:
    return ("res", request_id, payload)
