from __future__ import annotations

import logging
from multiprocessing.connection import Client

from copilot.config import configure_logging
from copilot.overlay import protocol
from copilot.overlay.display import OverlayDisplay, create_renderer


# IPC message protocol: see copilot.overlay.protocol
# The display process is the only place a GUI toolkit is imported.

def run_overlay_proc(host: str = "127.0.0.1", port: int = 0, renderer_name: str = "qt", log_level: str = "INFO"):
    """
    Overlay display process:
      - Connects back to the control process over IPC
      - Owns the renderer and the OverlayState
      - Applies requests/pushes between toolkit event pumps
    """
    configure_logging(log_level)
    logger = logging.getLogger("copilot.overlay.process")

    conn = Client((host, port), authkey=protocol.AUTHKEY)
    display = OverlayDisplay(create_renderer(renderer_name))
    logger.info("Overlay process connected (renderer=%s)", renderer_name)

    try:
        while True:
            display.renderer.process_events()
            try:
                if not conn.poll(0.02):
                    continue
                msg = conn.recv()
            except (EOFError, BrokenPipeError, ConnectionResetError):
                logger.info("Control process went away")
                break

            kind = msg[0]
            if kind == "req":
                _, request_id, req_kind, payload = msg
                try:
                    result = display.handle(req_kind, payload)
                except (KeyError, TypeError, ValueError) as e:
                    logger.error("Overlay request %s failed: %s", req_kind, e)
                    result = {"success": False, "error": str(e)}
                conn.send(protocol.reply(request_id, result))
            elif kind == "push":
                _, push_kind, payload = msg
                if push_kind == protocol.SHUTDOWN:
                    break
                try:
                    display.handle(push_kind, payload)
                except (KeyError, TypeError, ValueError) as e:
                    logger.error("Overlay push %s failed: %s", push_kind, e)
            else:
                logger.warning("Ignoring unknown message type %r", kind)
    finally:
        display.handle(protocol.STOP_OVERLAY)
        conn.close()
