"""Display-context side of the overlay: owns the surface and its OverlayState."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from copilot.config import Config
from copilot.models import OverlayState
from copilot.overlay import protocol

logger = logging.getLogger(__name__)


class OverlayRenderer(ABC):
    """Draws the overlay surface. One renderer per display process."""

    @abstractmethod
    def screen_size(self) -> Tuple[int, int]:
        pass

    @abstractmethod
    def create(self, state: OverlayState) -> None:
        pass

    @abstractmethod
    def destroy(self) -> None:
        pass

    @abstractmethod
    def move(self, x: int, y: int) -> None:
        pass

    @abstractmethod
    def resize(self, width: int, height: int) -> None:
        pass

    @abstractmethod
    def set_click_through(self, enabled: bool) -> None:
        """When enabled, pointer input passes through to whatever is beneath."""
        pass

    @abstractmethod
    def show_response(self, payload: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def apply_settings(self, settings: Dict[str, Any]) -> None:
        pass

    def process_events(self) -> None:
        """Give the toolkit a chance to paint; called from the display loop."""


class HeadlessRenderer(OverlayRenderer):
    """Keeps the surface in memory only; for servers without a display and for CI."""

    def __init__(self, screen: Tuple[int, int] = (1920, 1080), max_responses: Optional[int] = None):
        self._screen = screen
        self.max_responses = max_responses or Config.HISTORY_LIMIT
        self.window: Optional[Dict[str, Any]] = None
        self.responses: List[Dict[str, Any]] = []
        self.settings: Dict[str, Any] = {}

    def screen_size(self) -> Tuple[int, int]:
        return self._screen

    def create(self, state: OverlayState) -> None:
        self.window = {"x": state.x, "y": state.y, "width": state.width, "height": state.height, "click_through": False}
        self.responses = []

    def destroy(self) -> None:
        self.window = None

    def move(self, x: int, y: int) -> None:
        if self.window is not None:
            self.window.update(x=x, y=y)

    def resize(self, width: int, height: int) -> None:
        if self.window is not None:
            self.window.update(width=width, height=height)

    def set_click_through(self, enabled: bool) -> None:
        if self.window is not None:
            self.window["click_through"] = enabled

    def show_response(self, payload: Dict[str, Any]) -> None:
        self.responses.append(dict(payload))
        del self.responses[:-self.max_responses]

    def apply_settings(self, settings: Dict[str, Any]) -> None:
        self.settings = dict(settings)


def create_renderer(name: str) -> OverlayRenderer:
    name = (name or "").lower()
    if name == "qt":
        from copilot.overlay.qt_window import QtRenderer
        return QtRenderer()
    elif name == "headless":
        return HeadlessRenderer()
    raise ValueError(f"Unsupported overlay renderer: '{name}'. Supported: 'qt', 'headless'")


class OverlayDisplay:
    """Applies channel messages to the overlay surface.

    At most one surface exists; pushes with no surface are dropped.
    """

    def __init__(self, renderer: OverlayRenderer):
        self.renderer = renderer
        self.state: Optional[OverlayState] = None
        self.stealth_level = "balanced"
        self.settings: Dict[str, Any] = {}
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            protocol.START_OVERLAY: self._start,
            protocol.STOP_OVERLAY: self._stop,
            protocol.UPDATE_POSITION: self._position,
            protocol.UPDATE_SIZE: self._size,
            protocol.APPLY_STEALTH: self._stealth,
            protocol.GET_STATE: self._get_state,
            protocol.DISPLAY_RESPONSE: self._display_response,
            protocol.SETTINGS_UPDATED: self._settings_updated,
        }

    def handle(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        handler = self._handlers.get(kind)
        if handler is None:
            return {"success": False, "error": f"Unknown message kind: {kind}"}
        return handler(payload or {})

    def _reply(self) -> Dict[str, Any]:
        return {"success": True, "state": self.state.to_dict() if self.state else None}

    def _apply_stealth(self) -> None:
        ultra = self.stealth_level == "ultra"
        if self.state is not None:
            self.state.stealth_active = ultra
            self.renderer.set_click_through(ultra)

    def _start(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if "stealthLevel" in payload:
            self.stealth_level = str(payload["stealthLevel"])
        if self.state is not None:
            return self._reply()

        width = int(payload.get("width", 400))
        height = int(payload.get("height", 600))
        margin = int(payload.get("margin", 20))
        screen_w, _ = self.renderer.screen_size()

        # Top-right corner of the primary work area
        self.state = OverlayState(
            visible=True,
            x=max(0, screen_w - width - margin),
            y=margin,
            width=width,
            height=height,
        )
        self.renderer.create(self.state)
        if self.settings:
            self.renderer.apply_settings(self.settings)
        self._apply_stealth()
        logger.info("Overlay created at (%d, %d) %dx%d", self.state.x, self.state.y, width, height)
        return self._reply()

    def _stop(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.state is not None:
            self.renderer.destroy()
            self.state = None
            logger.info("Overlay destroyed")
        return {"success": True}

    def _position(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.state is not None:
            self.state.x, self.state.y = int(payload["x"]), int(payload["y"])
            self.renderer.move(self.state.x, self.state.y)
        return self._reply()

    def _size(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.state is not None:
            self.state.width, self.state.height = int(payload["width"]), int(payload["height"])
            self.renderer.resize(self.state.width, self.state.height)
        return self._reply()

    def _stealth(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.stealth_level = str(payload.get("level", "balanced"))
        self._apply_stealth()
        return self._reply()

    def _get_state(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._reply()

    def _display_response(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.state is None:
            logger.debug("Dropping response: no overlay")
            return {"success": False}
        self.renderer.show_response(payload)
        return {"success": True}

    def _settings_updated(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.settings = dict(payload)
        if "stealthLevel" in payload:
            self.stealth_level = str(payload["stealthLevel"])
            self._apply_stealth()
        if self.state is not None:
            self.renderer.apply_settings(self.settings)
        return {"success": True}
