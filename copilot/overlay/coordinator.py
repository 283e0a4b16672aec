"""Control-side owner of the overlay lifecycle."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from copilot.config import Config
from copilot.errors import OverlayUnavailable
from copilot.models import OverlayEvent, OverlayState
from copilot.overlay import protocol
from copilot.overlay.transport import OverlayTransport

logger = logging.getLogger(__name__)


class OverlayCoordinator:
    """
    Creates, positions and tears down the single overlay surface and relays
    events to it. ``state`` mirrors the display's last reply; None means no
    overlay exists.
    """

    def __init__(self, transport: OverlayTransport, width: Optional[int] = None, height: Optional[int] = None):
        self.transport = transport
        self.width = width or Config.OVERLAY_WIDTH
        self.height = height or Config.OVERLAY_HEIGHT
        self.stealth_level = "balanced"
        self.state: Optional[OverlayState] = None

    @property
    def visible(self) -> bool:
        return self._surface() is not None and self.state.visible

    @property
    def accepts_input(self) -> bool:
        return self._surface() is not None and not self.state.stealth_active

    def _surface(self) -> Optional[OverlayState]:
        """The mirrored state, forgotten once the display context has died."""
        if self.state is not None and not self.transport.alive:
            logger.warning("Overlay display went away; forgetting its surface")
            self.state = None
        return self.state

    def _mirror(self, reply: Dict[str, Any]) -> Optional[OverlayState]:
        state = reply.get("state")
        self.state = OverlayState.from_dict(state) if state else None
        return self.state

    async def _request(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            return await self.transport.request(kind, payload)
        except OverlayUnavailable:
            self.state = None
            raise

    async def show(self) -> OverlayState:
        """Create the overlay at the top-right corner. No-op if it already exists."""
        if self._surface() is not None:
            return self.state
        reply = await self._request(protocol.START_OVERLAY, {
            "width": self.width,
            "height": self.height,
            "margin": Config.OVERLAY_MARGIN,
            "stealthLevel": self.stealth_level,
        })
        return self._mirror(reply)

    async def hide(self) -> None:
        """Destroy the overlay. Safe to call when none exists."""
        if self._surface() is None:
            return
        await self._request(protocol.STOP_OVERLAY)
        self.state = None

    async def apply_stealth(self, level: str) -> None:
        """Remember ``level`` and apply it to the overlay if one exists.

        Only "ultra" makes the surface ignore pointer input.
        """
        self.stealth_level = str(level)
        if self._surface() is None:
            return
        reply = await self._request(protocol.APPLY_STEALTH, {"level": self.stealth_level})
        self._mirror(reply)

    def push(self, event: OverlayEvent) -> bool:
        """Deliver an event to the overlay. Dropped (returns False) when none exists."""
        if self._surface() is None:
            logger.debug("No overlay; dropping %s event", event.kind)
            return False
        return self.transport.push(protocol.EVENT_KINDS[event.kind], event.payload)

    async def reposition(self, x: int, y: int) -> Optional[OverlayState]:
        if self._surface() is None:
            return None
        reply = await self._request(protocol.UPDATE_POSITION, {"x": int(x), "y": int(y)})
        return self._mirror(reply)

    async def resize(self, width: int, height: int) -> Optional[OverlayState]:
        if self._surface() is None:
            return None
        reply = await self._request(protocol.UPDATE_SIZE, {"width": int(width), "height": int(height)})
        return self._mirror(reply)

    async def close(self) -> None:
        await self.hide()
        await self.transport.close()
