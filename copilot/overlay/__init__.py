"""Always-on-top overlay: control-side coordinator, transports and display."""

from copilot.overlay.coordinator import OverlayCoordinator
from copilot.overlay.transport import LocalTransport, OverlayTransport, ProcessTransport

__all__ = ["LocalTransport", "OverlayCoordinator", "OverlayTransport", "ProcessTransport"]
