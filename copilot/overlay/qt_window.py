"""
PyQt5 overlay window.

Always-on-top, frameless, translucent panel pinned to the screen's top-right
corner. Shows the latest assistant replies; in ultra stealth it ignores all
pointer input so clicks reach the application underneath.
"""

import sys
from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Optional, Tuple

from PyQt5.QtCore import Qt
from PyQt5.QtWidgets import QApplication, QLabel, QTextEdit, QVBoxLayout, QWidget

from copilot.config import Config
from copilot.models import OverlayState
from copilot.overlay.display import OverlayRenderer


class OverlayWindow(QWidget):
    """Response panel. Draggable unless click-through is on."""

    def __init__(self, state: OverlayState, max_responses: Optional[int] = None):
        super().__init__()
        # Newest first; oldest fall off the end
        self.entries: Deque[str] = deque(maxlen=max_responses or Config.HISTORY_LIMIT)
        self.font_size = 14
        self.compact = False
        self.dragging = False
        self.offset = None
        self.init_ui(state)

    def init_ui(self, state: OverlayState):
        self.setWindowTitle("Overlay Copilot")
        self.setWindowFlags(
            Qt.WindowStaysOnTopHint |
            Qt.FramelessWindowHint |
            Qt.Tool
        )
        self.setGeometry(state.x, state.y, state.width, state.height)
        self.setAttribute(Qt.WA_TranslucentBackground)
        self.setStyleSheet("""
            QWidget {
                background-color: rgba(20, 20, 30, 230);
                border-radius: 10px;
                color: #e0e0e8;
                font-family: 'Segoe UI', sans-serif;
            }
        """)

        layout = QVBoxLayout()
        layout.setContentsMargins(10, 10, 10, 10)
        layout.setSpacing(5)

        self.status_label = QLabel("● Listening")
        self.status_label.setStyleSheet("color: #4ade80; font-weight: bold; font-size: 13px;")
        layout.addWidget(self.status_label)

        self.response_display = QTextEdit()
        self.response_display.setReadOnly(True)
        layout.addWidget(self.response_display)

        self.setLayout(layout)
        self._restyle()

    def _restyle(self):
        padding = 4 if self.compact else 10
        self.response_display.setStyleSheet(f"""
            QTextEdit {{
                background-color: rgba(10, 10, 15, 180);
                border: 1px solid #2a2a3a;
                border-radius: 8px;
                padding: {padding}px;
                color: #e0e0e8;
                font-size: {self.font_size}px;
            }}
        """)

    def add_response(self, text: str, timestamp: str = "", profile: str = ""):
        try:
            stamp = datetime.fromisoformat(timestamp).strftime("%H:%M:%S")
        except ValueError:
            stamp = datetime.now().strftime("%H:%M:%S")
        header = f"{stamp} · {profile}" if profile else stamp

        self.entries.appendleft(
            f'<div style="margin-bottom: 10px;">'
            f'<span style="color: #888; font-size: 11px;">{header}</span><br>'
            f'<span style="color: #e0e0e8;">{_escape(text)}</span></div><br>'
        )
        self.response_display.setHtml("".join(self.entries))

    def set_click_through(self, enabled: bool):
        # Flag changes re-create the native window, so re-show afterwards
        self.setWindowFlag(Qt.WindowTransparentForInput, enabled)
        self.setAttribute(Qt.WA_TransparentForMouseEvents, enabled)
        self.response_display.setAttribute(Qt.WA_TransparentForMouseEvents, enabled)
        self.show()

    def apply_settings(self, settings: Dict[str, Any]):
        if "transparency" in settings:
            self.setWindowOpacity(float(settings["transparency"]))
        if "fontSize" in settings:
            self.font_size = int(settings["fontSize"])
        if "layout" in settings:
            self.compact = settings["layout"] == "compact"
        self._restyle()

    def mousePressEvent(self, event):
        if event.button() == Qt.LeftButton:
            self.dragging = True
            self.offset = event.pos()

    def mouseMoveEvent(self, event):
        if self.dragging and self.offset:
            self.move(self.mapToParent(event.pos() - self.offset))

    def mouseReleaseEvent(self, event):
        self.dragging = False


def _escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("\n", "<br>")
    )


class QtRenderer(OverlayRenderer):
    """Drives an OverlayWindow from the display process's message loop."""

    def __init__(self):
        self.app = QApplication.instance() or QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.window: Optional[OverlayWindow] = None

    def screen_size(self) -> Tuple[int, int]:
        geometry = self.app.primaryScreen().availableGeometry()
        return geometry.width(), geometry.height()

    def create(self, state: OverlayState) -> None:
        self.window = OverlayWindow(state)
        self.window.show()

    def destroy(self) -> None:
        if self.window is not None:
            self.window.close()
            self.window.deleteLater()
            self.window = None

    def move(self, x: int, y: int) -> None:
        if self.window is not None:
            self.window.move(x, y)

    def resize(self, width: int, height: int) -> None:
        if self.window is not None:
            self.window.resize(width, height)

    def set_click_through(self, enabled: bool) -> None:
        if self.window is not None:
            self.window.set_click_through(enabled)

    def show_response(self, payload: Dict[str, Any]) -> None:
        if self.window is not None:
            self.window.add_response(
                str(payload.get("text", "")),
                str(payload.get("timestamp", "")),
                str(payload.get("profile", "")),
            )

    def apply_settings(self, settings: Dict[str, Any]) -> None:
        if self.window is not None:
            self.window.apply_settings(settings)

    def process_events(self) -> None:
        self.app.processEvents()
