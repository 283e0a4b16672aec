"""Capturable screen/window targets and combined video+audio stream handles."""

from __future__ import annotations

import base64
import io
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import mss
from mss.exception import ScreenShotError
from PIL import Image

from copilot.capture.audio import AudioTrack
from copilot.config import Config
from copilot.errors import CaptureUnavailable, PermissionDenied, StreamAcquisitionFailed

logger = logging.getLogger(__name__)

SCREEN_PREFIX = "screen:"
WINDOW_PREFIX = "window:"


@dataclass(frozen=True)
class SourceInfo:
    id: str
    name: str
    thumbnail: str  # PNG data URL

    def to_dict(self):
        return {"id": self.id, "name": self.name, "thumbnail": self.thumbnail}


def _window_api():
    """pygetwindow, or None where the platform has no window enumeration."""
    try:
        import pygetwindow as gw
    except (ImportError, NotImplementedError):
        return None
    return gw


def _grab_region(region: Dict[str, int]) -> Image.Image:
    with mss.mss() as sct:
        shot = sct.grab(region)
        return Image.frombytes("RGB", shot.size, shot.rgb)


def image_to_data_url(image: Image.Image, fmt: str = "PNG", **save_kwargs) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    mime = "image/jpeg" if fmt.upper() in ("JPEG", "JPG") else f"image/{fmt.lower()}"
    return f"data:{mime};base64,{base64.b64encode(buffer.getvalue()).decode()}"


def make_thumbnail(image: Image.Image, size: Tuple[int, int] = (150, 150)) -> str:
    thumb = image.copy()
    thumb.thumbnail(size)
    return image_to_data_url(thumb, "PNG")


class ScreenTrack:
    """Video track for one monitor (mss index, 1-based)."""

    kind = "video"

    def __init__(self, monitor_index: int):
        self.monitor_index = monitor_index
        self._ended = False

    def grab(self) -> Image.Image:
        if self._ended:
            raise StreamAcquisitionFailed("Video track has ended")
        with mss.mss() as sct:
            monitors = sct.monitors
            if self.monitor_index < 1 or self.monitor_index >= len(monitors):
                raise StreamAcquisitionFailed(f"Monitor {self.monitor_index} is not available")
            shot = sct.grab(monitors[self.monitor_index])
            return Image.frombytes("RGB", shot.size, shot.rgb)

    def stop(self) -> None:
        self._ended = True


class WindowTrack:
    """Video track following a top-level window, located by title at every grab."""

    kind = "video"

    def __init__(self, title: str):
        self.title = title
        self._ended = False

    def _bbox(self) -> Dict[str, int]:
        gw = _window_api()
        if gw is None:
            raise StreamAcquisitionFailed("Window capture is not supported on this platform")
        windows = gw.getWindowsWithTitle(self.title)
        if not windows:
            raise StreamAcquisitionFailed(f"No window found with title containing '{self.title}'")
        w = windows[0]
        if w.width <= 0 or w.height <= 0:
            raise StreamAcquisitionFailed(f"Window '{self.title}' is minimized or has no area")
        return {"left": w.left, "top": w.top, "width": w.width, "height": w.height}

    def grab(self) -> Image.Image:
        if self._ended:
            raise StreamAcquisitionFailed("Video track has ended")
        return _grab_region(self._bbox())

    def stop(self) -> None:
        self._ended = True


class StreamHandle:
    """A combined video+audio stream bound to one capture source."""

    def __init__(self, source_id: str, video, audio):
        self.source_id = source_id
        self.video = video
        self.audio = audio
        self._lock = threading.Lock()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def audio_level(self) -> float:
        return 0.0 if self._released else float(self.audio.level)

    def grab_frame(self) -> Image.Image:
        with self._lock:
            if self._released:
                raise StreamAcquisitionFailed("Stream has been released")
            try:
                return self.video.grab()
            except ScreenShotError as e:
                raise StreamAcquisitionFailed(f"Frame grab failed: {e}") from e

    def release(self) -> None:
        """Stop both tracks. Safe to call any number of times."""
        with self._lock:
            if self._released:
                return
            self._released = True
        try:
            self.video.stop()
        finally:
            self.audio.stop()
        logger.info("Released stream for %s", self.source_id)


class CaptureSource:
    """Enumerates capture targets and negotiates stream handles from the host."""

    def __init__(
        self,
        thumbnail_size: Tuple[int, int] = (150, 150),
        audio_device: Optional[str] = None,
        audio_factory: Optional[Callable[[], AudioTrack]] = None,
    ):
        self.thumbnail_size = thumbnail_size
        self.audio_device = audio_device if audio_device is not None else Config.AUDIO_DEVICE
        self._audio_factory = audio_factory or self._default_audio

    def _default_audio(self) -> AudioTrack:
        return AudioTrack(device=self.audio_device, sample_rate=Config.AUDIO_SAMPLE_RATE)

    def _list_screens(self) -> List[SourceInfo]:
        sources = []
        with mss.mss() as sct:
            for idx, monitor in enumerate(sct.monitors[1:], start=1):
                shot = sct.grab(monitor)
                image = Image.frombytes("RGB", shot.size, shot.rgb)
                sources.append(SourceInfo(
                    id=f"{SCREEN_PREFIX}{idx}",
                    name=f"Screen {idx}",
                    thumbnail=make_thumbnail(image, self.thumbnail_size),
                ))
        return sources

    def _list_windows(self) -> List[SourceInfo]:
        gw = _window_api()
        if gw is None:
            return []

        sources = []
        seen = set()
        for window in gw.getAllWindows():
            title = (window.title or "").strip()
            if not title or title in seen:
                continue
            if window.width <= 0 or window.height <= 0:
                continue
            seen.add(title)
            try:
                image = _grab_region({"left": window.left, "top": window.top, "width": window.width, "height": window.height})
                thumbnail = make_thumbnail(image, self.thumbnail_size)
            except ScreenShotError as e:
                logger.debug("Skipping thumbnail for window %r: %s", title, e)
                thumbnail = ""
            sources.append(SourceInfo(id=f"{WINDOW_PREFIX}{title}", name=title, thumbnail=thumbnail))
        return sources

    def list_sources(self) -> List[SourceInfo]:
        """List capturable screens and windows.

        Raises:
            PermissionDenied: The OS refused screen access.
            CaptureUnavailable: Enumeration failed or nothing is capturable.
        """
        try:
            sources = self._list_screens() + self._list_windows()
        except PermissionError as e:
            raise PermissionDenied() from e
        except (ScreenShotError, OSError) as e:
            logger.error("Error getting sources: %s", e)
            raise CaptureUnavailable(f"Screen enumeration failed: {e}") from e

        if not sources:
            raise CaptureUnavailable()
        return sources

    def _video_track(self, source_id: str):
        if source_id.startswith(SCREEN_PREFIX):
            index = source_id[len(SCREEN_PREFIX):]
            if not index.isdigit():
                raise StreamAcquisitionFailed(f"Malformed screen source id '{source_id}'")
            return ScreenTrack(int(index))
        if source_id.startswith(WINDOW_PREFIX):
            return WindowTrack(source_id[len(WINDOW_PREFIX):])
        raise StreamAcquisitionFailed(f"Unknown capture source '{source_id}'")

    def acquire(self, source_id: str) -> StreamHandle:
        """Open a combined video+audio stream for ``source_id``.

        Raises:
            PermissionDenied: The OS refused screen or microphone access.
            StreamAcquisitionFailed: Either track is missing or rejected.
        """
        video = self._video_track(source_id)
        try:
            video.grab()
        except PermissionError as e:
            raise PermissionDenied() from e
        except (ScreenShotError, OSError) as e:
            raise StreamAcquisitionFailed(f"No video track for '{source_id}': {e}") from e

        try:
            audio = self._audio_factory().start()
        except Exception:
            video.stop()
            raise

        logger.info("Acquired stream for %s", source_id)
        return StreamHandle(source_id, video, audio)
