"""Turns a live stream into a bounded-rate sequence of capture samples."""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
import time
from typing import Awaitable, Callable, Optional, Union

from PIL import Image

from copilot.capture.sources import StreamHandle, image_to_data_url
from copilot.capture.transcript import TranscriptBuffer
from copilot.config import Config
from copilot.models import CaptureSample

logger = logging.getLogger(__name__)

SampleCallback = Callable[[CaptureSample], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], None]


class FrameSampler:
    """Samples a StreamHandle on demand (default) or on a fixed cadence (opt-in)."""

    def __init__(
        self,
        stream: StreamHandle,
        transcripts: Optional[TranscriptBuffer] = None,
        min_interval_ms: Optional[int] = None,
        max_width: Optional[int] = None,
        jpeg_quality: Optional[int] = None,
        transcript_window_s: Optional[float] = None,
    ):
        self.stream = stream
        self.transcripts = transcripts
        self.min_interval_ms = Config.SAMPLE_MIN_INTERVAL_MS if min_interval_ms is None else min_interval_ms
        self.max_width = max_width or Config.MAX_FRAME_WIDTH
        self.jpeg_quality = jpeg_quality or Config.JPEG_QUALITY
        self.transcript_window_s = transcript_window_s or Config.TRANSCRIPT_WINDOW_SECONDS
        self.interval_ms: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._last_digest = ""

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _encode(self, frame: Image.Image) -> str:
        if frame.width > self.max_width:
            ratio = self.max_width / float(frame.width)
            frame = frame.resize((self.max_width, max(1, int(frame.height * ratio))))
        if frame.mode != "RGB":
            frame = frame.convert("RGB")
        return image_to_data_url(frame, "JPEG", quality=self.jpeg_quality)

    def sample_now(self) -> CaptureSample:
        """Grab the current frame and pair it with the latest transcript text (blocking)."""
        image = self._encode(self.stream.grab_frame())
        transcript = None
        if self.transcripts is not None:
            transcript = self.transcripts.recent_text(self.transcript_window_s)
        return CaptureSample(image=image, audio_transcript=transcript, captured_at=time.time())

    async def capture(self) -> CaptureSample:
        """``sample_now`` off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.sample_now)

    def start(self, interval_ms: int, on_sample: SampleCallback, on_error: Optional[ErrorCallback] = None) -> None:
        """Begin automatic sampling. The interval is clamped to the minimum sampling interval."""
        if self.running:
            return
        interval_ms = max(int(interval_ms), int(self.min_interval_ms))
        self.interval_ms = interval_ms
        self._last_digest = ""
        self._task = asyncio.create_task(self._run(interval_ms / 1000.0, on_sample, on_error))
        logger.info("Automatic sampling started every %d ms", interval_ms)

    async def _run(self, interval_s: float, on_sample: SampleCallback, on_error: Optional[ErrorCallback]) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                sample = await self.capture()

                # Skip if nothing on screen or in the transcript changed
                digest = hashlib.md5(((sample.image or "") + (sample.audio_transcript or "")).encode()).hexdigest()
                if digest == self._last_digest:
                    continue
                self._last_digest = digest

                result = on_sample(sample)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Automatic sample failed: %s", e)
                if on_error is not None:
                    on_error(e)

    async def stop(self) -> None:
        """Cancel automatic sampling and wait for the timer to finish. Safe if never started."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Automatic sampling stopped")
