"""Screen/audio capture pipeline."""

from copilot.capture.sampler import FrameSampler
from copilot.capture.sources import CaptureSource, SourceInfo, StreamHandle
from copilot.capture.transcript import TranscriptBuffer

__all__ = ["CaptureSource", "FrameSampler", "SourceInfo", "StreamHandle", "TranscriptBuffer"]
