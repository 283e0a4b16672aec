from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from copilot.errors import PermissionDenied, StreamAcquisitionFailed

logger = logging.getLogger(__name__)


def left_channel_rms(indata: np.ndarray) -> float:
    """
    Level of one sounddevice callback block, 0..1.
    Uses the LEFT channel only (stereo system audio can phase-cancel when mixed).
    """
    x = np.asarray(indata)
    mono = x[:, 0] if x.ndim == 2 and x.shape[1] >= 1 else x.reshape(-1)

    if mono.dtype == np.int16:
        f = mono.astype(np.float32) / 32768.0
    else:
        f = mono.astype(np.float32)
    f = np.clip(f, -1.0, 1.0)
    return float(np.sqrt(np.mean(f * f))) if f.size else 0.0


@dataclass(frozen=True)
class AudioDevice:
    index: int
    name: str
    max_input_channels: int
    default_samplerate: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def list_audio_devices(query: Optional[Callable[[], Sequence[Dict[str, Any]]]] = None) -> List[AudioDevice]:
    """Input-capable devices, for picking the audio half of a capture stream.

    Raises:
        StreamAcquisitionFailed: PortAudio is missing or the query failed.
    """
    if query is None:
        try:
            import sounddevice as sd
        except OSError as e:
            raise StreamAcquisitionFailed(f"Audio backend unavailable: {e}") from e
        query = sd.query_devices

    try:
        raw = list(query())
    except Exception as e:
        raise StreamAcquisitionFailed(f"Could not query audio devices: {e}") from e

    return [
        AudioDevice(
            index=idx,
            name=d.get("name") or f"Device {idx}",
            max_input_channels=int(d.get("max_input_channels", 0)),
            default_samplerate=int(d.get("default_samplerate", 0) or 0),
        )
        for idx, d in enumerate(raw)
        if int(d.get("max_input_channels", 0)) > 0
    ]


class AudioTrack:
    """Live microphone/loopback input track backed by a sounddevice InputStream.

    Holds the device open for the life of the stream handle and tracks the
    current input level; speech-to-text runs elsewhere and posts transcripts.
    """

    kind = "audio"

    def __init__(
        self,
        device: Optional[Union[int, str]] = None,
        sample_rate: int = 48000,
        channels: int = 1,
        blocksize: int = 960,  # ~20ms @ 48k
    ):
        if isinstance(device, str) and device.isdigit():
            device = int(device)
        self.device = device
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.blocksize = int(blocksize)

        self._lock = threading.Lock()
        self._stream = None
        self._ended = False
        self.level = 0.0

    @property
    def live(self) -> bool:
        return self._stream is not None and not self._ended

    def start(self) -> "AudioTrack":
        """Open the input stream.

        Raises:
            PermissionDenied: The OS refused microphone access.
            StreamAcquisitionFailed: No usable input device or PortAudio failure.
        """
        try:
            import sounddevice as sd
        except OSError as e:
            raise StreamAcquisitionFailed(f"Audio backend unavailable: {e}") from e

        try:
            stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=self.blocksize,
                callback=self._on_audio,
            )
            stream.start()
        except PermissionError as e:
            raise PermissionDenied() from e
        except Exception as e:
            raise StreamAcquisitionFailed(f"No audio track for device {self.device!r}: {e}") from e

        self._stream = stream
        logger.info("Audio track started device=%s sr=%s ch=%s", self.device, self.sample_rate, self.channels)
        return self

    def _on_audio(self, indata, frames, time_info, status):
        if status:
            logger.debug("sd_status: %s", status)
        self.level = left_channel_rms(indata)

    def stop(self) -> None:
        with self._lock:
            if self._ended:
                return
            self._ended = True
            stream, self._stream = self._stream, None
            self.level = 0.0
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
