from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

SILENCE_DBFS = -120.0


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Signed little-endian PCM; the service expects 16 kHz mono pcm16."""

    sample_rate_hz: int = 16000
    channels: int = 1
    sample_width_bytes: int = 2

    def __post_init__(self) -> None:
        if self.sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if self.channels <= 0:
            raise ValueError("channels must be > 0")
        if self.sample_width_bytes != 2:
            raise ValueError("only 16-bit samples are supported")

    @property
    def frame_bytes(self) -> int:
        return self.channels * self.sample_width_bytes

    def frames_for(self, chunk_bytes: int) -> int:
        if chunk_bytes <= 0 or chunk_bytes % self.frame_bytes:
            raise ValueError(f"chunk_bytes must be a positive multiple of {self.frame_bytes}")
        return chunk_bytes // self.frame_bytes

    def duration_ms(self, n_bytes: int) -> float:
        return 1000.0 * (n_bytes / self.frame_bytes) / self.sample_rate_hz


@dataclass(frozen=True, slots=True)
class AudioChunk:
    data: bytes
    sequence: int = 0

    def __len__(self) -> int:
        return len(self.data)


def pcm16le_rms_dbfs(data: bytes) -> float:
    samples = np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0
    if samples.size == 0:
        return SILENCE_DBFS
    rms = float(np.sqrt(np.mean(np.square(samples))))
    if rms <= 0.0:
        return SILENCE_DBFS
    return max(SILENCE_DBFS, 20.0 * math.log10(rms))
