from __future__ import annotations

import numpy as np
import pytest

from live_transcriber.core.audio.format import (
    SILENCE_DBFS,
    AudioChunk,
    AudioFormat,
    pcm16le_rms_dbfs,
)


def test_default_format_chunk_arithmetic():
    fmt = AudioFormat()
    assert fmt.frame_bytes == 2
    assert fmt.frames_for(6400) == 3200
    assert fmt.duration_ms(6400) == pytest.approx(200.0)


def test_frames_for_rejects_partial_frames():
    with pytest.raises(ValueError):
        AudioFormat().frames_for(6401)
    with pytest.raises(ValueError):
        AudioFormat(channels=2).frames_for(6402)
    with pytest.raises(ValueError):
        AudioFormat().frames_for(0)


def test_format_rejects_non_16bit():
    with pytest.raises(ValueError):
        AudioFormat(sample_width_bytes=4)


def test_chunk_length_is_byte_length():
    assert len(AudioChunk(data=b"\x00" * 10)) == 10


def test_rms_of_silence_is_floor():
    assert pcm16le_rms_dbfs(b"\x00\x00" * 100) == SILENCE_DBFS
    assert pcm16le_rms_dbfs(b"") == SILENCE_DBFS


def test_rms_of_half_scale_signal():
    data = np.full((1600,), 16384, dtype="<i2").tobytes()
    assert pcm16le_rms_dbfs(data) == pytest.approx(-6.02, abs=0.05)


def test_rms_of_full_scale_signal():
    data = np.array([32767, -32768] * 800, dtype="<i2").tobytes()
    assert pcm16le_rms_dbfs(data) == pytest.approx(0.0, abs=0.01)
