from __future__ import annotations

import asyncio
import contextlib
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Protocol

import janus

from live_transcriber.core.audio.format import AudioChunk, AudioFormat
from live_transcriber.core.errors import DeviceUnavailable

logger = logging.getLogger(__name__)

_POLL_S = 0.05


class AudioSource(Protocol):
    def chunks(self) -> AsyncIterator[AudioChunk]: ...
    async def close(self) -> None: ...


class InputDevice(Protocol):
    def read(self, frames: int) -> bytes: ...
    def close(self) -> None: ...


class InputBackend(Protocol):
    def check(self, audio_format: AudioFormat, *, device: int | str | None) -> None: ...
    def open(self, audio_format: AudioFormat, *, device: int | str | None) -> InputDevice: ...


def _import_sounddevice() -> Any:
    try:
        import sounddevice as sd  # type: ignore
    except (ImportError, OSError) as exc:  # OSError: PortAudio library not found
        raise DeviceUnavailable(f"Audio input is not available: {exc}") from exc
    return sd


class _SoundDeviceInput:
    def __init__(self, stream: Any) -> None:
        self._stream = stream

    def read(self, frames: int) -> bytes:
        data, overflowed = self._stream.read(frames)
        if overflowed:
            logger.warning("Microphone input overflow; audio was dropped by the device")
        return bytes(data)

    def close(self) -> None:
        try:
            self._stream.stop()
        finally:
            self._stream.close()


class SoundDeviceInputBackend:
    """Blocking PortAudio input via sounddevice.RawInputStream (int16)."""

    def check(self, audio_format: AudioFormat, *, device: int | str | None) -> None:
        sd = _import_sounddevice()

        try:
            sd.check_input_settings(
                device=device,
                channels=audio_format.channels,
                dtype="int16",
                samplerate=audio_format.sample_rate_hz,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailable(f"No supported microphone found: {exc}") from exc

    def open(self, audio_format: AudioFormat, *, device: int | str | None) -> InputDevice:
        sd = _import_sounddevice()

        self.check(audio_format, device=device)
        try:
            stream = sd.RawInputStream(
                samplerate=audio_format.sample_rate_hz,
                channels=audio_format.channels,
                dtype="int16",
                device=device,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise DeviceUnavailable(f"Failed to open microphone: {exc}") from exc
        return _SoundDeviceInput(stream)


@dataclass(slots=True)
class MicrophoneAudioSource:
    """Microphone capture that reads exactly one chunk per consumer pull.

    Device reads happen on a dedicated thread. The consumer grants one read at a
    time, so a slow consumer stalls capture instead of queueing audio, and a
    cancelled consumer stops further reads. The device is released exactly once.
    """

    audio_format: AudioFormat = field(default_factory=AudioFormat)
    chunk_bytes: int = 6400
    device: int | str | None = None
    backend: InputBackend = field(default_factory=SoundDeviceInputBackend)

    _input: InputDevice | None = field(init=False, default=None, repr=False)
    _queue: janus.Queue[AudioChunk | BaseException | None] | None = field(
        init=False, default=None, repr=False
    )
    _thread: threading.Thread | None = field(init=False, default=None, repr=False)
    _stop: threading.Event = field(init=False, repr=False)
    _demand: threading.Semaphore = field(init=False, repr=False)
    _release_lock: threading.Lock = field(init=False, repr=False)
    _released: bool = field(init=False, default=False)
    _started: bool = field(init=False, default=False)
    _closed: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self.audio_format.frames_for(self.chunk_bytes)
        self._stop = threading.Event()
        self._demand = threading.Semaphore(0)
        self._release_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._input is not None and not self._released

    def check(self) -> None:
        self.backend.check(self.audio_format, device=self.device)

    def open(self) -> None:
        if self._closed:
            raise RuntimeError("audio source is closed")
        if self._input is not None:
            return
        self._input = self.backend.open(self.audio_format, device=self.device)
        logger.info(
            "Microphone opened (device=%s, rate=%d, chunk=%d bytes / %.0fms)",
            self.device,
            self.audio_format.sample_rate_hz,
            self.chunk_bytes,
            self.audio_format.duration_ms(self.chunk_bytes),
        )

    async def chunks(self) -> AsyncIterator[AudioChunk]:
        if self._started:
            raise RuntimeError("chunks() can only be consumed once")
        self._started = True

        try:
            self.open()
            self._queue = janus.Queue(maxsize=1)
            self._thread = threading.Thread(
                target=self._capture, name="mic-capture", daemon=True
            )
            self._thread.start()

            while True:
                self._demand.release()
                item = await self._queue.async_q.get()
                if item is None:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        self._demand.release()

        thread = self._thread
        if thread is not None:
            await asyncio.to_thread(thread.join)
            self._thread = None
        self._release_device()

        if self._queue is not None:
            self._queue.close()
            with contextlib.suppress(Exception):
                await self._queue.wait_closed()

    def _capture(self) -> None:
        assert self._input is not None and self._queue is not None
        frames = self.audio_format.frames_for(self.chunk_bytes)
        sequence = 0
        try:
            while not self._stop.is_set():
                if not self._demand.acquire(timeout=_POLL_S):
                    continue
                if self._stop.is_set():
                    break
                data = self._input.read(frames)
                if not data:
                    self._offer(None)
                    break
                self._offer(AudioChunk(data=data, sequence=sequence))
                sequence += 1
        except Exception as exc:
            logger.exception("Microphone capture failed")
            self._offer(exc)
        finally:
            self._release_device()

    def _offer(self, item: AudioChunk | BaseException | None) -> None:
        assert self._queue is not None
        while not self._stop.is_set():
            try:
                self._queue.sync_q.put(item, timeout=_POLL_S)
                return
            except queue.Full:
                continue

    def _release_device(self) -> None:
        with self._release_lock:
            if self._released or self._input is None:
                return
            self._released = True
            try:
                self._input.close()
            except Exception:
                logger.exception("Failed to release microphone")
            else:
                logger.info("Microphone released")


def list_input_devices() -> list[dict[str, Any]]:
    sd = _import_sounddevice()

    hostapis = sd.query_hostapis()
    result: list[dict[str, Any]] = []
    for idx, info in enumerate(sd.query_devices()):
        if int(info.get("max_input_channels", 0) or 0) <= 0:
            continue
        hostapi = int(info.get("hostapi", -1) or 0)
        result.append(
            {
                "index": idx,
                "name": str(info.get("name", "") or ""),
                "host_api": str(hostapis[hostapi].get("name", "")) if 0 <= hostapi < len(hostapis) else "",
                "channels": int(info.get("max_input_channels", 0) or 0),
                "default_sample_rate": float(info.get("default_samplerate", 0.0) or 0.0),
            }
        )
    return result


def resolve_sounddevice_input_device(*, host_api: str = "", device: str = "") -> int | None:
    host_api = (host_api or "").strip()
    device = (device or "").strip()
    if not host_api and not device:
        return None

    sd = _import_sounddevice()

    hostapis = sd.query_hostapis()
    devices = sd.query_devices()

    hostapi_index: int | None = None
    if host_api:
        for idx, item in enumerate(hostapis):
            name = str(item.get("name", "") or "")
            if name.lower() == host_api.lower():
                hostapi_index = idx
                break
        if hostapi_index is None:
            raise DeviceUnavailable(f"Unknown audio host API: {host_api!r}")

    if device:
        with contextlib.suppress(ValueError):
            idx = int(device)
            if 0 <= idx < len(devices) and int(devices[idx].get("max_input_channels", 0) or 0) > 0:
                if hostapi_index is None or int(devices[idx].get("hostapi", -1)) == hostapi_index:
                    return idx

    if hostapi_index is not None and not device:
        default_input = hostapis[hostapi_index].get("default_input_device")
        if isinstance(default_input, int) and default_input >= 0:
            return default_input

    for idx, info in enumerate(devices):
        if int(info.get("max_input_channels", 0) or 0) <= 0:
            continue
        if hostapi_index is not None and int(info.get("hostapi", -1)) != hostapi_index:
            continue
        if device:
            name = str(info.get("name", "") or "")
            if device.lower() not in name.lower():
                continue
        return idx

    raise DeviceUnavailable(f"No input device matches {device or host_api!r}")
