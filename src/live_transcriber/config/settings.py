from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

CONFIG_ENV = "LIVE_TRANSCRIBER_CONFIG"
APP_DIR_NAME = "live-transcriber"


class NoiseReduction(str, Enum):
    NEAR_FIELD = "near_field"
    FAR_FIELD = "far_field"
    OFF = "off"


@dataclass(slots=True)
class AudioSettings:
    sample_rate_hz: int = 16000
    channels: int = 1
    chunk_bytes: int = 6400
    input_host_api: str = ""
    input_device: str = ""

    def validate(self) -> None:
        if self.sample_rate_hz not in (8000, 16000, 24000):
            raise ValueError("sample_rate_hz must be 8000, 16000 or 24000")
        if self.channels != 1:
            raise ValueError("channels must be 1 (mono)")
        if self.chunk_bytes <= 0 or self.chunk_bytes % 2:
            raise ValueError("chunk_bytes must be a positive even number")
        if self.input_host_api is None:
            raise ValueError("input_host_api must be a string")
        if self.input_device is None:
            raise ValueError("input_device must be a string")


@dataclass(slots=True)
class ServiceSettings:
    session_url: str = "https://api.openai.com/v1/realtime/transcription_sessions"
    realtime_url: str = "wss://api.openai.com/v1/realtime?intent=transcription"
    api_key_env: str = "OPENAI_API_KEY"
    beta_header: str = "realtime=v1"
    request_timeout_s: float = 10.0
    open_timeout_s: float = 10.0

    def validate(self) -> None:
        if not self.session_url.startswith(("http://", "https://")):
            raise ValueError("session_url must be an http(s) URL")
        if not self.realtime_url.startswith(("ws://", "wss://")):
            raise ValueError("realtime_url must be a ws(s) URL")
        if not self.api_key_env:
            raise ValueError("api_key_env must be non-empty")
        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be > 0")
        if self.open_timeout_s <= 0:
            raise ValueError("open_timeout_s must be > 0")


@dataclass(slots=True)
class TranscriptionSettings:
    model: str = "gpt-4o-transcribe"
    prompt: str = "Expect words relating to software development and programming keywords."
    language: str = "en"
    noise_reduction: NoiseReduction = NoiseReduction.NEAR_FIELD
    include_logprobs: bool = True

    def validate(self) -> None:
        if not self.model:
            raise ValueError("model must be non-empty")
        if not isinstance(self.noise_reduction, NoiseReduction):
            raise ValueError("invalid noise_reduction")


@dataclass(slots=True)
class TurnDetectionSettings:
    threshold: float = 0.5
    prefix_padding_ms: int = 300
    silence_duration_ms: int = 200

    def validate(self) -> None:
        if not (0.0 <= self.threshold <= 1.0):
            raise ValueError("threshold must be in 0.0..1.0")
        if self.prefix_padding_ms < 0:
            raise ValueError("prefix_padding_ms must be >= 0")
        if self.silence_duration_ms <= 0:
            raise ValueError("silence_duration_ms must be > 0")


@dataclass(slots=True)
class OutputSettings:
    debounce_s: float = 2.0

    def validate(self) -> None:
        if self.debounce_s <= 0:
            raise ValueError("debounce_s must be > 0")


@dataclass(slots=True)
class AppSettings:
    audio: AudioSettings = field(default_factory=AudioSettings)
    service: ServiceSettings = field(default_factory=ServiceSettings)
    transcription: TranscriptionSettings = field(default_factory=TranscriptionSettings)
    turn_detection: TurnDetectionSettings = field(default_factory=TurnDetectionSettings)
    output: OutputSettings = field(default_factory=OutputSettings)

    def validate(self) -> None:
        self.audio.validate()
        self.service.validate()
        self.transcription.validate()
        self.turn_detection.validate()
        self.output.validate()


def _enum_to_value(obj: object) -> object:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _enum_to_value(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_enum_to_value(v) for v in obj]
    return obj


def to_dict(settings: AppSettings) -> dict[str, Any]:
    return _enum_to_value(asdict(settings))  # type: ignore[return-value]


def _parse_noise_reduction(value: object) -> NoiseReduction:
    if value is None:
        return NoiseReduction.OFF
    try:
        return NoiseReduction(str(value))
    except ValueError:
        return NoiseReduction.NEAR_FIELD


def from_dict(data: dict[str, Any]) -> AppSettings:
    audio_data = data.get("audio") or {}
    service_data = data.get("service") or {}
    transcription_data = data.get("transcription") or {}
    turn_data = data.get("turn_detection") or {}
    output_data = data.get("output") or {}

    defaults = AppSettings()

    settings = AppSettings(
        audio=AudioSettings(
            sample_rate_hz=int(audio_data.get("sample_rate_hz", defaults.audio.sample_rate_hz)),
            channels=int(audio_data.get("channels", defaults.audio.channels)),
            chunk_bytes=int(audio_data.get("chunk_bytes", defaults.audio.chunk_bytes)),
            input_host_api=str(audio_data.get("input_host_api") or ""),
            input_device=str(audio_data.get("input_device") or ""),
        ),
        service=ServiceSettings(
            session_url=str(service_data.get("session_url", defaults.service.session_url)),
            realtime_url=str(service_data.get("realtime_url", defaults.service.realtime_url)),
            api_key_env=str(service_data.get("api_key_env", defaults.service.api_key_env)),
            beta_header=str(service_data.get("beta_header", defaults.service.beta_header)),
            request_timeout_s=float(
                service_data.get("request_timeout_s", defaults.service.request_timeout_s)
            ),
            open_timeout_s=float(service_data.get("open_timeout_s", defaults.service.open_timeout_s)),
        ),
        transcription=TranscriptionSettings(
            model=str(transcription_data.get("model", defaults.transcription.model)),
            prompt=str(transcription_data.get("prompt", defaults.transcription.prompt) or ""),
            language=str(transcription_data.get("language", defaults.transcription.language) or ""),
            noise_reduction=_parse_noise_reduction(
                transcription_data.get("noise_reduction", defaults.transcription.noise_reduction.value)
            ),
            include_logprobs=bool(
                transcription_data.get("include_logprobs", defaults.transcription.include_logprobs)
            ),
        ),
        turn_detection=TurnDetectionSettings(
            threshold=float(turn_data.get("threshold", defaults.turn_detection.threshold)),
            prefix_padding_ms=int(
                turn_data.get("prefix_padding_ms", defaults.turn_detection.prefix_padding_ms)
            ),
            silence_duration_ms=int(
                turn_data.get("silence_duration_ms", defaults.turn_detection.silence_duration_ms)
            ),
        ),
        output=OutputSettings(
            debounce_s=float(output_data.get("debounce_s", defaults.output.debounce_s)),
        ),
    )
    settings.validate()
    return settings


def load_settings(path: Path) -> AppSettings:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"settings file must contain a JSON object: {path}")
    return from_dict(data)


def save_settings(path: Path, settings: AppSettings) -> None:
    settings.validate()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(to_dict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


def default_settings_path(env: Mapping[str, str] | None = None) -> Path:
    """Settings file location: ``$LIVE_TRANSCRIBER_CONFIG`` or the per-user config dir."""
    env = os.environ if env is None else env
    override = (env.get(CONFIG_ENV) or "").strip()
    if override:
        return Path(override).expanduser()

    if sys.platform.startswith("win"):
        base = env.get("APPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Roaming"
    elif sys.platform == "darwin":
        root = Path.home() / "Library" / "Application Support"
    else:
        base = env.get("XDG_CONFIG_HOME")
        root = Path(base) if base else Path.home() / ".config"
    return root / APP_DIR_NAME / "settings.json"
