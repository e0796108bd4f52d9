from __future__ import annotations

import logging
import os
from typing import Mapping

import httpx

from live_transcriber.config.settings import AppSettings
from live_transcriber.core.audio.format import AudioFormat
from live_transcriber.core.audio.source import (
    MicrophoneAudioSource,
    resolve_sounddevice_input_device,
)
from live_transcriber.core.errors import ConfigurationError
from live_transcriber.core.session.negotiator import mask_secret

logger = logging.getLogger(__name__)


def resolve_api_key(settings: AppSettings, env: Mapping[str, str] | None = None) -> str:
    env = os.environ if env is None else env
    name = settings.service.api_key_env
    value = (env.get(name) or "").strip()
    if not value:
        raise ConfigurationError(f"No {name} found in environment!")
    logger.debug("Using API key %s from $%s", mask_secret(value), name)
    return value


def create_audio_source(settings: AppSettings) -> MicrophoneAudioSource:
    device = resolve_sounddevice_input_device(
        host_api=settings.audio.input_host_api,
        device=settings.audio.input_device,
    )
    return MicrophoneAudioSource(
        audio_format=AudioFormat(
            sample_rate_hz=settings.audio.sample_rate_hz,
            channels=settings.audio.channels,
        ),
        chunk_bytes=settings.audio.chunk_bytes,
        device=device,
    )


def create_http_client(settings: AppSettings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.service.request_timeout_s)
