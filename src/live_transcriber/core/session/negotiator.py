"""Ephemeral session negotiation for realtime transcription.

A single authenticated POST exchanges the long-lived API key for a short-lived
session id and bearer credential used by the WebSocket connection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from live_transcriber.config.settings import (
    AppSettings,
    NoiseReduction,
    TranscriptionSettings,
    TurnDetectionSettings,
)
from live_transcriber.core.errors import AuthenticationError, ProtocolError, SessionFailed

logger = logging.getLogger(__name__)

LOGPROBS_INCLUDE = "item.input_audio_transcription.logprobs"


def mask_secret(value: str, *, unmasked_prefix: int = 3) -> str:
    if not value:
        return value
    if len(value) <= unmasked_prefix:
        return "*" * len(value)
    return value[:unmasked_prefix] + "****"


@dataclass(frozen=True, slots=True)
class SessionCredential:
    session_id: str
    bearer_token: str = field(repr=False)
    expires_at: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"SessionCredential(session_id={self.session_id!r}, "
            f"bearer_token={mask_secret(self.bearer_token, unmasked_prefix=10)!r}, "
            f"expires_at={self.expires_at!r})"
        )

    def as_tuple(self) -> tuple[str, str]:
        return self.session_id, self.bearer_token


def build_session_config(
    transcription: TranscriptionSettings,
    turn_detection: TurnDetectionSettings,
) -> dict[str, Any]:
    audio_transcription: dict[str, Any] = {"model": transcription.model}
    if transcription.prompt:
        audio_transcription["prompt"] = transcription.prompt
    if transcription.language:
        audio_transcription["language"] = transcription.language

    noise_reduction: dict[str, Any] | None = None
    if transcription.noise_reduction is not NoiseReduction.OFF:
        noise_reduction = {"type": transcription.noise_reduction.value}

    return {
        "input_audio_format": "pcm16",
        "input_audio_transcription": audio_transcription,
        "turn_detection": {
            "type": "server_vad",
            "threshold": turn_detection.threshold,
            "prefix_padding_ms": turn_detection.prefix_padding_ms,
            "silence_duration_ms": turn_detection.silence_duration_ms,
        },
        "input_audio_noise_reduction": noise_reduction,
        "include": [LOGPROBS_INCLUDE] if transcription.include_logprobs else [],
    }


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return resp.text[:200]


def _parse_expiry(value: object) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning("Ignoring out-of-range token expiry: %r", value)
        return None


@dataclass(slots=True)
class SessionNegotiator:
    client: httpx.AsyncClient
    settings: AppSettings = field(default_factory=AppSettings)

    async def negotiate(self, api_key: str) -> SessionCredential:
        if not api_key:
            raise ValueError("api_key must be non-empty")

        service = self.settings.service
        body = build_session_config(self.settings.transcription, self.settings.turn_detection)
        headers = {"Authorization": f"Bearer {api_key}"}
        if service.beta_header:
            headers["OpenAI-Beta"] = service.beta_header

        try:
            resp = await self.client.post(
                service.session_url,
                headers=headers,
                json=body,
                timeout=service.request_timeout_s,
            )
        except httpx.HTTPError as exc:
            raise SessionFailed(f"Session request failed: {exc}") from exc

        if not resp.is_success:
            raise AuthenticationError(
                f"Session request rejected ({resp.status_code}): {_error_message(resp)}",
                status_code=resp.status_code,
            )

        try:
            root = resp.json()
        except ValueError as exc:
            raise ProtocolError("Session response is not valid JSON") from exc
        if not isinstance(root, dict):
            raise ProtocolError("Session response must be a JSON object")

        session_id = root.get("id")
        if not isinstance(session_id, str) or not session_id:
            raise ProtocolError("No session id in response")

        client_secret = root.get("client_secret")
        if not isinstance(client_secret, dict):
            raise ProtocolError("No client_secret in response")
        token = client_secret.get("value")
        if not isinstance(token, str) or not token:
            raise ProtocolError("No client_secret value in response")

        expires_at = _parse_expiry(client_secret.get("expires_at"))
        if expires_at is not None:
            logger.info("Session token expires at %s", expires_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"))
        logger.info("Session negotiated: id=%s", session_id)

        return SessionCredential(session_id=session_id, bearer_token=f"Bearer {token}", expires_at=expires_at)
