from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from live_transcriber.config.settings import AppSettings, NoiseReduction, TranscriptionSettings
from live_transcriber.core.errors import AuthenticationError, ProtocolError, SessionFailed
from live_transcriber.core.session.negotiator import SessionNegotiator, build_session_config


def _negotiate(handler, *, settings: AppSettings | None = None, api_key: str = "sk-test"):
    async def run():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            negotiator = SessionNegotiator(client=client, settings=settings or AppSettings())
            return await negotiator.negotiate(api_key)

    return asyncio.run(run())


def test_negotiate_returns_session_id_and_bearer():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["beta"] = request.headers.get("OpenAI-Beta")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "sess_1", "client_secret": {"value": "tok_1"}})

    credential = _negotiate(handler)

    assert credential.as_tuple() == ("sess_1", "Bearer tok_1")
    assert credential.expires_at is None
    assert seen["method"] == "POST"
    assert seen["url"] == "https://api.openai.com/v1/realtime/transcription_sessions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["beta"] == "realtime=v1"

    body = seen["body"]
    assert body["input_audio_format"] == "pcm16"
    assert body["input_audio_transcription"]["model"] == "gpt-4o-transcribe"
    assert body["input_audio_transcription"]["language"] == "en"
    assert body["turn_detection"] == {
        "type": "server_vad",
        "threshold": 0.5,
        "prefix_padding_ms": 300,
        "silence_duration_ms": 200,
    }
    assert body["input_audio_noise_reduction"] == {"type": "near_field"}
    assert body["include"] == ["item.input_audio_transcription.logprobs"]


def test_negotiate_parses_expiry():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"id": "sess_2", "client_secret": {"value": "tok_2", "expires_at": 1700000000}},
        )

    credential = _negotiate(handler)
    assert credential.expires_at == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def test_non_success_status_is_authentication_error():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

    with pytest.raises(AuthenticationError, match="Incorrect API key") as info:
        _negotiate(handler)
    assert info.value.status_code == 401


@pytest.mark.parametrize(
    "payload",
    [
        {"client_secret": {"value": "tok"}},
        {"id": "sess_1"},
        {"id": "sess_1", "client_secret": {}},
        {"id": "sess_1", "client_secret": {"value": ""}},
        ["not", "an", "object"],
    ],
)
def test_missing_fields_are_protocol_errors(payload):
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(ProtocolError):
        _negotiate(handler)


def test_non_json_response_is_protocol_error():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(ProtocolError):
        _negotiate(handler)


def test_transport_error_is_session_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SessionFailed):
        _negotiate(handler)


def test_negotiate_is_single_attempt():
    calls = []

    def handler(_request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(503, text="unavailable")

    with pytest.raises(AuthenticationError):
        _negotiate(handler)
    assert len(calls) == 1


def test_session_config_omits_disabled_options():
    config = build_session_config(
        TranscriptionSettings(
            prompt="",
            language="",
            noise_reduction=NoiseReduction.OFF,
            include_logprobs=False,
        ),
        AppSettings().turn_detection,
    )
    assert config["input_audio_transcription"] == {"model": "gpt-4o-transcribe"}
    assert config["input_audio_noise_reduction"] is None
    assert config["include"] == []


def test_credential_repr_masks_token():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "sess_1", "client_secret": {"value": "ek_supersecret"}})

    credential = _negotiate(handler)
    assert "supersecret" not in repr(credential)
