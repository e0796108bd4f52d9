"""Realtime transcription protocol messages.

Inbound messages are decoded in two stages: the ``type`` tag is read first,
then the payload is decoded into the matching variant. Tags we do not know
become ``UnknownEvent`` so newer server versions never break the client.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping
from uuid import uuid4

from live_transcriber.core.audio.format import AudioChunk
from live_transcriber.core.errors import MalformedEventError

SESSION_CREATED = "transcription_session.created"
SESSION_UPDATED = "transcription_session.updated"
SESSION_UPDATE = "transcription_session.update"
TRANSCRIPTION_DELTA = "conversation.item.input_audio_transcription.delta"
TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
ITEM_CREATED = "conversation.item.created"
SPEECH_STARTED = "input_audio_buffer.speech_started"
SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
BUFFER_COMMITTED = "input_audio_buffer.committed"
BUFFER_APPEND = "input_audio_buffer.append"
ERROR = "error"


@dataclass(frozen=True, slots=True)
class SessionCreated:
    session_id: str | None = None
    type: str = SESSION_CREATED


@dataclass(frozen=True, slots=True)
class SessionUpdated:
    type: str = SESSION_UPDATED


@dataclass(frozen=True, slots=True)
class TranscriptionDelta:
    text: str
    item_id: str | None = None
    type: str = TRANSCRIPTION_DELTA


@dataclass(frozen=True, slots=True)
class TranscriptionCompleted:
    transcript: str
    item_id: str | None = None
    type: str = TRANSCRIPTION_COMPLETED


@dataclass(frozen=True, slots=True)
class ItemCreated:
    transcript: str | None
    item_id: str | None = None
    type: str = ITEM_CREATED


@dataclass(frozen=True, slots=True)
class SpeechStarted:
    audio_start_ms: int | None = None
    type: str = SPEECH_STARTED


@dataclass(frozen=True, slots=True)
class SpeechStopped:
    audio_end_ms: int | None = None
    type: str = SPEECH_STOPPED


@dataclass(frozen=True, slots=True)
class BufferCommitted:
    item_id: str | None = None
    type: str = BUFFER_COMMITTED


@dataclass(frozen=True, slots=True)
class ServiceError:
    message: str
    code: str | None = None
    type: str = ERROR


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    type: str
    payload: Mapping[str, Any] = field(default_factory=dict, repr=False)


ServerEvent = (
    SessionCreated
    | SessionUpdated
    | TranscriptionDelta
    | TranscriptionCompleted
    | ItemCreated
    | SpeechStarted
    | SpeechStopped
    | BufferCommitted
    | ServiceError
    | UnknownEvent
)


def _str_or_none(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _int_or_none(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, int) else None


def _decode_session_created(data: Mapping[str, Any]) -> SessionCreated:
    session = data.get("session")
    session_id = _str_or_none(session.get("id")) if isinstance(session, dict) else None
    return SessionCreated(session_id=session_id)


def _decode_delta(data: Mapping[str, Any]) -> TranscriptionDelta:
    text = _str_or_none(data.get("delta"))
    if text is None:
        text = _str_or_none(data.get("transcript"))
    return TranscriptionDelta(text=text or "", item_id=_str_or_none(data.get("item_id")))


def _decode_completed(data: Mapping[str, Any]) -> TranscriptionCompleted:
    return TranscriptionCompleted(
        transcript=_str_or_none(data.get("transcript")) or "",
        item_id=_str_or_none(data.get("item_id")),
    )


def _decode_item_created(data: Mapping[str, Any]) -> ItemCreated:
    item = data.get("item")
    if not isinstance(item, dict):
        return ItemCreated(transcript=None)
    item_id = _str_or_none(item.get("id"))
    content = item.get("content")
    if not isinstance(content, list):
        return ItemCreated(transcript=None, item_id=item_id)
    for entry in content:
        if isinstance(entry, dict) and entry.get("type") == "input_audio":
            return ItemCreated(transcript=_str_or_none(entry.get("transcript")), item_id=item_id)
    return ItemCreated(transcript=None, item_id=item_id)


def _decode_error(data: Mapping[str, Any]) -> ServiceError:
    error = data.get("error")
    if isinstance(error, dict):
        return ServiceError(
            message=_str_or_none(error.get("message")) or "Unknown error",
            code=_str_or_none(error.get("code")),
        )
    return ServiceError(message=_str_or_none(error) or "Unknown error")


_DECODERS: dict[str, Callable[[Mapping[str, Any]], ServerEvent]] = {
    SESSION_CREATED: _decode_session_created,
    SESSION_UPDATED: lambda _data: SessionUpdated(),
    TRANSCRIPTION_DELTA: _decode_delta,
    TRANSCRIPTION_COMPLETED: _decode_completed,
    ITEM_CREATED: _decode_item_created,
    SPEECH_STARTED: lambda data: SpeechStarted(audio_start_ms=_int_or_none(data.get("audio_start_ms"))),
    SPEECH_STOPPED: lambda data: SpeechStopped(audio_end_ms=_int_or_none(data.get("audio_end_ms"))),
    BUFFER_COMMITTED: lambda data: BufferCommitted(item_id=_str_or_none(data.get("item_id"))),
    ERROR: _decode_error,
}


def parse_server_event(raw: str | bytes) -> ServerEvent:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedEventError("event is not valid UTF-8") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedEventError(f"event is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("event must be a JSON object")

    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("event has no type tag")

    decoder = _DECODERS.get(event_type)
    if decoder is None:
        return UnknownEvent(type=event_type, payload=data)
    return decoder(data)


def new_event_id() -> str:
    return f"event_{uuid4().hex}"


def session_update_frame(session: Mapping[str, Any] | None = None) -> dict[str, Any]:
    return {"type": SESSION_UPDATE, "session": dict(session or {})}


def audio_append_frame(chunk: AudioChunk | bytes, *, event_id: str) -> dict[str, Any]:
    data = chunk.data if isinstance(chunk, AudioChunk) else chunk
    return {
        "type": BUFFER_APPEND,
        "event_id": event_id,
        "audio": base64.b64encode(data).decode("ascii"),
    }


def encode_frame(frame: Mapping[str, Any]) -> str:
    return json.dumps(frame, ensure_ascii=False, separators=(",", ":"))
