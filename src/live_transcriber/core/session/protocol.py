"""Realtime transcription session over a persistent WebSocket.

Owns the connection for one session: waits for the server to confirm the
session, then forwards microphone chunks as ``input_audio_buffer.append``
frames while inbound events grow the transcript.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Protocol

from live_transcriber.core.audio.format import pcm16le_rms_dbfs
from live_transcriber.core.audio.source import AudioSource
from live_transcriber.core.errors import MalformedEventError, SessionFailed
from live_transcriber.core.session.events import (
    BufferCommitted,
    ItemCreated,
    ServerEvent,
    ServiceError,
    SessionCreated,
    SessionUpdated,
    SpeechStarted,
    SpeechStopped,
    TranscriptionCompleted,
    TranscriptionDelta,
    UnknownEvent,
    audio_append_frame,
    encode_frame,
    new_event_id,
    parse_server_event,
    session_update_frame,
)
from live_transcriber.core.session.negotiator import SessionCredential
from live_transcriber.core.transcript import TranscriptState

logger = logging.getLogger(__name__)

FINAL_SEPARATOR = " "


class SessionState(str, Enum):
    CONNECTING = "CONNECTING"
    AWAITING_SESSION_CREATED = "AWAITING_SESSION_CREATED"
    STREAMING = "STREAMING"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"
    FAILED = "FAILED"


class Connection(Protocol):
    async def send(self, message: str) -> None: ...
    async def close(self) -> None: ...
    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str, Mapping[str, str]], Awaitable[Connection]]


def websocket_connector(*, open_timeout_s: float = 10.0) -> Connector:
    async def _connect(url: str, headers: Mapping[str, str]) -> Connection:
        import websockets

        return await websockets.connect(
            url,
            additional_headers=dict(headers),
            open_timeout=open_timeout_s,
            max_size=None,
        )

    return _connect


def _is_clean_close(exc: BaseException) -> bool:
    from websockets.exceptions import ConnectionClosedOK

    return isinstance(exc, ConnectionClosedOK)


@dataclass(slots=True)
class ProtocolSession:
    credential: SessionCredential
    audio_source: AudioSource
    transcript: TranscriptState
    url: str = "wss://api.openai.com/v1/realtime?intent=transcription"
    beta_header: str = "realtime=v1"
    session_update: Mapping[str, Any] = field(default_factory=dict)
    connector: Connector = field(default_factory=websocket_connector)
    level_log_every: int = 50

    _state: SessionState = field(init=False, default=SessionState.CONNECTING)
    _ws: Connection | None = field(init=False, default=None, repr=False)
    _mic_task: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _send_lock: asyncio.Lock = field(init=False, repr=False)
    _failure: BaseException | None = field(init=False, default=None, repr=False)
    _ran: bool = field(init=False, default=False)
    frames_sent: int = field(init=False, default=0)
    events_received: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self._send_lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        logger.info("[Session] %s -> %s", self._state.value, state.value)
        self._state = state

    async def run(self) -> None:
        """Run the session until the remote closes, the task is cancelled or I/O fails.

        Raises SessionFailed when the session ends because of a failure.
        Cancellation propagates after the microphone and connection are closed.
        """
        if self._ran:
            raise RuntimeError("ProtocolSession.run() can only be called once")
        self._ran = True

        self._set_state(SessionState.CONNECTING)
        headers = {"Authorization": self.credential.bearer_token}
        if self.beta_header:
            headers["OpenAI-Beta"] = self.beta_header

        try:
            self._ws = await self.connector(self.url, headers)
        except asyncio.CancelledError:
            await self._shutdown()
            raise
        except Exception as exc:
            logger.error("[Session] Connection failed: %s", exc)
            self._failure = exc
            await self._shutdown()
            raise SessionFailed(f"Failed to connect: {exc}") from exc

        logger.info("[Session] Connected (session_id=%s)", self.credential.session_id)
        self._set_state(SessionState.AWAITING_SESSION_CREATED)

        try:
            await self._read_loop()
        except asyncio.CancelledError:
            logger.info("[Session] Cancelled; closing")
            raise
        except Exception as exc:
            if _is_clean_close(exc):
                logger.info("[Session] Connection closed by remote")
            else:
                logger.error("[Session] Connection failed: %s", exc)
                self._failure = self._failure or exc
        finally:
            await self._shutdown()

        if self._failure is not None:
            raise SessionFailed(f"Session failed: {self._failure}") from self._failure

    async def _read_loop(self) -> None:
        assert self._ws is not None
        async for message in self._ws:
            self.events_received += 1
            if isinstance(message, bytes):
                logger.debug("[Session] Skipping binary frame (%d bytes)", len(message))
                continue
            try:
                event = parse_server_event(message)
            except MalformedEventError as exc:
                logger.warning("[Session] Skipping malformed event: %s", exc)
                continue
            await self._handle_event(event)

        if self._failure is None and self._state is not SessionState.CLOSING:
            logger.info("[Session] Connection closed by remote")

    async def _handle_event(self, event: ServerEvent) -> None:
        if isinstance(event, SessionCreated):
            await self._on_session_created(event)
            return

        if isinstance(event, TranscriptionDelta):
            if self._accepting_transcript(event):
                self.transcript.append(event.text)
            return

        if isinstance(event, ItemCreated):
            if event.transcript and event.transcript.strip() and self._accepting_transcript(event):
                self.transcript.append(event.transcript, separator=FINAL_SEPARATOR)
                logger.info("[Final chunk] => %s", event.transcript)
            return

        if isinstance(event, ServiceError):
            logger.warning("[Session] Service error (%s): %s", event.code or "-", event.message)
            return

        if isinstance(event, UnknownEvent):
            logger.info("[Session] Unknown message type: %s", event.type)
            return

        if isinstance(
            event,
            (SessionUpdated, SpeechStarted, SpeechStopped, BufferCommitted, TranscriptionCompleted),
        ):
            logger.debug("[Session] %s: %r", event.type, event)
            return

        logger.warning("[Session] Unhandled event variant: %r", event)

    def _accepting_transcript(self, event: ServerEvent) -> bool:
        if self._state is SessionState.STREAMING:
            return True
        logger.debug("[Session] Ignoring %s in state %s", event.type, self._state.value)
        return False

    async def _on_session_created(self, event: SessionCreated) -> None:
        if self._state is not SessionState.AWAITING_SESSION_CREATED:
            logger.warning("[Session] Ignoring repeated session.created in state %s", self._state.value)
            return

        await self._send(session_update_frame(self.session_update))
        self._set_state(SessionState.STREAMING)
        logger.info("[Session] Session created (%s). Starting mic stream...", event.session_id or "-")
        self._mic_task = asyncio.create_task(self._forward_microphone(), name="mic-forward")

    async def _send(self, frame: Mapping[str, Any]) -> None:
        async with self._send_lock:
            if self._ws is None:
                raise RuntimeError("connection is not open")
            await self._ws.send(encode_frame(frame))
            self.frames_sent += 1

    async def _forward_microphone(self) -> None:
        sent = 0
        try:
            async with contextlib.aclosing(self.audio_source.chunks()) as chunks:
                async for chunk in chunks:
                    if self._state is not SessionState.STREAMING:
                        break
                    await self._send(audio_append_frame(chunk, event_id=new_event_id()))
                    sent += 1
                    if sent == 1 or sent % self.level_log_every == 0:
                        logger.debug(
                            "[Mic] chunk #%d sent (%d bytes, %.1f dBFS)",
                            sent,
                            len(chunk),
                            pcm16le_rms_dbfs(chunk.data),
                        )
            logger.info("[Mic] Microphone stream ended after %d chunks", sent)
        except asyncio.CancelledError:
            logger.info("[Mic] Stopped after %d chunks", sent)
            raise
        except Exception as exc:
            if _is_clean_close(exc):
                logger.info("[Mic] Connection closed; stopped after %d chunks", sent)
                return
            logger.error("[Mic] Forwarding failed: %s", exc)
            self._failure = exc
            if self._ws is not None:
                with contextlib.suppress(Exception):
                    await self._ws.close()

    async def _shutdown(self) -> None:
        if self._state is not SessionState.FAILED:
            self._set_state(SessionState.CLOSING)

        mic_task = self._mic_task
        if mic_task is not None:
            mic_task.cancel()
            await asyncio.gather(mic_task, return_exceptions=True)
            self._mic_task = None

        with contextlib.suppress(Exception):
            await self.audio_source.close()

        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None

        self._set_state(SessionState.FAILED if self._failure is not None else SessionState.CLOSED)
