from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, Mapping, TextIO

import httpx

from live_transcriber.app.stop_signal import StopSignal
from live_transcriber.app.wiring import create_audio_source, create_http_client, resolve_api_key
from live_transcriber.config.settings import AppSettings
from live_transcriber.core.audio.source import MicrophoneAudioSource
from live_transcriber.core.errors import (
    AuthenticationError,
    ConfigurationError,
    DeviceUnavailable,
    ProtocolError,
    SessionFailed,
)
from live_transcriber.core.session.negotiator import SessionCredential, SessionNegotiator
from live_transcriber.core.session.protocol import Connector, ProtocolSession, websocket_connector
from live_transcriber.core.transcript import TranscriptState

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SESSION_FAILED = 1
EXIT_FATAL = 2


@dataclass(slots=True)
class TranscriberSupervisor:
    """Runs one transcription session from negotiation to coordinated shutdown."""

    settings: AppSettings
    stop_signal: StopSignal
    env: Mapping[str, str] | None = None
    http_client_factory: Callable[[AppSettings], httpx.AsyncClient] = create_http_client
    audio_source_factory: Callable[[AppSettings], MicrophoneAudioSource] = create_audio_source
    connector: Connector | None = None
    out: TextIO | None = None
    err: TextIO | None = None

    transcript: TranscriptState = field(init=False)
    session: ProtocolSession | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.transcript = TranscriptState(debounce_s=self.settings.output.debounce_s)

    async def run(self) -> int:
        try:
            api_key = resolve_api_key(self.settings, self.env)
            source = self.audio_source_factory(self.settings)
            source.check()
        except (ConfigurationError, DeviceUnavailable, OSError) as exc:
            self._fatal(exc)
            return EXIT_FATAL

        self._print("Starting realtime transcription. Press ENTER at any time to stop.")

        async with self.http_client_factory(self.settings) as client:
            try:
                credential = await SessionNegotiator(client=client, settings=self.settings).negotiate(
                    api_key
                )
            except (AuthenticationError, ProtocolError, SessionFailed) as exc:
                await source.close()
                self._fatal(exc)
                return EXIT_FATAL

            return await self._stream(credential, source)

    async def _stream(self, credential: SessionCredential, source: MicrophoneAudioSource) -> int:
        service = self.settings.service
        self.session = ProtocolSession(
            credential=credential,
            audio_source=source,
            transcript=self.transcript,
            url=service.realtime_url,
            beta_header=service.beta_header,
            connector=self.connector or websocket_connector(open_timeout_s=service.open_timeout_s),
        )

        printer_task = asyncio.create_task(self._print_segments(), name="transcript-printer")
        session_task = asyncio.create_task(self.session.run(), name="transcription-session")
        stop_task = asyncio.create_task(self.stop_signal.wait(), name="stop-signal")

        try:
            done, _ = await asyncio.wait({session_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if stop_task in done:
                self._print("Stop requested. Stopping ...")
        finally:
            session_task.cancel()
            stop_task.cancel()
            session_result, _ = await asyncio.gather(session_task, stop_task, return_exceptions=True)
            self.transcript.close()
            await asyncio.gather(printer_task, return_exceptions=True)

        self._print(f'Cleaning up. Final transcript => "{self.transcript.text}"')

        if isinstance(session_result, asyncio.CancelledError) or session_result is None:
            return EXIT_OK
        if isinstance(session_result, SessionFailed):
            self._fatal(session_result)
            return EXIT_SESSION_FAILED
        logger.error("Session ended unexpectedly", exc_info=session_result)
        return EXIT_SESSION_FAILED

    async def _print_segments(self) -> None:
        async for snapshot in self.transcript.subscribe():
            self._print(f"\n[Transcript] => {snapshot.segment.strip()}\n")

    def _print(self, text: str) -> None:
        print(text, file=self.out or sys.stdout, flush=True)

    def _fatal(self, exc: BaseException) -> None:
        logger.debug("Fatal error", exc_info=exc)
        print(f"Error: {exc}", file=self.err or sys.stderr, flush=True)
