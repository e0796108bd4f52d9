from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
import threading
from dataclasses import dataclass, field
from typing import Protocol, TextIO

logger = logging.getLogger(__name__)


class StopSignal(Protocol):
    async def wait(self) -> str: ...


@dataclass(slots=True)
class StdinStopSignal:
    """Resolves when a line (or EOF) arrives on stdin, or on SIGINT/SIGTERM.

    The blocking readline runs on a daemon thread so a pending read never
    holds up interpreter exit.
    """

    stream: TextIO = field(default_factory=lambda: sys.stdin)
    handle_signals: bool = True

    async def wait(self) -> str:
        loop = asyncio.get_running_loop()
        done: asyncio.Future[str] = loop.create_future()

        def _resolve(reason: str) -> None:
            if not done.done():
                done.set_result(reason)

        def _read() -> None:
            try:
                line = self.stream.readline()
            except (OSError, ValueError) as exc:
                logger.warning("stdin is not readable: %s", exc)
                return
            with contextlib.suppress(RuntimeError):  # loop already closed
                loop.call_soon_threadsafe(_resolve, "enter" if line else "eof")

        threading.Thread(target=_read, name="stdin-stop", daemon=True).start()

        installed: list[signal.Signals] = []
        if self.handle_signals:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, _resolve, sig.name)
                except (NotImplementedError, RuntimeError, ValueError):
                    continue
                installed.append(sig)

        try:
            return await done
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)


@dataclass(slots=True)
class EventStopSignal:
    """Programmatic stop for embedding the supervisor: call ``set()`` from the loop."""

    _event: asyncio.Event = field(default_factory=asyncio.Event)
    _reason: str = "requested"

    def set(self, reason: str = "requested") -> None:
        self._reason = reason
        self._event.set()

    async def wait(self) -> str:
        await self._event.wait()
        return self._reason
