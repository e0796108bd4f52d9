from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TranscriptSnapshot:
    text: str  # whole transcript so far
    segment: str  # appended since this subscriber's previous delivery
    version: int


class TranscriptState:
    """Append-only transcript text with debounced fan-out to subscribers.

    Only the protocol event path writes (single writer). Each subscriber gets
    its own wake-up event and receives the accumulated segment once appends
    have been quiet for ``debounce_s`` seconds.
    """

    def __init__(self, *, debounce_s: float = 2.0) -> None:
        if debounce_s <= 0:
            raise ValueError("debounce_s must be > 0")
        self.debounce_s = debounce_s
        self._text = ""
        self._version = 0
        self._closed = False
        self._subscribers: set[asyncio.Event] = set()

    @property
    def text(self) -> str:
        return self._text

    @property
    def version(self) -> int:
        return self._version

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, fragment: str, *, separator: str = "") -> None:
        if self._closed:
            raise RuntimeError("transcript is closed")
        if not fragment:
            return
        if separator and self._text:
            fragment = separator + fragment
        self._text += fragment
        self._version += 1
        self._notify()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._notify()

    def _notify(self) -> None:
        for changed in self._subscribers:
            changed.set()

    async def subscribe(self) -> AsyncIterator[TranscriptSnapshot]:
        changed = asyncio.Event()
        self._subscribers.add(changed)
        delivered = len(self._text)
        try:
            while True:
                if not self._closed:
                    await changed.wait()

                while not self._closed:
                    changed.clear()
                    try:
                        await asyncio.wait_for(changed.wait(), timeout=self.debounce_s)
                    except asyncio.TimeoutError:
                        break
                changed.clear()

                segment = self._text[delivered:]
                delivered = len(self._text)
                if segment.strip():
                    yield TranscriptSnapshot(text=self._text, segment=segment, version=self._version)

                if self._closed:
                    return
        finally:
            self._subscribers.discard(changed)
