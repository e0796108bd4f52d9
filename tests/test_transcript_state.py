from __future__ import annotations

import asyncio

import pytest

from live_transcriber.core.transcript import TranscriptState


def _is_ordered_subsequence(fragments: list[str], text: str) -> bool:
    pos = 0
    for fragment in fragments:
        idx = text.find(fragment, pos)
        if idx < 0:
            return False
        pos = idx + len(fragment)
    return True


def test_append_only_growth_preserves_order():
    state = TranscriptState()
    fragments = ["hel", "lo", " wor", "ld"]
    lengths = []
    for fragment in fragments:
        state.append(fragment)
        lengths.append(len(state.text))
    state.append("Hello world.", separator=" ")
    lengths.append(len(state.text))

    assert lengths == sorted(lengths)
    assert state.text == "hello world Hello world."
    assert _is_ordered_subsequence(fragments + ["Hello world."], state.text)
    assert state.version == 5


def test_separator_only_between_fragments():
    state = TranscriptState()
    state.append("first", separator=" ")
    state.append("second", separator=" ")
    assert state.text == "first second"


def test_empty_fragments_are_ignored():
    state = TranscriptState()
    state.append("")
    assert state.text == ""
    assert state.version == 0


def test_append_after_close_is_rejected():
    state = TranscriptState()
    state.close()
    with pytest.raises(RuntimeError):
        state.append("late")


def test_debounce_must_be_positive():
    with pytest.raises(ValueError):
        TranscriptState(debounce_s=0)


def test_subscriber_receives_debounced_segments():
    async def run():
        state = TranscriptState(debounce_s=0.05)
        received = []

        async def consume():
            async for snapshot in state.subscribe():
                received.append(snapshot)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)

        state.append("hel")
        await asyncio.sleep(0.01)
        state.append("lo")
        await asyncio.sleep(0.2)
        assert [s.segment for s in received] == ["hello"]

        state.append(" world")
        await asyncio.sleep(0.2)
        state.close()
        await asyncio.wait_for(task, timeout=1.0)

        assert [s.segment for s in received] == ["hello", " world"]
        assert received[-1].text == "hello world"
        assert received[-1].version == 3

    asyncio.run(run())


def test_close_flushes_pending_segment_immediately():
    async def run():
        state = TranscriptState(debounce_s=30.0)
        received = []

        async def consume():
            async for snapshot in state.subscribe():
                received.append(snapshot.segment)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        state.append("pending")
        await asyncio.sleep(0.01)
        state.close()
        await asyncio.wait_for(task, timeout=1.0)

        assert received == ["pending"]

    asyncio.run(run())


def test_blank_segments_are_not_delivered():
    async def run():
        state = TranscriptState(debounce_s=0.02)
        received = []

        async def consume():
            async for snapshot in state.subscribe():
                received.append(snapshot.segment)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        state.append("   ")
        await asyncio.sleep(0.1)
        state.close()
        await asyncio.wait_for(task, timeout=1.0)

        assert received == []

    asyncio.run(run())


def test_every_subscriber_gets_each_segment():
    async def run():
        state = TranscriptState(debounce_s=0.02)
        first: list[str] = []
        second: list[str] = []

        async def consume(sink: list[str]):
            async for snapshot in state.subscribe():
                sink.append(snapshot.segment)

        tasks = [asyncio.create_task(consume(first)), asyncio.create_task(consume(second))]
        await asyncio.sleep(0)
        state.append("shared")
        await asyncio.sleep(0.1)
        state.close()
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=1.0)

        assert first == ["shared"]
        assert second == ["shared"]

    asyncio.run(run())
