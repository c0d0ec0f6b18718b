"""Tests for debounced chunk accumulation."""

import asyncio
import time

import pytest

from ielts_voice.chunk_accumulator import ChunkAccumulator

DEBOUNCE = 0.05


class FlushRecorder:
    def __init__(self, delay: float = 0.0):
        self.flushes = []
        self.delay = delay

    async def __call__(self, session_id: str, audio: bytes) -> None:
        self.flushes.append((session_id, audio, time.monotonic()))
        if self.delay:
            await asyncio.sleep(self.delay)


@pytest.mark.asyncio
async def test_burst_produces_single_flush_after_quiet_period() -> None:
    handler = FlushRecorder()
    accumulator = ChunkAccumulator(handler, debounce_seconds=DEBOUNCE, min_bytes=1)

    for i in range(6):
        if i:
            await asyncio.sleep(DEBOUNCE / 5)
        accumulator.add_chunk("s1", b"x" * 100)
        last_chunk_at = time.monotonic()

    assert handler.flushes == []
    await asyncio.sleep(DEBOUNCE * 3)

    assert len(handler.flushes) == 1
    _, audio, flushed_at = handler.flushes[0]
    assert len(audio) == 600
    assert flushed_at - last_chunk_at >= DEBOUNCE * 0.9


@pytest.mark.asyncio
async def test_only_latest_timer_stays_armed() -> None:
    handler = FlushRecorder()
    accumulator = ChunkAccumulator(handler, debounce_seconds=DEBOUNCE, min_bytes=1)

    accumulator.add_chunk("s1", b"a")
    first_timer = accumulator._buffers["s1"].flush_timer
    accumulator.add_chunk("s1", b"b")

    assert first_timer.cancelled()
    assert accumulator.has_pending_flush("s1")
    await asyncio.sleep(DEBOUNCE * 3)
    assert len(handler.flushes) == 1
    assert not accumulator.has_pending_flush("s1")


@pytest.mark.asyncio
async def test_chunks_are_concatenated_in_arrival_order() -> None:
    handler = FlushRecorder()
    accumulator = ChunkAccumulator(handler, debounce_seconds=DEBOUNCE, min_bytes=1)
    chunks = [bytes([i]) * (i + 10) for i in range(20)]

    for chunk in chunks:
        accumulator.add_chunk("s1", chunk)
    await asyncio.sleep(DEBOUNCE * 3)

    assert len(handler.flushes) == 1
    assert handler.flushes[0][1] == b"".join(chunks)


@pytest.mark.asyncio
async def test_undersized_audio_is_retained_until_more_arrives() -> None:
    handler = FlushRecorder()
    accumulator = ChunkAccumulator(handler, debounce_seconds=DEBOUNCE, min_bytes=1024)

    accumulator.add_chunk("s1", b"a" * 300)
    accumulator.add_chunk("s1", b"b" * 300)
    await asyncio.sleep(DEBOUNCE * 3)

    assert handler.flushes == []
    assert accumulator.pending_bytes("s1") == 600
    assert not accumulator.has_pending_flush("s1")

    accumulator.add_chunk("s1", b"c" * 500)
    await asyncio.sleep(DEBOUNCE * 3)

    assert len(handler.flushes) == 1
    assert handler.flushes[0][1] == b"a" * 300 + b"b" * 300 + b"c" * 500
    assert accumulator.pending_bytes("s1") == 0


@pytest.mark.asyncio
async def test_sessions_are_buffered_independently() -> None:
    handler = FlushRecorder()
    accumulator = ChunkAccumulator(handler, debounce_seconds=DEBOUNCE, min_bytes=1)

    accumulator.add_chunk("s1", b"one")
    accumulator.add_chunk("s2", b"two")
    await asyncio.sleep(DEBOUNCE * 3)

    assert sorted((sid, audio) for sid, audio, _ in handler.flushes) == [("s1", b"one"), ("s2", b"two")]


@pytest.mark.asyncio
async def test_chunks_arriving_during_a_turn_start_a_new_buffer() -> None:
    handler = FlushRecorder(delay=DEBOUNCE * 4)
    accumulator = ChunkAccumulator(handler, debounce_seconds=DEBOUNCE, min_bytes=1)

    accumulator.add_chunk("s1", b"first")
    await asyncio.sleep(DEBOUNCE * 2)
    assert len(handler.flushes) == 1

    accumulator.add_chunk("s1", b"second")
    await asyncio.sleep(DEBOUNCE * 3)

    assert [audio for _, audio, _ in handler.flushes] == [b"first", b"second"]


@pytest.mark.asyncio
async def test_discard_cancels_pending_flush() -> None:
    handler = FlushRecorder()
    accumulator = ChunkAccumulator(handler, debounce_seconds=DEBOUNCE, min_bytes=1)

    accumulator.add_chunk("s1", b"bye")
    accumulator.discard("s1")
    accumulator.discard("s1")
    await asyncio.sleep(DEBOUNCE * 3)

    assert handler.flushes == []
    assert accumulator.pending_bytes("s1") == 0


@pytest.mark.asyncio
async def test_timeout_for_unknown_session_is_noop() -> None:
    handler = FlushRecorder()
    accumulator = ChunkAccumulator(handler, debounce_seconds=DEBOUNCE, min_bytes=1)

    accumulator._on_flush_timeout("never-seen")

    assert handler.flushes == []


@pytest.mark.asyncio
async def test_handler_errors_do_not_break_accumulator() -> None:
    calls = []

    async def failing_handler(session_id: str, audio: bytes) -> None:
        calls.append(audio)
        raise RuntimeError("boom")

    accumulator = ChunkAccumulator(failing_handler, debounce_seconds=DEBOUNCE, min_bytes=1)
    accumulator.add_chunk("s1", b"one")
    await asyncio.sleep(DEBOUNCE * 3)
    accumulator.add_chunk("s1", b"two")
    await asyncio.sleep(DEBOUNCE * 3)

    assert calls == [b"one", b"two"]
    await accumulator.aclose()
