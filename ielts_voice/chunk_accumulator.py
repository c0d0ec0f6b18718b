"""Per-session buffering of streamed microphone audio.

Chunks are kept in arrival order and released as one utterance once the
client has been quiet for the debounce interval. Every new chunk cancels the
pending flush and arms a fresh one, so a burst of chunks produces a single
flush after the last of them.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set

from loguru import logger

UtteranceHandler = Callable[[str, bytes], Awaitable[None]]


class ChunkBuffer:
    """Audio received for one session that has not been handed off yet."""
    def __init__(self):
        self.pending_chunks: List[bytes] = []
        self.pending_since: Optional[float] = None
        self.last_chunk_at: Optional[float] = None
        self.flush_timer: Optional[asyncio.TimerHandle] = None

    @property
    def total_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.pending_chunks)

    def cancel_timer(self) -> None:
        if self.flush_timer is not None:
            self.flush_timer.cancel()
            self.flush_timer = None


class ChunkAccumulator:
    def __init__(
        self,
        on_utterance: UtteranceHandler,
        debounce_seconds: float = 0.5,
        min_bytes: int = 1024,
    ):
        self._on_utterance = on_utterance
        self.debounce_seconds = debounce_seconds
        self.min_bytes = min_bytes
        self._buffers: Dict[str, ChunkBuffer] = {}
        self._dispatches: Set[asyncio.Task] = set()

    def add_chunk(self, session_id: str, data: bytes) -> None:
        """Buffer one chunk and re-arm the session's flush timer.

        Must be called from the event loop thread.
        """
        loop = asyncio.get_running_loop()
        buffer = self._buffers.get(session_id)
        if buffer is None:
            buffer = ChunkBuffer()
            self._buffers[session_id] = buffer

        now = time.monotonic()
        if not buffer.pending_chunks:
            buffer.pending_since = now
        buffer.pending_chunks.append(data)
        buffer.last_chunk_at = now

        buffer.cancel_timer()
        buffer.flush_timer = loop.call_later(self.debounce_seconds, self._on_flush_timeout, session_id)
        logger.debug(
            f"Buffered chunk for session {session_id}: "
            f"{len(buffer.pending_chunks)} chunks, {buffer.total_bytes} bytes pending."
        )

    def _on_flush_timeout(self, session_id: str) -> None:
        buffer = self._buffers.get(session_id)
        if buffer is None:
            return
        buffer.flush_timer = None

        chunks = list(buffer.pending_chunks)
        if not chunks:
            return

        total = sum(len(chunk) for chunk in chunks)
        if total < self.min_bytes:
            # Keep the audio; the next chunk re-arms the timer.
            logger.debug(f"Session {session_id}: {total} bytes is below the {self.min_bytes} byte floor, waiting.")
            return

        # Clear before dispatch so chunks arriving mid-turn start a new utterance.
        buffer.pending_chunks = []
        buffer.pending_since = None
        audio = b"".join(chunks)
        logger.info(f"Session {session_id}: flushing {len(chunks)} chunks ({total} bytes).")

        task = asyncio.ensure_future(self._dispatch(session_id, audio))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)

    async def _dispatch(self, session_id: str, audio: bytes) -> None:
        try:
            await self._on_utterance(session_id, audio)
        except Exception as e:
            logger.exception(f"Utterance handler failed for session {session_id}: {e}")

    def pending_bytes(self, session_id: str) -> int:
        buffer = self._buffers.get(session_id)
        return buffer.total_bytes if buffer else 0

    def has_pending_flush(self, session_id: str) -> bool:
        buffer = self._buffers.get(session_id)
        return bool(buffer and buffer.flush_timer is not None)

    def discard(self, session_id: str) -> None:
        """Drop a session's buffer and cancel its timer. Idempotent."""
        buffer = self._buffers.pop(session_id, None)
        if buffer is not None:
            buffer.cancel_timer()
            if buffer.pending_chunks:
                logger.info(f"Discarded {buffer.total_bytes} unflushed bytes for session {session_id}.")

    async def aclose(self) -> None:
        for session_id in list(self._buffers):
            self.discard(session_id)
        if self._dispatches:
            await asyncio.gather(*self._dispatches, return_exceptions=True)
