"""Cancellable response stream between a completion provider and a consumer.

A producer task pulls chunks from the provider and pushes them through a
bounded queue; the consumer iterates the stream. The queue bound is the
backpressure: a slow consumer suspends the producer instead of letting text
pile up in memory. Every chunk is also appended to an internal buffer so the
full reply is available for persistence.

The finish hook runs exactly once with the buffered text and the final
status:
- ``completed``: the provider finished; runs before the consumer sees the end
  of the stream, so the reply is persisted when iteration stops.
- ``cancelled``: the consumer called ``cancel()`` (or left an ``async with``
  block early); runs with whatever partial text was produced.
- ``failed``: the provider raised; the error is re-raised to the consumer.

The producer starts on the first read, or earlier through ``start()``.
Consumers that stop reading must call ``cancel()`` or use ``async with`` so the
producer is released; a stream that is neither drained nor cancelled never
runs its finish hook once its buffer is full.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


class StreamStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


FinishCallback = Callable[[str, StreamStatus], Awaitable[None]]

_END = object()


class ResponseStream:
    """Async-iterable, cancellable stream of text chunks.

    Args:
        chunks: Source of text chunks (e.g. a provider's async generator).
        on_finish: Awaited once with (full_text, status) when the stream ends.
        buffer_size: Maximum number of chunks queued ahead of the consumer.
    """

    def __init__(
        self,
        chunks: AsyncIterator[str],
        on_finish: FinishCallback | None = None,
        buffer_size: int = 64,
    ) -> None:
        self._chunks = chunks
        self._on_finish = on_finish
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max(1, buffer_size))
        self._parts: list[str] = []
        self._status = StreamStatus.PENDING
        self._error: BaseException | None = None
        self._producer: asyncio.Task[None] | None = None
        self._finished = asyncio.Event()
        self._finalized = False
        self._exhausted = False

    # ── State ──────────────────────────────────────────────────────────────

    @property
    def status(self) -> StreamStatus:
        return self._status

    @property
    def text(self) -> str:
        """Everything produced so far."""
        return "".join(self._parts)

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    async def wait(self) -> StreamStatus:
        """Wait until the finish hook has run and return the final status."""
        await self._finished.wait()
        return self._status

    # ── Producer ───────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start pulling chunks from the source without waiting for a reader."""
        if self._producer is None and not self._finalized:
            self._status = StreamStatus.STREAMING
            self._producer = asyncio.create_task(self._produce())

    async def _produce(self) -> None:
        try:
            async for chunk in self._chunks:
                if not chunk:
                    continue
                self._parts.append(chunk)
                await self._queue.put(chunk)
        except asyncio.CancelledError:
            self._status = StreamStatus.CANCELLED
            await self._close_source()
            await self._finish()
            raise
        except Exception as exc:
            self._status = StreamStatus.FAILED
            self._error = exc
            logger.warning("response_stream_failed", error=str(exc), chars=len(self.text))
            await self._finish()
        else:
            self._status = StreamStatus.COMPLETED
            await self._finish()
        await self._queue.put(_END)

    async def _close_source(self) -> None:
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception:
                logger.warning("response_stream_source_close_failed", exc_info=True)

    async def _finish(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        try:
            if self._on_finish is not None:
                await self._on_finish(self.text, self._status)
        except Exception as exc:
            if self._status == StreamStatus.CANCELLED:
                # Nobody is left to receive the error
                logger.error(
                    "response_stream_finish_failed",
                    status=self._status.value,
                    exc_info=True,
                )
            elif self._error is None:
                self._error = exc
        finally:
            self._finished.set()

    # ── Consumer ───────────────────────────────────────────────────────────

    def __aiter__(self) -> ResponseStream:
        return self

    async def __anext__(self) -> str:
        if self._exhausted:
            raise StopAsyncIteration
        self.start()
        if self._producer is None:
            # Cancelled before the first read
            self._exhausted = True
            raise StopAsyncIteration

        item = await self._queue.get()
        if item is _END:
            self._exhausted = True
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def cancel(self) -> None:
        """Stop producing, then run the finish hook with the partial text.

        Safe to call more than once and after the stream has ended.
        """
        self._exhausted = True
        if self._producer is None:
            if not self._finalized:
                self._status = StreamStatus.CANCELLED
                await self._close_source()
                await self._finish()
            return

        if not self._producer.done():
            self._producer.cancel()
        await asyncio.wait({self._producer})
        if not self._finalized:
            # Cancelled before the producer ran its first step
            self._status = StreamStatus.CANCELLED
            await self._close_source()
            await self._finish()
        try:
            # Wake a consumer still blocked on the queue
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            pass
        logger.debug("response_stream_cancelled", status=self._status.value, chars=len(self.text))

    aclose = cancel

    async def __aenter__(self) -> ResponseStream:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._producer is None or not self._producer.done():
            await self.cancel()
