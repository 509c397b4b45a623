"""Tests for the cancellable response stream.

Tests cover:
- Chunks forwarded in order and buffered for persistence
- Finish hook runs exactly once, before iteration ends on completion
- An eagerly started stream finishes without a reader
- Cancellation mid-stream keeps the partial text
- Provider failures reach the consumer
- Backpressure: a slow consumer bounds how far the producer runs ahead
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from src.app.chatbot.streaming import ResponseStream, StreamStatus


# ── Helpers ─────────────────────────────────────────────────────────────────


async def _chunks(*parts: str) -> AsyncIterator[str]:
    for part in parts:
        await asyncio.sleep(0)
        yield part


class _Recorder:
    """Finish hook that records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, StreamStatus]] = []

    async def __call__(self, text: str, status: StreamStatus) -> None:
        self.calls.append((text, status))


# ── Completion ─────────────────────────────────────────────────────────────


class TestStreamCompletion:
    """Streams that run to the end."""

    async def test_chunks_forwarded_in_order(self):
        recorder = _Recorder()
        stream = ResponseStream(_chunks("Olá", ", ", "tudo bem?"), on_finish=recorder)

        received = [chunk async for chunk in stream]

        assert received == ["Olá", ", ", "tudo bem?"]
        assert stream.text == "Olá, tudo bem?"
        assert stream.status == StreamStatus.COMPLETED
        assert recorder.calls == [("Olá, tudo bem?", StreamStatus.COMPLETED)]

    async def test_finish_hook_runs_before_iteration_ends(self):
        recorder = _Recorder()
        stream = ResponseStream(_chunks("a", "b"), on_finish=recorder)
        first = await stream.__anext__()
        assert first == "a"
        assert recorder.calls == []

        async for _ in stream:
            pass
        # Checked without yielding to the loop after the last read
        assert recorder.calls == [("ab", StreamStatus.COMPLETED)]
        assert stream.done

    async def test_empty_chunks_are_skipped(self):
        stream = ResponseStream(_chunks("a", "", "b"))
        assert [chunk async for chunk in stream] == ["a", "b"]

    async def test_started_stream_finishes_without_a_reader(self):
        recorder = _Recorder()
        stream = ResponseStream(_chunks("a", "b"), on_finish=recorder)
        stream.start()
        assert await stream.wait() == StreamStatus.COMPLETED
        assert recorder.calls == [("ab", StreamStatus.COMPLETED)]
        assert [chunk async for chunk in stream] == ["a", "b"]

    async def test_cancel_after_completion_is_noop(self):
        recorder = _Recorder()
        stream = ResponseStream(_chunks("a"), on_finish=recorder)
        _ = [chunk async for chunk in stream]
        await stream.cancel()
        assert recorder.calls == [("a", StreamStatus.COMPLETED)]
        assert stream.status == StreamStatus.COMPLETED


# ── Cancellation ───────────────────────────────────────────────────────────


class TestStreamCancellation:
    """Consumers that stop early."""

    async def test_cancel_mid_stream_keeps_partial_text(self):
        recorder = _Recorder()
        stream = ResponseStream(
            _chunks("one ", "two ", "three ", "four"), on_finish=recorder, buffer_size=1
        )

        received = []
        async for chunk in stream:
            received.append(chunk)
            if len(received) == 2:
                await stream.cancel()

        assert received == ["one ", "two "]
        assert stream.status == StreamStatus.CANCELLED
        (text, status) = recorder.calls[0]
        assert status == StreamStatus.CANCELLED
        assert text.startswith("one two ")
        assert "four" not in text
        assert len(recorder.calls) == 1

    async def test_cancel_before_start(self):
        recorder = _Recorder()
        stream = ResponseStream(_chunks("never"), on_finish=recorder)
        await stream.cancel()
        assert recorder.calls == [("", StreamStatus.CANCELLED)]
        assert [chunk async for chunk in stream] == []

    async def test_leaving_context_manager_cancels(self):
        recorder = _Recorder()
        async with ResponseStream(
            _chunks("a", "b", "c", "d"), on_finish=recorder, buffer_size=1
        ) as stream:
            async for chunk in stream:
                break
        assert chunk == "a"
        assert stream.status == StreamStatus.CANCELLED
        assert await stream.wait() == StreamStatus.CANCELLED
        assert len(recorder.calls) == 1

    async def test_cancel_right_after_start(self):
        recorder = _Recorder()
        stream = ResponseStream(_chunks("never"), on_finish=recorder)
        stream.start()
        await stream.cancel()
        assert recorder.calls == [("", StreamStatus.CANCELLED)]
        assert stream.done

    async def test_cancel_twice_runs_hook_once(self):
        recorder = _Recorder()
        stream = ResponseStream(_chunks("a", "b", "c"), on_finish=recorder, buffer_size=1)
        await stream.__anext__()
        await stream.cancel()
        await stream.cancel()
        assert len(recorder.calls) == 1


# ── Failure ────────────────────────────────────────────────────────────────


class TestStreamFailure:
    """Provider errors during streaming."""

    async def test_provider_error_reaches_consumer(self):
        async def failing() -> AsyncIterator[str]:
            yield "partial"
            raise RuntimeError("provider down")

        recorder = _Recorder()
        stream = ResponseStream(failing(), on_finish=recorder)

        received = []
        with pytest.raises(RuntimeError, match="provider down"):
            async for chunk in stream:
                received.append(chunk)

        assert received == ["partial"]
        assert stream.status == StreamStatus.FAILED
        assert recorder.calls == [("partial", StreamStatus.FAILED)]

    async def test_finish_hook_error_reaches_consumer(self):
        async def broken_hook(text: str, status: StreamStatus) -> None:
            raise ValueError("store unavailable")

        stream = ResponseStream(_chunks("a"), on_finish=broken_hook)
        with pytest.raises(ValueError, match="store unavailable"):
            _ = [chunk async for chunk in stream]


# ── Backpressure ───────────────────────────────────────────────────────────


class TestBackpressure:
    """The bounded buffer throttles the producer."""

    async def test_producer_waits_for_slow_consumer(self):
        produced: list[int] = []

        async def counting() -> AsyncIterator[str]:
            for i in range(20):
                produced.append(i)
                yield str(i)

        stream = ResponseStream(counting(), buffer_size=2)
        first = await stream.__anext__()
        for _ in range(5):
            await asyncio.sleep(0)

        assert first == "0"
        # One chunk consumed, two buffered, one blocked in put()
        assert len(produced) <= 4
        await stream.cancel()
        assert stream.status == StreamStatus.CANCELLED
