"""Staged streaming pipeline with bounded buffering.

A pipeline is an ordered list of stages. Each stage receives a chunk and
returns the chunk to hand to the next stage; at end of stream every stage is
asked for any trailing bytes via ``finish()``. The transformed chunks travel
to the sink through a ``BoundedPipe``: the producer suspends as soon as
``capacity`` chunks are waiting, so a slow sink throttles how fast the source
is drained and memory stays proportional to the chunk size.

The producer runs in its own task while the sink runs in the caller's task.
Whichever side fails (or is cancelled) tears down the other one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional, TypeVar

from .exceptions import PayloadTooLargeError, PipelineError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_PIPE_CAPACITY = 4

T = TypeVar("T")

_EOF = object()


class Stage:
    """Base class for pipeline stages; the default stage is the identity."""

    def process(self, chunk: bytes) -> bytes:
        return chunk

    def finish(self) -> bytes:
        return b""


class ByteCounter(Stage):
    """Pass-through stage that tallies the bytes flowing through it.

    With ``limit`` set, the stage raises ``PayloadTooLargeError`` as soon as
    the running total exceeds it.
    """

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def process(self, chunk: bytes) -> bytes:
        self._count += len(chunk)
        if self.limit is not None and self._count > self.limit:
            raise PayloadTooLargeError(
                f"payload exceeds the maximum of {self.limit} bytes"
            )
        return chunk


class BoundedPipe:
    """Single-producer/single-consumer chunk queue with an end and error signal."""

    def __init__(self, capacity: int = DEFAULT_PIPE_CAPACITY):
        if capacity < 1:
            raise ValueError("pipe capacity must be at least 1")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self.error: Optional[BaseException] = None

    @property
    def buffered(self) -> int:
        return self._queue.qsize()

    async def put(self, chunk: bytes) -> None:
        await self._queue.put(chunk)

    async def close(self) -> None:
        await self._queue.put(_EOF)

    async def fail(self, exc: BaseException) -> None:
        # record first so the error survives even if the put below is cancelled
        self.error = exc
        await self._queue.put(_EOF)

    async def drain(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                if self.error is not None:
                    raise self.error
                return
            yield item


def apply_stages(stages: Iterable[Stage], chunk: bytes) -> bytes:
    for stage in stages:
        chunk = stage.process(chunk)
    return chunk


def finish_stages(stages: List[Stage]) -> bytes:
    """Flush every stage in order, feeding each tail through the stages after it."""
    tail = b""
    for stage in stages:
        if tail:
            tail = stage.process(tail)
        tail += stage.finish()
    return tail


class StagedPipeline:
    """Connects a byte source through stages into a sink coroutine."""

    def __init__(self, stages: List[Stage], capacity: int = DEFAULT_PIPE_CAPACITY):
        self.stages = list(stages)
        self.capacity = capacity

    async def _produce(self, source: AsyncIterator[bytes], pipe: BoundedPipe) -> None:
        try:
            async for chunk in source:
                if not chunk:
                    continue
                out = apply_stages(self.stages, chunk)
                if out:
                    await pipe.put(out)
            tail = finish_stages(self.stages)
            if tail:
                await pipe.put(tail)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await pipe.fail(exc)
            return
        finally:
            await _close_source(source)
        await pipe.close()

    async def run(
        self,
        source: AsyncIterator[bytes],
        sink: Callable[[AsyncIterator[bytes]], Awaitable[T]],
    ) -> T:
        """Drive ``source`` through the stages into ``sink`` and return its result.

        Errors raised by a stage (or by the source) are re-raised unchanged even
        when the sink wraps or swallows them.
        """
        pipe = BoundedPipe(self.capacity)
        producer = asyncio.ensure_future(self._produce(source, pipe))
        try:
            result = await sink(pipe.drain())
        except BaseException:
            await _cancel_and_wait(producer)
            if pipe.error is not None:
                raise pipe.error
            raise
        if not producer.done():
            await _cancel_and_wait(producer)
            raise PipelineError("sink returned before the end of the stream")
        await producer
        if pipe.error is not None:
            raise pipe.error
        return result


async def _cancel_and_wait(task: asyncio.Future) -> None:
    if not task.done():
        task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def iter_chunks(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield ``data`` in ``chunk_size`` slices; handy for in-memory payloads."""
    for offset in range(0, len(data), chunk_size):
        yield data[offset : offset + chunk_size]


async def _close_source(source) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()
