"""Event sink contract and the UI message stream envelope.

Transport code writes chunks to an EventSink; the UI reads them from the async
iterator returned by create_ui_message_stream(). Delivery is in emission order
with no buffering beyond an unbounded queue.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Awaitable, Callable, Protocol, runtime_checkable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_DONE = object()


@runtime_checkable
class EventSink(Protocol):
    """Append-only channel for protocol chunks."""

    async def emit(self, chunk: BaseModel) -> None:
        ...


class UIMessageStreamWriter:
    """Queue-backed sink handed to the execute callback."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    async def emit(self, chunk: BaseModel) -> None:
        await self._queue.put(chunk)


def create_ui_message_stream(
    execute: Callable[[UIMessageStreamWriter], Awaitable[None]],
) -> AsyncIterator[BaseModel]:
    """Run execute(writer) on first iteration and yield what it writes.

    An exception raised by execute is re-raised to the consumer after every
    chunk written before it has been yielded. Closing the iterator early
    cancels execute.
    """

    async def _stream() -> AsyncIterator[BaseModel]:
        queue: asyncio.Queue = asyncio.Queue()
        writer = UIMessageStreamWriter(queue)

        async def _run() -> None:
            try:
                await execute(writer)
            finally:
                queue.put_nowait(_DONE)

        task = asyncio.create_task(_run())
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item
            await task
        finally:
            if not task.done():
                logger.debug("ui message stream closed early; cancelling execute")
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    return _stream()


async def collect_chunks(stream: AsyncIterator[BaseModel]) -> list[BaseModel]:
    return [chunk async for chunk in stream]
