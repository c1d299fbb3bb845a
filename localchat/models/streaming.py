"""Structured generation: turn a model's raw JSON text stream into partial objects.

A local model constrained by a JSON schema streams the document as text deltas.
stream_object() accumulates them and re-parses the incomplete document after
every delta, so consumers see a sequence of partial objects, each superseding
the previous one, followed by one validated final object.

- Partial objects are plain dicts; fields may be missing or still growing.
- Only the final object is validated against the schema.
- The partial stream is forward-only and can be iterated once.
- Cancellation is an asyncio.Event raced against every pending delta; a stalled
  upstream is cancelled and closed as soon as it fires.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Generic, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_core import from_json

from localchat.models.session import LocalLanguageModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class GenerationAborted(Exception):
    """The abort signal ended the stream before the object was complete."""


class NoObjectGeneratedError(ValueError):
    """Model output did not validate against the schema."""

    def __init__(self, message: str, text: str = "") -> None:
        super().__init__(message)
        self.text = text


def parse_partial_json(text: str) -> dict[str, Any] | None:
    """Parse an incomplete JSON document. None until an object can be recovered."""
    if not text.strip():
        return None
    try:
        value = from_json(text, allow_partial="trailing-strings")
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


class StreamObjectResult(Generic[T]):
    def __init__(
        self,
        deltas: AsyncIterator[str],
        schema: type[T],
        abort_signal: asyncio.Event | None = None,
    ) -> None:
        self._deltas = deltas
        self._schema = schema
        self._abort_signal = abort_signal
        self._text = ""
        self._started = False
        self._finished = False
        self._aborted = False
        self._final: T | None = None

    @property
    def text(self) -> str:
        return self._text

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def partial_object_stream(self) -> AsyncIterator[dict[str, Any]]:
        if self._started:
            raise RuntimeError("partial object stream can only be consumed once")
        self._started = True
        return self._iter_partials()

    def _should_abort(self) -> bool:
        return self._abort_signal is not None and self._abort_signal.is_set()

    async def _pull(self) -> str | None:
        try:
            return await self._deltas.__anext__()
        except StopAsyncIteration:
            return None

    async def _next_delta(self) -> str | None:
        """Next delta, racing the abort signal. None once the upstream is exhausted."""
        pull = asyncio.ensure_future(self._pull())
        waiters = {pull}
        if self._abort_signal is not None:
            waiters.add(asyncio.ensure_future(self._abort_signal.wait()))
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                if not w.done():
                    w.cancel()
            await asyncio.wait(waiters)
        if self._should_abort():
            # a delta that raced the abort is dropped
            if not pull.cancelled():
                pull.exception()
            return None
        return pull.result()

    async def _iter_partials(self) -> AsyncIterator[dict[str, Any]]:
        previous: dict[str, Any] | None = None
        try:
            if self._should_abort():
                self._aborted = True
                return
            while True:
                delta = await self._next_delta()
                if self._should_abort():
                    self._aborted = True
                    logger.debug("structured stream aborted", extra={"chars": len(self._text)})
                    return
                if delta is None:
                    break
                self._text += delta
                partial = parse_partial_json(self._text)
                if partial is None or partial == previous:
                    continue
                previous = partial
                yield partial
        finally:
            self._finished = True
            aclose = getattr(self._deltas, "aclose", None)
            if aclose is not None:
                await aclose()

    async def object(self) -> T:
        """Final object. Drains the partial stream first if nobody did."""
        if not self._started:
            async for _ in self.partial_object_stream:
                pass
        elif not self._finished:
            raise RuntimeError("partial object stream is still being consumed")
        if self._aborted:
            raise GenerationAborted("generation aborted before the object was complete")
        if self._final is None:
            try:
                self._final = self._schema.model_validate_json(self._text)
            except ValidationError as e:
                raise NoObjectGeneratedError(
                    f"model output does not match {self._schema.__name__}: {e.error_count()} error(s)",
                    text=self._text,
                ) from e
        return self._final


def stream_object(
    model: LocalLanguageModel,
    *,
    messages: list[dict[str, str]],
    schema: type[T],
    system: str | None = None,
    abort_signal: asyncio.Event | None = None,
) -> StreamObjectResult[T]:
    """Start schema-constrained generation. Nothing is requested until the stream is iterated."""
    deltas = model.generate_stream(
        messages,
        system=system,
        schema=schema.model_json_schema(),
    )
    return StreamObjectResult(deltas, schema, abort_signal)
