"""Session provider contract for device-local models.

A local model exposes a download/initialization lifecycle before it can be used
and a stream of raw JSON text when asked for a schema-constrained answer. The
transport only talks to this protocol; localchat.models.ollama is the shipped binding.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, runtime_checkable

ProgressCallback = Callable[[float], Awaitable[None]]


class Availability(str, Enum):
    UNAVAILABLE = "unavailable"
    DOWNLOADABLE = "downloadable"
    AVAILABLE = "available"


class ModelSessionError(RuntimeError):
    """Model could not be downloaded or loaded."""


@runtime_checkable
class LocalLanguageModel(Protocol):
    """Protocol for device-local models with a download lifecycle."""

    async def availability(self) -> Availability:
        ...

    async def create_session_with_progress(self, on_progress: ProgressCallback) -> None:
        """Download/load the model. on_progress gets a fraction in [0, 1], zero or more times."""
        ...

    def generate_stream(
        self,
        messages: list[dict[str, str]],
        *,
        system: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        """Yield raw JSON text deltas constrained by schema."""
        ...
