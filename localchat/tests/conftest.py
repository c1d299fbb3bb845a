"""Pytest fixtures and shared fakes."""

from __future__ import annotations

from typing import Any, AsyncIterator

import pytest

from localchat.models.session import Availability


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Avoid picking up a developer's Ollama/Redis settings in tests."""
    for name in ("OLLAMA_HOST", "LOCALCHAT_MODEL", "LOCALCHAT_ENV_PREFIX", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/1")
    yield


class FakeModel:
    """LocalLanguageModel double: scripted availability, progress and JSON deltas."""

    def __init__(
        self,
        availability: Availability = Availability.AVAILABLE,
        deltas: list[str] | None = None,
        progress: list[float] | None = None,
        init_error: Exception | None = None,
        stream_error: Exception | None = None,
    ) -> None:
        self._availability = availability
        self._deltas = deltas or []
        self._progress = progress or []
        self._init_error = init_error
        self._stream_error = stream_error
        self.init_calls = 0
        self.stream_started = False
        self.requests: list[dict[str, Any]] = []

    async def availability(self) -> Availability:
        return self._availability

    async def create_session_with_progress(self, on_progress) -> None:
        self.init_calls += 1
        for p in self._progress:
            await on_progress(p)
        if self._init_error:
            raise self._init_error

    def generate_stream(self, messages, *, system=None, schema=None) -> AsyncIterator[str]:
        self.requests.append({"messages": messages, "system": system, "schema": schema})

        async def _stream() -> AsyncIterator[str]:
            self.stream_started = True
            for d in self._deltas:
                yield d
            if self._stream_error:
                raise self._stream_error

        return _stream()


@pytest.fixture
def fake_model_cls():
    return FakeModel
