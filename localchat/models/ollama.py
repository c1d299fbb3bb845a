"""Ollama binding: availability and pull via the native API, generation via the OpenAI-compatible API."""

from __future__ import annotations

import contextlib
import json
import logging
from typing import Any, AsyncIterator

import httpx
from openai import AsyncOpenAI

from localchat.models.session import Availability, ModelSessionError, ProgressCallback

logger = logging.getLogger(__name__)

# Byte progress stays below this until the daemon reports success
_MAX_DOWNLOAD_FRACTION = 0.99


def _native_base_url(base_url: str) -> str:
    """Convert OpenAI-compat base (e.g. http://localhost:11434/v1) to the Ollama native root."""
    u = (base_url or "").rstrip("/")
    if u.endswith("/v1"):
        u = u[:-3]
    return u.rstrip("/") or "http://localhost:11434"


def _model_matches(listed: str, wanted: str) -> bool:
    if listed == wanted:
        return True
    return ":" not in wanted and listed == f"{wanted}:latest"


class PullProgress:
    """Aggregates per-layer pull status lines into one non-decreasing fraction."""

    def __init__(self) -> None:
        self._layers: dict[str, tuple[int, int]] = {}
        self.fraction = 0.0

    def update(self, line: dict[str, Any]) -> float:
        if line.get("status") == "success":
            self.fraction = 1.0
            return self.fraction
        digest = line.get("digest")
        total = line.get("total") or 0
        if digest and total:
            self._layers[digest] = (line.get("completed") or 0, total)
            completed = sum(c for c, _ in self._layers.values())
            size = sum(t for _, t in self._layers.values())
            current = min(completed / size, _MAX_DOWNLOAD_FRACTION)
            self.fraction = max(self.fraction, current)
        return self.fraction


class OllamaModel:
    """Local model served by an Ollama daemon. One instance per transport invocation."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model_name: str = "llama3.2",
        api_key: str = "ollama",
        timeout: float = 120.0,
        keep_alive: str = "5m",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._root = _native_base_url(base_url)
        self._model_name = model_name
        self._timeout = timeout
        self._keep_alive = keep_alive
        self._http_client = http_client
        self._client = AsyncOpenAI(base_url=f"{self._root}/v1", api_key=api_key, timeout=timeout)

    @property
    def model_name(self) -> str:
        return self._model_name

    @contextlib.asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def availability(self) -> Availability:
        """available if pulled, downloadable if the daemon answers, unavailable otherwise."""
        try:
            async with self._http() as client:
                r = await client.get(f"{self._root}/api/tags")
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as e:
            logger.warning("ollama availability check failed: %s", e, extra={"base_url": self._root})
            return Availability.UNAVAILABLE
        names = [m.get("name") or m.get("model") or "" for m in data.get("models") or []]
        if any(_model_matches(n, self._model_name) for n in names):
            return Availability.AVAILABLE
        return Availability.DOWNLOADABLE

    async def create_session_with_progress(self, on_progress: ProgressCallback) -> None:
        """Pull the model (reporting progress) and load it into memory."""
        progress = PullProgress()
        reported = 0.0
        body = {"model": self._model_name, "stream": True}
        async with self._http() as client:
            async with client.stream(
                "POST",
                f"{self._root}/api/pull",
                json=body,
                timeout=httpx.Timeout(self._timeout, read=None),
            ) as resp:
                resp.raise_for_status()
                async for raw in resp.aiter_lines():
                    if not raw.strip():
                        continue
                    try:
                        line = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("ollama pull: unparseable line %r", raw[:100])
                        continue
                    if line.get("error"):
                        raise ModelSessionError(f"pull {self._model_name} failed: {line['error']}")
                    fraction = progress.update(line)
                    if fraction > reported:
                        reported = fraction
                        await on_progress(fraction)
            if progress.fraction < 1.0:
                raise ModelSessionError(f"pull {self._model_name} ended without success")
            logger.info("model pulled", extra={"model": self._model_name})
            r = await client.post(
                f"{self._root}/api/generate",
                json={"model": self._model_name, "keep_alive": self._keep_alive, "stream": False},
            )
            r.raise_for_status()
        logger.info("model loaded", extra={"model": self._model_name})

    def generate_stream(
        self,
        messages: list[dict[str, str]],
        *,
        system: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        """Async generator of JSON content deltas."""

        async def _stream() -> AsyncIterator[str]:
            chat: list[dict[str, str]] = []
            if system:
                chat.append({"role": "system", "content": system})
            chat.extend(messages)
            kwargs: dict[str, Any] = {}
            if schema is not None:
                kwargs["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {"name": "response", "schema": schema},
                }
            stream = await self._client.chat.completions.create(
                model=self._model_name,
                messages=chat,
                stream=True,
                **kwargs,
            )
            async with stream:
                async for chunk in stream:
                    delta = chunk.choices[0].delta if chunk.choices else None
                    if delta and getattr(delta, "content", None):
                        yield delta.content

        return _stream()
