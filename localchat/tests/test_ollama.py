"""Tests for the Ollama binding (mocked HTTP)."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from localchat.models import ollama
from localchat.models.ollama import OllamaModel, PullProgress
from localchat.models.session import Availability, LocalLanguageModel, ModelSessionError


def _model(handler, **kwargs) -> OllamaModel:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OllamaModel(base_url="http://ollama:11434", http_client=client, **kwargs)


def _ndjson(*lines: dict) -> bytes:
    return b"\n".join(json.dumps(line).encode() for line in lines) + b"\n"


def test_native_base_url_strips_v1():
    assert ollama._native_base_url("http://localhost:11434/v1") == "http://localhost:11434"
    assert ollama._native_base_url("http://host:11434/v1/") == "http://host:11434"


def test_native_base_url_empty():
    assert ollama._native_base_url("") == "http://localhost:11434"


def test_model_matches_latest_tag():
    assert ollama._model_matches("llama3.2:latest", "llama3.2") is True
    assert ollama._model_matches("llama3.2:1b", "llama3.2") is False
    assert ollama._model_matches("llama3.2:1b", "llama3.2:1b") is True


def test_ollama_model_satisfies_protocol():
    assert isinstance(OllamaModel(), LocalLanguageModel)


@pytest.mark.asyncio
async def test_availability_available():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [{"name": "llama3.2:latest"}]})

    assert await _model(handler).availability() == Availability.AVAILABLE


@pytest.mark.asyncio
async def test_availability_downloadable():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"models": [{"name": "mistral:latest"}]})

    assert await _model(handler).availability() == Availability.DOWNLOADABLE


@pytest.mark.asyncio
async def test_availability_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert await _model(handler).availability() == Availability.UNAVAILABLE


@pytest.mark.asyncio
async def test_availability_server_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    assert await _model(handler).availability() == Availability.UNAVAILABLE


@pytest.mark.asyncio
async def test_pull_reports_progress_and_loads():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.url.path, json.loads(request.content)))
        if request.url.path == "/api/pull":
            return httpx.Response(
                200,
                content=_ndjson(
                    {"status": "pulling manifest"},
                    {"status": "pulling abc", "digest": "sha256:abc", "total": 100, "completed": 0},
                    {"status": "pulling abc", "digest": "sha256:abc", "total": 100, "completed": 50},
                    {"status": "pulling abc", "digest": "sha256:abc", "total": 100, "completed": 100},
                    {"status": "verifying sha256 digest"},
                    {"status": "success"},
                ),
            )
        return httpx.Response(200, json={"done": True})

    seen = []

    async def on_progress(p: float) -> None:
        seen.append(p)

    await _model(handler, keep_alive="10m").create_session_with_progress(on_progress)
    assert seen == [0.5, 0.99, 1.0]
    assert [path for path, _ in calls] == ["/api/pull", "/api/generate"]
    assert calls[0][1]["model"] == "llama3.2"
    assert calls[1][1]["keep_alive"] == "10m"


@pytest.mark.asyncio
async def test_pull_error_line_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_ndjson({"error": "pull model manifest: file does not exist"}))

    with pytest.raises(ModelSessionError, match="file does not exist"):
        await _model(handler).create_session_with_progress(AsyncMock())


@pytest.mark.asyncio
async def test_pull_without_success_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_ndjson({"status": "pulling manifest"}))

    on_progress = AsyncMock()
    with pytest.raises(ModelSessionError, match="without success"):
        await _model(handler).create_session_with_progress(on_progress)
    on_progress.assert_not_called()


def test_pull_progress_never_decreases():
    progress = PullProgress()
    progress.update({"digest": "a", "total": 100, "completed": 100})
    assert progress.fraction == 0.99
    # a second, larger layer shows up
    assert progress.update({"digest": "b", "total": 900, "completed": 0}) == 0.99
    assert progress.update({"status": "success"}) == 1.0


class FakeStream:
    def __init__(self, contents):
        self._contents = contents
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    async def __aiter__(self):
        for c in self._contents:
            chunk = MagicMock()
            chunk.choices = [MagicMock(delta=MagicMock(content=c))]
            yield chunk


@pytest.mark.asyncio
async def test_generate_stream_yields_content_with_schema():
    fake = FakeStream(['{"response": ', None, '"Hi"}'])
    with patch("localchat.models.ollama.AsyncOpenAI") as mock_cls:
        mock_client = AsyncMock()
        mock_cls.return_value = mock_client
        mock_client.chat.completions.create = AsyncMock(return_value=fake)
        model = OllamaModel(base_url="http://ollama:11434/v1", model_name="test")
        schema = {"type": "object", "properties": {"response": {"type": "string"}}}
        out = ""
        async for token in model.generate_stream(
            [{"role": "user", "content": "Hi"}], system="Be brief.", schema=schema
        ):
            out += token
    assert out == '{"response": "Hi"}'
    assert fake.closed is True
    mock_cls.assert_called_once()
    assert mock_cls.call_args[1]["base_url"] == "http://ollama:11434/v1"
    kwargs = mock_client.chat.completions.create.call_args[1]
    assert kwargs["model"] == "test"
    assert kwargs["stream"] is True
    assert kwargs["messages"][0] == {"role": "system", "content": "Be brief."}
    assert kwargs["response_format"]["json_schema"]["schema"] == schema
