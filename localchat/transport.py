"""Client-side chat transport for a device-local model.

Bridges a local model that only exposes an availability/download lifecycle and
a stream of partial structured objects to the chunk-based chat UI protocol:
text-start / text-delta / text-end for the answer, data-suggestions for
follow-up questions, data-modelDownloadProgress while the model is pulled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Iterable, Literal, Optional

from pydantic import BaseModel, Field

from localchat.config.loader import ModelSettings
from localchat.core.convert import convert_to_model_messages
from localchat.core.events import (
    DownloadProgress,
    ModelDownloadProgressChunk,
    Notification,
    NotificationChunk,
    SuggestionsChunk,
    TextDeltaChunk,
    TextEndChunk,
    TextStartChunk,
    UIMessage,
    new_id,
)
from localchat.core.stream import EventSink, create_ui_message_stream
from localchat.models.ollama import OllamaModel
from localchat.models.session import Availability, LocalLanguageModel
from localchat.models.streaming import GenerationAborted, stream_object

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Be concise and brief in your responses. "
    "Keep answers short and to the point."
)
DOWNLOADING_MESSAGE = "Downloading local AI model..."
DOWNLOADED_MESSAGE = "Model finished downloading! Getting ready for inference..."

Trigger = Literal["submit-message", "submit-tool-result", "regenerate-message"]


class ChatResponse(BaseModel):
    response: str = Field(description="The text response to the user's message")
    suggestions: Optional[list[str]] = Field(
        default=None,
        description=(
            "3-4 relevant follow-up questions the USER could ask next "
            "(from the user's perspective, not the assistant's)"
        ),
    )


class ClientSideChatTransport:
    """Chat transport backed by a model running on this machine.

    Holds no per-request state: every send_messages() call builds its own model
    binding, and download/stream bookkeeping lives in locals of that call.
    """

    def __init__(
        self,
        settings: ModelSettings | None = None,
        model_factory: Callable[[], LocalLanguageModel] | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self._settings = settings or ModelSettings()
        self._model_factory = model_factory
        self._system_prompt = system_prompt or SYSTEM_PROMPT

    def create_model(self) -> LocalLanguageModel:
        if self._model_factory is not None:
            return self._model_factory()
        s = self._settings
        if s.provider != "ollama":
            raise ValueError(f"unsupported model provider: {s.provider!r}")
        return OllamaModel(
            base_url=s.base_url,
            model_name=s.name,
            api_key=s.api_key,
            timeout=s.timeout,
            keep_alive=s.keep_alive,
        )

    async def write_download_progress(
        self,
        writer: EventSink,
        *,
        id: str,
        status: Literal["downloading", "complete"],
        progress: int,
        message: str,
    ) -> None:
        await writer.emit(
            ModelDownloadProgressChunk(
                id=id,
                data=DownloadProgress(status=status, progress=progress, message=message),
            )
        )

    async def ensure_ready(
        self,
        model: LocalLanguageModel,
        writer: EventSink,
        availability: Availability | None = None,
    ) -> LocalLanguageModel:
        """Download/initialize the model if needed, reporting progress to writer."""
        if availability is None:
            availability = await model.availability()
        if availability == Availability.AVAILABLE:
            return model
        # unavailable is not fatal here: initialization is attempted either way
        logger.info("model not ready, initializing", extra={"availability": availability.value})
        download_id: str | None = None

        async def on_progress(progress: float) -> None:
            nonlocal download_id
            percent = round(progress * 100)
            if progress >= 1:
                if download_id:
                    await self.write_download_progress(
                        writer,
                        id=download_id,
                        status="complete",
                        progress=100,
                        message=DOWNLOADED_MESSAGE,
                    )
                return
            if not download_id:
                download_id = new_id("download")
            await self.write_download_progress(
                writer,
                id=download_id,
                status="downloading",
                progress=percent,
                message=DOWNLOADING_MESSAGE,
            )

        await model.create_session_with_progress(on_progress)

        # Close the progress indicator before the answer starts streaming
        if download_id:
            await self.write_download_progress(
                writer, id=download_id, status="complete", progress=100, message=""
            )
        return model

    async def stream_response(
        self,
        model: LocalLanguageModel,
        messages: list[dict[str, str]],
        writer: EventSink,
        abort_signal: asyncio.Event | None = None,
    ) -> None:
        """Stream text deltas from structured output, then send suggestions."""
        result = stream_object(
            model,
            system=self._system_prompt,
            messages=messages,
            schema=ChatResponse,
            abort_signal=abort_signal,
        )
        text_id: str | None = None
        previous_text = ""

        async for partial in result.partial_object_stream:
            response = partial.get("response")
            if not isinstance(response, str) or not response or response == previous_text:
                continue
            if not text_id:
                text_id = new_id("text")
                await writer.emit(TextStartChunk(id=text_id))
            delta = response[len(previous_text):]
            if delta:
                await writer.emit(TextDeltaChunk(id=text_id, delta=delta))
            previous_text = response

        if text_id:
            await writer.emit(TextEndChunk(id=text_id))

        try:
            final = await result.object()
        except GenerationAborted:
            logger.info("generation aborted", extra={"chars": len(previous_text)})
            return
        if final.suggestions:
            await writer.emit(SuggestionsChunk(id=new_id("suggestions"), data=final.suggestions))

    async def send_messages(
        self,
        *,
        chat_id: str,
        messages: Iterable[UIMessage | dict[str, Any]],
        abort_signal: asyncio.Event | None = None,
        trigger: Trigger = "submit-message",
        message_id: str | None = None,
        **options: Any,
    ) -> AsyncIterator[BaseModel]:
        prompt = convert_to_model_messages(messages)
        logger.debug(
            "send_messages",
            extra={"chat_id": chat_id, "trigger": trigger, "messages": len(prompt)},
        )
        model = self.create_model()

        availability = await model.availability()
        if availability == Availability.AVAILABLE:

            async def execute_ready(writer: EventSink) -> None:
                await self.stream_response(model, prompt, writer, abort_signal)

            return create_ui_message_stream(execute_ready)

        async def execute(writer: EventSink) -> None:
            try:
                await self.ensure_ready(model, writer, availability)
                await self.stream_response(model, prompt, writer, abort_signal)
            except Exception as e:
                logger.warning("local generation failed: %s", e, extra={"chat_id": chat_id})
                await writer.emit(
                    NotificationChunk(data=Notification(message=f"Error: {str(e) or 'Unknown error'}"))
                )
                raise

        return create_ui_message_stream(execute)

    async def reconnect_to_stream(self, **options: Any) -> None:
        """Nothing to reconnect to: streams live only inside the send_messages call."""
        return None
