"""Chat protocol chunks and UI message records. All payloads are Pydantic models."""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def new_id(prefix: str) -> str:
    """Span identifier, e.g. text-3f2a..."""
    return f"{prefix}-{uuid.uuid4().hex}"


class UIMessagePart(BaseModel):
    """One part of a UI message. Only type == "text" reaches the model."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None
    id: Optional[str] = None
    data: Any = None


class UIMessage(BaseModel):
    """Message record as the chat UI keeps it."""

    id: str = ""
    role: Literal["system", "user", "assistant"]
    parts: list[UIMessagePart] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class TextStartChunk(BaseModel):
    type: Literal["text-start"] = "text-start"
    id: str


class TextDeltaChunk(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    id: str
    delta: str


class TextEndChunk(BaseModel):
    type: Literal["text-end"] = "text-end"
    id: str


class SuggestionsChunk(BaseModel):
    """Follow-up questions, sent once the final object is known."""

    type: Literal["data-suggestions"] = "data-suggestions"
    id: str
    data: list[str]


class DownloadProgress(BaseModel):
    status: Literal["downloading", "complete"]
    progress: int = Field(ge=0, le=100)
    message: str = ""


class ModelDownloadProgressChunk(BaseModel):
    """Transient: the UI renders it and drops it from durable history."""

    type: Literal["data-modelDownloadProgress"] = "data-modelDownloadProgress"
    id: str
    data: DownloadProgress
    transient: bool = True


class Notification(BaseModel):
    message: str
    level: Literal["error"] = "error"


class NotificationChunk(BaseModel):
    type: Literal["data-notification"] = "data-notification"
    id: Optional[str] = None
    data: Notification
    transient: bool = True


UIMessageChunk = Annotated[
    Union[
        TextStartChunk,
        TextDeltaChunk,
        TextEndChunk,
        SuggestionsChunk,
        ModelDownloadProgressChunk,
        NotificationChunk,
    ],
    Field(discriminator="type"),
]

_chunk_adapter: TypeAdapter[UIMessageChunk] = TypeAdapter(UIMessageChunk)


def chunk_to_json(chunk: BaseModel) -> str:
    return chunk.model_dump_json(exclude_none=True)


def parse_chunk(raw: str | bytes) -> BaseModel:
    """Validate a serialized chunk back into its concrete class."""
    return _chunk_adapter.validate_json(raw)
