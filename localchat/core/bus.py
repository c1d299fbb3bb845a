"""Redis pub/sub sink: fan protocol chunks out to other processes (e.g. a web UI)."""

from __future__ import annotations

import logging
from typing import AsyncIterator

import redis.asyncio as aioredis
from pydantic import BaseModel, ValidationError

from localchat.core.events import chunk_to_json, parse_chunk

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "localchat:chat:"


def chat_channel(chat_id: str, prefix: str = CHANNEL_PREFIX) -> str:
    return f"{prefix}{chat_id}"


class RedisEventSink:
    """EventSink publishing each chunk as JSON on one Redis channel."""

    def __init__(self, redis_url: str, channel: str) -> None:
        self._redis_url = redis_url
        self._channel = channel
        self._client: aioredis.Redis | None = None
        self._pubsub: aioredis.client.PubSub | None = None

    @property
    def channel(self) -> str:
        return self._channel

    async def connect(self) -> None:
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=False,
            )
            await self._client.ping()
        logger.info("RedisEventSink connected", extra={"channel": self._channel})

    async def disconnect(self) -> None:
        if self._pubsub:
            await self._pubsub.close()
            self._pubsub = None
        if self._client:
            await self._client.close()
            self._client = None

    async def _ensure_connected(self) -> None:
        if self._client is None:
            await self.connect()

    async def emit(self, chunk: BaseModel) -> None:
        await self._ensure_connected()
        await self._client.publish(self._channel, chunk_to_json(chunk))

    async def listen(self) -> AsyncIterator[BaseModel]:
        """Subscribe and yield chunks until the connection closes."""
        await self._ensure_connected()
        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self._channel)
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                data = message.get("data")
                if not data:
                    continue
                try:
                    yield parse_chunk(data)
                except ValidationError as e:
                    logger.warning(
                        "failed to deserialize chunk",
                        extra={"channel": self._channel, "error": str(e)},
                    )
        finally:
            if self._pubsub:
                await self._pubsub.unsubscribe()
