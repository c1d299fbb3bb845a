"""Entry point for localchat: send one prompt through the transport and render the chunks.

Usage:
  localchat "What is a mutex?"
  localchat --json "Hi"          # one JSON chunk per line
  localchat --publish "Hi"       # also publish chunks to Redis (localchat:chat:<chat-id>)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import uuid
from typing import TYPE_CHECKING, TextIO

from localchat.config import get_config
from localchat.core.bus import RedisEventSink, chat_channel
from localchat.core.events import (
    ModelDownloadProgressChunk,
    NotificationChunk,
    SuggestionsChunk,
    TextDeltaChunk,
    TextEndChunk,
    chunk_to_json,
)
from localchat.core.logging_config import setup_logging
from localchat.transport import ClientSideChatTransport

if TYPE_CHECKING:
    from pydantic import BaseModel

    from localchat.config.loader import Config

logger = logging.getLogger(__name__)

# Time the stream gets to wind down after the first Ctrl-C before it is cancelled
ABORT_GRACE_SECONDS = 2.0


class InterruptHandler:
    """SIGINT: first press aborts generation, a second press or the grace timeout cancels the task."""

    def __init__(self, abort: asyncio.Event, task: asyncio.Task, grace: float = ABORT_GRACE_SECONDS) -> None:
        self._abort = abort
        self._task = task
        self._grace = grace
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False
        self.cancelled = False

    def __call__(self) -> None:
        if self._closed:
            return
        if self._abort.is_set():
            self._cancel()
            return
        logger.info("interrupted, aborting generation")
        self._abort.set()
        self._timer = asyncio.get_running_loop().call_later(self._grace, self._cancel)

    def _cancel(self) -> None:
        if not self._task.done():
            self.cancelled = True
            self._task.cancel()

    def close(self) -> None:
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


def render_chunk(chunk: BaseModel, out: TextIO, err: TextIO, as_json: bool = False) -> None:
    if as_json:
        out.write(chunk_to_json(chunk) + "\n")
        out.flush()
        return
    if isinstance(chunk, TextDeltaChunk):
        out.write(chunk.delta)
        out.flush()
    elif isinstance(chunk, TextEndChunk):
        out.write("\n")
        out.flush()
    elif isinstance(chunk, SuggestionsChunk):
        out.write("\nYou could ask:\n")
        for s in chunk.data:
            out.write(f"  - {s}\n")
    elif isinstance(chunk, ModelDownloadProgressChunk):
        if chunk.data.status == "downloading":
            err.write(f"\r{chunk.data.message} {chunk.data.progress}%")
        elif chunk.data.message:
            err.write(f"\r{chunk.data.message}\n")
        err.flush()
    elif isinstance(chunk, NotificationChunk):
        err.write(f"{chunk.data.message}\n")


async def run_prompt(
    config: Config,
    prompt: str,
    *,
    chat_id: str,
    as_json: bool = False,
    publish: bool = False,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    out = out or sys.stdout
    err = err or sys.stderr
    transport = ClientSideChatTransport(
        settings=config.model,
        system_prompt=config.transport.system_prompt,
    )
    abort = asyncio.Event()
    loop = asyncio.get_running_loop()
    interrupt = InterruptHandler(abort, asyncio.current_task(), grace=ABORT_GRACE_SECONDS)
    handles_sigint = True
    try:
        loop.add_signal_handler(signal.SIGINT, interrupt)
    except (NotImplementedError, RuntimeError, ValueError):
        handles_sigint = False
    messages = [
        {"id": uuid.uuid4().hex, "role": "user", "parts": [{"type": "text", "text": prompt}]}
    ]
    sink: RedisEventSink | None = None
    try:
        if publish:
            sink = RedisEventSink(config.redis.url, chat_channel(chat_id, config.redis.channel_prefix))
            await sink.connect()
        stream = await transport.send_messages(
            chat_id=chat_id, messages=messages, abort_signal=abort
        )
        async for chunk in stream:
            render_chunk(chunk, out, err, as_json=as_json)
            if sink is not None:
                await sink.emit(chunk)
    except asyncio.CancelledError:
        if not interrupt.cancelled:
            raise
        err.write("\nInterrupted\n")
        return 130
    except Exception as e:
        logger.error("chat failed: %s", e, extra={"chat_id": chat_id})
        return 1
    finally:
        interrupt.close()
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)
        if sink is not None:
            await sink.disconnect()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="localchat", description="Chat with a local model")
    parser.add_argument("prompt", help="Message to send")
    parser.add_argument("--config", help="Path to YAML config", default=None)
    parser.add_argument("--chat-id", default=None, help="Conversation id (default: random)")
    parser.add_argument("--json", action="store_true", help="Print raw protocol chunks")
    parser.add_argument("--publish", action="store_true", help="Publish chunks to Redis")
    args = parser.parse_args(argv)

    config = get_config(args.config)
    setup_logging(config.logging.level, use_json=config.logging.use_json)
    return asyncio.run(
        run_prompt(
            config,
            args.prompt,
            chat_id=args.chat_id or uuid.uuid4().hex,
            as_json=args.json,
            publish=args.publish,
        )
    )


if __name__ == "__main__":
    sys.exit(main())
