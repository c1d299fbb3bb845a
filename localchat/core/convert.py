"""UI message history -> flat role/content list for the model."""

from __future__ import annotations

from typing import Any, Iterable

from localchat.core.events import UIMessage


def convert_to_model_messages(
    messages: Iterable[UIMessage | dict[str, Any]],
) -> list[dict[str, str]]:
    """Keep text parts in order; data parts (suggestions, progress, notifications) are UI-only."""
    out: list[dict[str, str]] = []
    for raw in messages:
        msg = raw if isinstance(raw, UIMessage) else UIMessage.model_validate(raw)
        text = "".join(p.text or "" for p in msg.parts if p.type == "text")
        if not text:
            continue
        out.append({"role": msg.role, "content": text})
    return out
