"""Structured logging for the transport and CLI. No secrets in log output."""

from __future__ import annotations

import json
import logging
import sys
from typing import IO, Any

# Attributes every LogRecord carries; anything else arrived through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}
_SECRET_KEYS = ("api_key", "authorization", "password", "secret")
_SECRET_VALUES = ("api_key", "password", "secret", "bearer")
REDACTED = "[REDACTED]"


def _redact(obj: Any, key: str = "") -> Any:
    if key and any(s in key.lower() for s in _SECRET_KEYS):
        return REDACTED
    if isinstance(obj, dict):
        return {k: _redact(v, str(k)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_redact(v) for v in obj]
    if isinstance(obj, str) and any(s in obj.lower() for s in _SECRET_VALUES):
        return REDACTED
    return obj


class StructuredFormatter(logging.Formatter):
    """JSON lines, or key=value pairs for terminals.

    Fields passed through ``extra=`` land next to timestamp/level/logger/message;
    secret-looking keys and values are replaced with ``[REDACTED]``.
    """

    def __init__(self, use_json: bool = True) -> None:
        super().__init__()
        self.use_json = use_json

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields.update(
            (k, _redact(v, k)) for k, v in record.__dict__.items() if k not in _RECORD_ATTRS
        )
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        if self.use_json:
            return json.dumps(fields, default=str, ensure_ascii=False)
        return " ".join(f"{k}={v!r}" for k, v in fields.items())


def setup_logging(level: str = "INFO", use_json: bool = True, stream: IO[str] | None = None) -> None:
    """Configure the root logger. Safe to call again: the handler is reused, not duplicated."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in root.handlers:
        if isinstance(h.formatter, StructuredFormatter):
            h.formatter.use_json = use_json
            return
    # stdout belongs to the streamed answer
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter(use_json=use_json))
    root.addHandler(handler)
