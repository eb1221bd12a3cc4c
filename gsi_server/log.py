"""Structured logging helpers (stdlib logging + key=value context)."""

from __future__ import annotations

import logging
from typing import Any

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def log_event(logger: logging.Logger, level: int, event: str, **ctx: Any) -> None:
    # Keep context JSON-safe; anything else goes through repr().
    safe: dict[str, Any] = {}
    for k, v in ctx.items():
        if v is None or isinstance(v, (str, int, float, bool)):
            safe[str(k)] = v
        else:
            try:
                safe[str(k)] = repr(v)
            except Exception:
                safe[str(k)] = "<unrepr>"
    logger.log(level, event, extra={"context": safe})


class ContextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        ctx = getattr(record, "context", None)
        if not ctx:
            return base
        tail = " ".join(f"{k}={v}" for k, v in ctx.items())
        return f"{base} {tail}"


def configure_logging(level: str | int = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ContextFormatter(_FORMAT))
    root = logging.getLogger("gsi_server")
    root.handlers[:] = [handler]
    root.setLevel(level if isinstance(level, int) else level.upper())
    root.propagate = False
