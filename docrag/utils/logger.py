"""
Logging for the docrag service.

Console output is human readable and shows the request id and the document or
chat a record belongs to; the rotating file gets one JSON object per record
with every `extra={...}` field kept. Call init_logging() once at startup;
get_logger() initialises lazily for scripts and tests.
"""
from __future__ import annotations
import contextvars
import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)

# Attributes every LogRecord carries; anything else came in through `extra`.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "request_id", "context_part", "taskName"}

# Fields shown inline on the console, in this order.
_CONSOLE_FIELDS = (("request_id", "req"), ("document_id", "doc"), ("chat_id", "chat"))

# Chatty client libraries are capped at WARNING unless LOG_LEVEL is DEBUG.
_NOISY_LOGGERS = ("httpx", "httpcore", "google", "grpc", "faiss", "aiosqlite", "asyncio")

_handlers: list = []


def set_request_id(rid: Optional[str]) -> None:
    request_id.set(rid)


def clear_request_id() -> None:
    request_id.set(None)


class RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id.get()
        return True


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_ATTRS or key.startswith("_"):
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        fields[key] = value
    return fields


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = [
            f"{label}={getattr(record, attr)}"
            for attr, label in _CONSOLE_FIELDS
            if getattr(record, attr, None) is not None
        ]
        record.context_part = f" [{' '.join(tags)}]" if tags else ""
        return super().format(record)


def _resolve_level(level: Optional[int]) -> int:
    if level is not None:
        return level
    return getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)


def init_logging(
    *,
    level: Optional[int] = None,
    log_dir: Optional[Path] = None,
    filename: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Install the console and JSON file handlers on the root logger.

    Calling it again replaces only the handlers it installed before, so
    handlers added by a test runner or server are left alone. LOG_LEVEL,
    LOG_DIR and LOG_FILE are read from the environment when not passed.
    """
    root = logging.getLogger()
    for h in _handlers:
        root.removeHandler(h)
        h.close()
    _handlers.clear()

    chosen_level = _resolve_level(level)
    root.setLevel(chosen_level)
    request_filter = RequestIDFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter(
        "%(asctime)s %(levelname)-8s [%(name)s] %(message)s%(context_part)s",
        "%Y-%m-%d %H:%M:%S",
    ))
    _handlers.append(console)

    log_dir = Path(log_dir or os.getenv("LOG_DIR") or Path.cwd() / "logs")
    filename = filename or os.getenv("LOG_FILE", "docrag.log")
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            str(log_dir / filename),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        rotating.setFormatter(JsonFormatter())
        _handlers.append(rotating)
    except OSError:
        sys.stderr.write(f"docrag: cannot write logs to {log_dir}, console only\n")

    for h in _handlers:
        h.setLevel(chosen_level)
        h.addFilter(request_filter)
        root.addHandler(h)

    if chosen_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _handlers:
        init_logging()
    return logging.getLogger(name)
