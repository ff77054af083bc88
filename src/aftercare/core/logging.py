"""Structured logging for Aftercare.

Modules keep using ``logging.getLogger(__name__)``; structlog's
ProcessorFormatter renders every stdlib record, as coloured text or JSON
lines on stderr. Each record carries the signed-in user id from a
ContextVar.

With ``log_root`` set, JSON copies go to ``aftercare.log`` (everything) and
``http.log`` (httpx and httpcore only).
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog

_user_context: ContextVar[str | None] = ContextVar("user_id", default=None)

# Transport loggers: held at WARNING on the console, mirrored to http.log.
_HTTP_LOGGERS = ("httpx", "httpcore")


def set_user_context(user_id: str | None) -> None:
    _user_context.set(user_id)


def get_user_context() -> str | None:
    return _user_context.get()


def add_user_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """structlog processor stamping ``user_id`` on the event."""
    event_dict["user_id"] = _user_context.get()
    return event_dict


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_user_context,
    ]


def _formatter(renderer: structlog.types.Processor, time_fmt: str) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_pre_chain(time_fmt),
    )


def _json_file(path: Path) -> logging.FileHandler:
    handler = logging.FileHandler(path)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), "iso"))
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    user_id: str | None = None,
) -> None:
    """Install console (and optional file) handlers on the root logger.

    Reconfiguring replaces earlier handlers. An unknown *level* falls back
    to INFO; *fmt* is ``"text"`` or ``"json"``.
    """
    if user_id:
        set_user_context(user_id)

    if fmt == "json":
        console = _formatter(structlog.processors.JSONRenderer(), "iso")
    else:
        console = _formatter(structlog.dev.ConsoleRenderer(), "%H:%M:%S")
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    http_loggers = [logging.getLogger(name) for name in _HTTP_LOGGERS]
    for http_logger in http_loggers:
        http_logger.setLevel(logging.WARNING)
        http_logger.handlers.clear()

    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        root.addHandler(_json_file(log_root / "aftercare.log"))
        http_handler = _json_file(log_root / "http.log")
        for http_logger in http_loggers:
            http_logger.addHandler(http_handler)
