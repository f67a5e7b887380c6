"""Log record context and root logger setup for the chat server.

``setup_logging("Server")`` runs once at startup. HTTP middleware sets
``request_id_var`` and the chat socket sets ``room_id_var``; every record
emitted while those are set carries them in its prefix::

    2026-02-17 14:30:01 [Server][Req req_1a2b][Room room_lx2k9_a8f3de][INFO] services.pipeline:90 - Cache hit
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from contextvars import ContextVar
from pathlib import Path

request_id_var: ContextVar[str] = ContextVar("request_id_var", default="")
room_id_var: ContextVar[str] = ContextVar("room_id_var", default="")

STREAM_HANDLER = "_chatbot_stream"
FILE_HANDLER = "_chatbot_file"

QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "websockets", "openai", "multipart")
UVICORN_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error")


def is_chatbot_handler(handler: logging.Handler) -> bool:
    return (getattr(handler, "name", None) or "").startswith("_chatbot")


class ContextFilter(logging.Filter):
    """Copies the process role and the current request/room ids onto each record."""

    def __init__(self, role: str) -> None:
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.role = self.role  # type: ignore[attr-defined]
        record.request_id = request_id_var.get("")  # type: ignore[attr-defined]
        record.room_id = room_id_var.get("")  # type: ignore[attr-defined]
        return True


class ContextFormatter(logging.Formatter):
    def _prefix(self, record: logging.LogRecord) -> str:
        role = getattr(record, "role", "")
        request_id = getattr(record, "request_id", "")
        room_id = getattr(record, "room_id", "")
        tags = [role] if role else []
        if request_id:
            tags.append(f"Req {request_id}")
        if room_id:
            tags.append(f"Room {room_id}")
        tags.append(record.levelname)
        return "".join(f"[{tag}]" for tag in tags)

    def format(self, record: logging.LogRecord) -> str:
        lines = [
            f"{self.formatTime(record, self.datefmt)} {self._prefix(record)} "
            f"{record.name}:{record.lineno} - {record.getMessage()}"
        ]
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            lines.append(record.exc_text)
        if record.stack_info:
            lines.append(record.stack_info)
        return "\n".join(lines)


def _attach(root: logging.Logger, handler: logging.Handler, name: str, role_filter, formatter) -> None:
    handler.name = name
    handler.addFilter(role_filter)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def setup_logging(role: str) -> None:
    """Install the stderr handler, plus a rotating file when ``LOG_FILE`` is set.

    A second call is a no-op. For the server role, uvicorn's own handlers are
    removed so its records go through the root handlers too.
    """
    from config import settings

    root = logging.getLogger()
    if any(h.name == STREAM_HANDLER for h in root.handlers if is_chatbot_handler(h)):
        return

    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    role_filter = ContextFilter(role)
    formatter = ContextFormatter(datefmt="%Y-%m-%d %H:%M:%S")

    _attach(root, logging.StreamHandler(sys.stderr), STREAM_HANDLER, role_filter, formatter)

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        _attach(root, file_handler, FILE_HANDLER, role_filter, formatter)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if "server" in role.lower():
        for name in UVICORN_LOGGERS:
            uv_logger = logging.getLogger(name)
            uv_logger.handlers.clear()
            uv_logger.propagate = True
