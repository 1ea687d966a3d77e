from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from threading import Lock

_task_id_var: ContextVar[str | None] = ContextVar("task_id", default=None)

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s%(task_suffix)s: %(message)s"


def set_task_context(task_id: str | None) -> None:
    """Set the task id attached to log records emitted from the current context."""
    _task_id_var.set(task_id)


def get_task_id() -> str | None:
    return _task_id_var.get(None)


class _TaskContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        task_id = getattr(record, "task_id", None) or _task_id_var.get(None)
        record.task_id = task_id
        record.task_suffix = f" [task={task_id}]" if task_id else ""
        return True


class _JsonFormatter(logging.Formatter):
    """Emit one JSON object per log line with the task correlation field."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        task_id = getattr(record, "task_id", None)
        if task_id:
            payload["task_id"] = task_id
        if record.exc_info and record.exc_info[1] is not None:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


_configure_lock = Lock()
_handler: logging.Handler | None = None


def configure_logging(level: str = "INFO", *, json_output: bool = False) -> logging.Logger:
    global _handler
    root = logging.getLogger("teamflow")
    with _configure_lock:
        if _handler is not None:
            root.removeHandler(_handler)
        handler = logging.StreamHandler(sys.stderr)
        handler.addFilter(_TaskContextFilter())
        handler.setFormatter(_JsonFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
        root.addHandler(handler)
        root.setLevel(level.upper())
        _handler = handler
    return root
