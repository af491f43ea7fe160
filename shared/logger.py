"""
Warden Structured Logger
=========================

Provides :class:`WardenLogger`, a logging facade that writes readable
Rich console output and, optionally, JSON lines to a rotating log file.

Every record carries the component name (``"bundle"``, ``"engine"``,
``"cli"`` ...) and the current *operation*, so that one extraction run
can be followed across storage, locator and parser stages. The operation
lives in a :class:`contextvars.ContextVar`, which keeps worker threads of
a batch run from overwriting each other's scope.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich library. https://github.com/Textualize/rich
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

_THEME = Theme(
    {
        "log.level.debug": "dim cyan",
        "log.level.info": "bold bright_blue",
        "log.level.warning": "bold yellow",
        "log.level.error": "bold red",
        "log.level.critical": "bold white on red",
    }
)

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_PASSTHROUGH_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})

_current_operation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "warden_operation", default=None
)


class _JSONLineFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp``, ``level``, ``logger``, ``message`` and, when set,
    ``component``, ``operation``, ``extra`` and ``exc_info``.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in ("component", "operation")
            if getattr(record, key, None) is not None
        )
        fields = getattr(record, "fields", None)
        if fields:
            entry["extra"] = fields
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _console_handler(level: int) -> logging.Handler:
    return RichHandler(
        level=level,
        console=Console(theme=_THEME, stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )


def _file_handler(
    path: Path, level: int, *, json_lines: bool, max_bytes: int, backups: int
) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    if json_lines:
        handler.setFormatter(_JSONLineFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, "%Y-%m-%dT%H:%M:%S%z"))
    return handler


class WardenLogger:
    """Structured, context-aware logger for Warden components.

    Usage::

        log = WardenLogger("bundle", log_file="warden.log", json_logs=True)
        log.info("Opening bundle %s", path)
        with log.operation("read_entitlements"):
            log.debug("Slice %d signed", index, arch="arm64")

    Keyword arguments other than ``exc_info``, ``stack_info`` and
    ``stacklevel`` are collected into the record's structured fields.

    Args:
        component:       Component name; the stdlib logger is ``warden.<component>``.
        log_level:       Minimum severity name.
        log_file:        Rotating log file, or ``None`` for console only.
        json_logs:       Write JSON lines instead of plain text to the file.
        max_bytes:       File size that triggers rotation.
        backup_count:    Rotated files to keep.
        console_output:  Attach the Rich stderr handler.
    """

    def __init__(
        self,
        component: str,
        *,
        log_level: str = "INFO",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        console_output: bool = True,
    ) -> None:
        self._component = component
        level = logging.getLevelName(log_level.upper())
        if not isinstance(level, int):
            level = logging.INFO

        self._logger = logging.getLogger(f"warden.{component}")
        self._logger.setLevel(level)
        self._logger.propagate = False
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        if console_output:
            self._logger.addHandler(_console_handler(level))
        if log_file is not None:
            self._logger.addHandler(
                _file_handler(
                    Path(log_file),
                    level,
                    json_lines=json_logs,
                    max_bytes=max_bytes,
                    backups=backup_count,
                )
            )

    @classmethod
    def quiet(cls, component: str) -> WardenLogger:
        """A logger that discards every record."""
        inst = cls(component, console_output=False)
        inst._logger.addHandler(logging.NullHandler())
        return inst

    @property
    def component(self) -> str:
        return self._component

    @property
    def underlying(self) -> logging.Logger:
        """The stdlib logger behind this facade."""
        return self._logger

    @contextlib.contextmanager
    def operation(self, name: str) -> Iterator[WardenLogger]:
        """Tag every record emitted inside the block with *name*."""
        token = _current_operation.set(name)
        try:
            yield self
        finally:
            _current_operation.reset(token)

    @contextlib.contextmanager
    def timed(self, label: str) -> Iterator[None]:
        """Log *label* at DEBUG on entry and again with the elapsed seconds."""
        start = time.perf_counter()
        self.debug("Started: %s", label)
        try:
            yield
        finally:
            self.debug("Completed: %s (%.3f sec)", label, time.perf_counter() - start)

    def _emit(self, level: int, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        passthrough = {k: kwargs.pop(k) for k in list(kwargs) if k in _PASSTHROUGH_KWARGS}
        extra = {
            "component": self._component,
            "operation": _current_operation.get(),
            "fields": kwargs or None,
        }
        passthrough.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, extra=extra, **passthrough)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._emit(logging.ERROR, msg, args, kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """ERROR record with the active traceback attached."""
        kwargs.setdefault("exc_info", True)
        self._emit(logging.ERROR, msg, args, kwargs)
