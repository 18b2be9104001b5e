"""JSON-lines logging for the tracker runtime and CLI.

Components log with ``extra={"event": "session.started", ...}``. The event
name is lifted to the top level of each line; the remaining extra fields are
kept under ``"extra"`` so log files can be filtered per session or user.
"""

from __future__ import annotations

import json
import logging
import sys
import tempfile
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping, Optional

__all__ = [
    "JsonLogFormatter",
    "configure_logger",
]

_FILE_MARKER = "_study_tracker_file"
_CONSOLE_MARKER = "_study_tracker_console"

# Attributes every LogRecord has; anything else arrived through ``extra``.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, event and message."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        fields = _extra_fields(record)
        event = fields.pop("event", None)
        if event is not None:
            entry["event"] = event
        if fields:
            entry["extra"] = fields
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=True)


def configure_logger(
    name: str,
    *,
    log_dir: Path,
    level: str = "INFO",
    verbose: bool = False,
    max_bytes: int = 2 * 1024 * 1024,
    backup_count: int = 3,
    filename: str | None = None,
) -> tuple[logging.Logger, Path]:
    """Return the ``name`` logger writing JSON lines under ``log_dir``.

    Handlers installed here are tagged. Calling again updates them in place,
    and the file handler keeps the path it was first opened with.
    """

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    file_handler = _tagged(logger, _FILE_MARKER)
    if file_handler is None:
        log_name = filename or f"{name.rsplit('.', 1)[-1]}.log"
        file_handler = _open_log_file(log_dir, log_name)
        _attach(logger, file_handler, _FILE_MARKER)
    assert isinstance(file_handler, RotatingFileHandler)
    file_handler.setLevel(logging.DEBUG if verbose else _coerce_level(level))
    file_handler.maxBytes = max_bytes
    file_handler.backupCount = backup_count

    console = _tagged(logger, _CONSOLE_MARKER)
    if verbose and console is None:
        console = logging.StreamHandler(stream=sys.stderr)
        console.setLevel(logging.DEBUG)
        console.setFormatter(
            logging.Formatter("%(levelname)s %(name)s: %(message)s")
        )
        _attach(logger, console, _CONSOLE_MARKER)
    elif not verbose and console is not None:
        logger.removeHandler(console)
        console.close()

    return logger, Path(file_handler.baseFilename)


def _coerce_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def _tagged(logger: logging.Logger, marker: str) -> Optional[logging.Handler]:
    return next(
        (h for h in logger.handlers if getattr(h, marker, False)), None
    )


def _attach(logger: logging.Logger, handler: logging.Handler, marker: str) -> None:
    setattr(handler, marker, True)
    logger.addHandler(handler)


def _open_log_file(log_dir: Path, filename: str) -> RotatingFileHandler:
    """Open ``filename`` in ``log_dir``, or in a temp dir if that is denied."""

    try:
        path = _touch_private(log_dir / filename)
    except PermissionError:
        path = _touch_private(_fallback_log_dir() / filename)
    handler = RotatingFileHandler(path, encoding="utf-8")
    handler.setFormatter(JsonLogFormatter())
    return handler


def _touch_private(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    try:
        path.chmod(0o600)
    except PermissionError:  # pragma: no cover - depends on filesystem
        pass
    return path


def _fallback_log_dir() -> Path:
    return Path(tempfile.gettempdir()) / "study-tracker-logs"


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: _jsonable(value)
        for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS
    }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return _jsonable(value.value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return str(value)
