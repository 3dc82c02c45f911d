import collections
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, OrderedDict

from .config import LogConfig

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_MAX_OPEN_LOGGERS = 16
_OPEN_LOGGERS: "OrderedDict[Path, logging.Logger]" = collections.OrderedDict()


def _level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_rotating_logger(name: str, log_config: LogConfig) -> logging.Logger:
    """
    Return the logger that writes to ``log_config.path``, opening its
    rotating file on first use.

    Loggers are keyed by file, so apps in one process that point at
    different logs stay apart and apps sharing a log share one handler.
    Past a small bound the least recently used file is closed.
    """
    path = log_config.path.resolve()
    logger = _OPEN_LOGGERS.get(path)
    if logger is None:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=log_config.max_bytes,
            backupCount=log_config.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger = logging.getLogger(f"{name}[{path}]")
        logger.handlers.clear()
        logger.addHandler(handler)
        logger.propagate = False
        _OPEN_LOGGERS[path] = logger
    _OPEN_LOGGERS.move_to_end(path)
    logger.setLevel(_level(log_config.level))
    while len(_OPEN_LOGGERS) > _MAX_OPEN_LOGGERS:
        _, evicted = _OPEN_LOGGERS.popitem(last=False)
        for handler in list(evicted.handlers):
            evicted.removeHandler(handler)
            handler.close()
    return logger


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    *,
    exc: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    """Emit one JSON object per line: ``{"event": ..., **fields}``."""
    if not logger.isEnabledFor(level):
        return
    payload: dict[str, Any] = {"event": event}
    payload.update({key: value for key, value in fields.items() if value is not None})
    if exc is not None:
        payload["error"] = str(exc) or exc.__class__.__name__
        payload["error_type"] = exc.__class__.__name__
    try:
        message = json.dumps(payload, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        message = f"{event} {fields!r}"
    logger.log(level, message)


__all__ = ["log_event", "setup_rotating_logger"]
