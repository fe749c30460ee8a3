"""Structured JSON logging to a rotating file in the log directory, with fatal events echoed to stderr."""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_RESERVED = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())
_CONFIGURED_ATTR = "_statshttpd_configured"
_HANDLERS_ATTR = "_statshttpd_handlers"


class JsonFormatter(logging.Formatter):
    """Serialize log records as compact JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        }
        if extras:
            payload["context"] = extras

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_logging(
    level: str = "INFO",
    log_dir: str | Path | None = None,
    *,
    file_name: str = "statshttpd.log",
    max_bytes: int = 100 * 1024 * 1024,
    backup_count: int = 10,
    stderr_level: str = "CRITICAL",
) -> None:
    """Configure process-wide JSON logging once.

    Records go to ``log_dir/file_name`` when a directory is given, otherwise to
    stdout. Records at ``stderr_level`` and above are also written to stderr.
    Raises ``OSError`` if the log directory cannot be created.
    """

    root = logging.getLogger()
    if getattr(root, _CONFIGURED_ATTR, False):
        return

    formatter = JsonFormatter()
    handlers: list[logging.Handler] = []

    if log_dir is not None:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        main_handler: logging.Handler = RotatingFileHandler(
            directory / file_name,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    else:
        main_handler = logging.StreamHandler(stream=sys.stdout)
    main_handler.setFormatter(formatter)
    handlers.append(main_handler)

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setLevel(stderr_level.upper())
    stderr_handler.setFormatter(formatter)
    handlers.append(stderr_handler)

    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level.upper())
    setattr(root, _HANDLERS_ATTR, handlers)
    setattr(root, _CONFIGURED_ATTR, True)


def shutdown_logging() -> None:
    """Flush and detach the handlers installed by ``configure_logging``."""

    root = logging.getLogger()
    handlers: list[logging.Handler] = getattr(root, _HANDLERS_ATTR, [])
    for handler in handlers:
        handler.flush()
        root.removeHandler(handler)
        handler.close()
    setattr(root, _HANDLERS_ATTR, [])
    setattr(root, _CONFIGURED_ATTR, False)
