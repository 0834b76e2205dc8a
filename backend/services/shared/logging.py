"""Structured logging for SongSmith.

All loggers live under the "songsmith" namespace so they can be controlled
with a single root level.  Pipeline code logs through ``song_logger`` so
every line carries the song id it belongs to.
"""
from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple

_ROOT = "songsmith"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure the songsmith root logger.

    Args:
        level: Log level string ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL").
        log_file: Optional path to a rotating file log.
        max_bytes: Max size before rotation (default 10 MB).
        backup_count: Number of backup files to keep.

    Raises:
        ValueError: If level is not a valid log level string.
    """
    upper = level.upper()
    if upper not in _VALID_LEVELS:
        raise ValueError(f"Invalid log level: {level!r}. Must be one of {_VALID_LEVELS}")

    numeric = getattr(logging, upper)
    fmt = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root = logging.getLogger(_ROOT)
    root.setLevel(numeric)

    # Repeated calls (tests, reloads) must not stack handlers
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(numeric)
    console.setFormatter(fmt)
    root.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    root.propagate = False


def setup_logging_from_config(config: Any) -> None:
    """Apply the ``logging.*`` section of a Config."""
    log_file = config.get("logging.file")
    setup_logging(
        level=config.get("logging.level", "INFO"),
        log_file=str(config.get_path("logging.file")) if log_file else None,
        max_bytes=int(config.get("logging.max_bytes", 10 * 1024 * 1024)),
        backup_count=int(config.get("logging.backup_count", 5)),
    )


class SongLogAdapter(logging.LoggerAdapter):
    """Prefixes each message with ``[song_id]``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['song_id']}] {msg}", kwargs


def song_logger(logger: logging.Logger, song_id: str) -> SongLogAdapter:
    return SongLogAdapter(logger, {"song_id": song_id})
