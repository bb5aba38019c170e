"""Logging helpers shared by the obstruction bingo lanes."""

from __future__ import annotations

import logging
import os
from pathlib import Path


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class OutboxLaneFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if record.levelno >= logging.WARNING:
            return True
        return record.name.startswith("obstruction_bingo.report_outbox")


def configure_logging(level: int = logging.INFO, log_paths: list[str] | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    outbox_path = log_paths[0] if log_paths else (os.getenv("OUTBOX_LOG_PATH") or "").strip() or None
    if outbox_path:
        path = Path(outbox_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.addFilter(OutboxLaneFilter())
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
    )


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    token = str(name or "").strip().upper()
    if not token:
        return default
    value = logging.getLevelName(token)
    return value if isinstance(value, int) else default
