from __future__ import annotations

import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "sidewalk_router"
LOG_FILE_NAME = "router.log.jsonl"


def _parse_level(name: str) -> int:
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _resolve_log_dir(configured_out_dir: str) -> Path | None:
    """First writable log directory: OUT_DIR/logs, ./out/logs, then the temp dir."""
    for base in (Path(configured_out_dir), Path.cwd() / "out", Path(gettempdir()) / "sidewalk-router"):
        log_dir = base / "logs"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            marker = log_dir / ".probe"
            marker.write_bytes(b"")
            marker.unlink()
        except OSError:
            continue
        return log_dir
    return None


def _handlers(out_dir: str) -> list[logging.Handler]:
    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    handlers: list[logging.Handler] = [stream]
    log_dir = _resolve_log_dir(out_dir)
    if log_dir is not None:
        try:
            file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        except OSError:
            return handlers
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    return handlers


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    # Reloaders import the app twice; attach handlers once.
    if getattr(logger, "_sidewalk_configured", False):
        return logger
    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False
    for handler in _handlers(settings.out_dir):
        logger.addHandler(handler)
    logger._sidewalk_configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def log_event(event: str, **fields: Any) -> None:
    """Emit one structured record; ``event`` is both the message and a top-level key."""
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    LOGGER.info(event, extra={"event": event, **fields})
