"""Observability layer: centralized logger setup for stream and HIL tracing."""

from __future__ import annotations

import logging


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger once for structured single-line console output."""
    normalized = level.upper()
    logging.basicConfig(
        level=normalized,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        force=True,
    )
    # httpx logs every request at INFO; keep it one notch quieter than ours.
    root_level = logging.getLogger().level
    transport_level = root_level if root_level <= logging.DEBUG else max(logging.WARNING, root_level)
    for name in ("httpx", "httpcore"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(transport_level)
        logger.propagate = True


def get_logger(name: str) -> logging.Logger:
    """Return a module-level logger instance."""
    return logging.getLogger(name)
