"""Console logging switch for the ``logs`` config flag."""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER = "sybaselink"


def enable_console_logging(level: int = logging.DEBUG) -> logging.Logger:
    """Attach a stderr handler to the package logger (once) and lower its level."""

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    if not any(getattr(handler, "_sybaselink_console", False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._sybaselink_console = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger


__all__ = ["ROOT_LOGGER", "enable_console_logging"]
