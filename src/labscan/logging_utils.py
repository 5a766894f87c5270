"""Logging helpers for the labscan pipeline."""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

from config import Settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
ROOT_LOGGER = "labscan"

# Third-party loggers that report every request or decode at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "PIL")


def configure_logging(settings: Settings, *, force: bool = False, stream: Optional[TextIO] = None) -> None:
    """Configure root logging for a CLI or API process from ``settings``."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if settings.debug:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        handlers=[logging.StreamHandler(stream or sys.stdout)],
        format=LOG_FORMAT,
        force=force,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a logger under the ``labscan`` hierarchy.

    Module names such as ``src.labscan.classifier`` are shortened to
    ``labscan.classifier`` so log lines match the installed package name.
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO,
            handlers=[logging.StreamHandler(sys.stdout)],
            format=LOG_FORMAT,
        )
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    if name.startswith("src."):
        name = name[len("src."):]
    return logging.getLogger(name)
