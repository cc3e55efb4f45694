"""Logging helpers for the roulette service and client."""
from __future__ import annotations

import logging
import sys

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.INFO, format: str | None = None) -> None:
    """Ensure the root logger is configured exactly once."""

    if logging.getLogger().handlers:
        # Respect any user provided configuration (uvicorn, pytest, ...).
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
