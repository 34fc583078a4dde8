from __future__ import annotations

import logging
import os

_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

_configured = False


def _ensure_base_logger() -> None:
    global _configured
    if _configured:
        return
    level = os.getenv("BUILDFORGE_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=_FORMAT)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    _ensure_base_logger()
    return logging.getLogger(name)


def set_level(level: int) -> None:
    _ensure_base_logger()
    logging.getLogger("buildforge").setLevel(level)
