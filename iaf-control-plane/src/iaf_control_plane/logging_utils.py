"""
Utilities for configuring consistent logging across the control plane.

This module centralizes the setup of Python's logging subsystem so that the API
server and every service module emit structured, unbuffered logs to stdout. The
log level and format are configurable via environment variables:

- ``IAF_LOG_LEVEL`` controls the root log level (default: ``INFO``).
- ``IAF_LOG_FORMAT`` controls the message format.

Audit records are written to the ``iaf.audit`` logger so they can be routed
separately from operational logs.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Final

DEFAULT_FORMAT: Final[str] = os.environ.get(
    "IAF_LOG_FORMAT",
    "%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"
AUDIT_LOGGER_NAME: Final[str] = "iaf.audit"
_CONFIGURED: bool = False


def _resolve_level(name: str | None) -> int:
    if not name:
        return logging.INFO
    normalized = name.strip().upper()
    return getattr(logging, normalized, logging.INFO)


def configure_logging(level: str | None = None, *, force: bool = False) -> None:
    """
    Configure the root logger to stream structured messages to stdout.

    Args:
        level: Log level name; falls back to ``IAF_LOG_LEVEL`` then ``INFO``.
        force: When True, existing handlers are cleared before configuring.
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    root_logger = logging.getLogger()
    if force:
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)

    resolved = _resolve_level(level or os.environ.get("IAF_LOG_LEVEL"))
    root_logger.setLevel(resolved)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
    root_logger.addHandler(handler)

    # Quiet down noisy dependencies unless explicitly overridden.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, resolved))
    logging.getLogger("uvicorn.access").setLevel(max(logging.WARNING, resolved))

    _CONFIGURED = True


def audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)
