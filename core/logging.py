"""Shared logging helpers."""

from __future__ import annotations

import logging
import os
from typing import Optional

try:  # pragma: no cover - optional dependency
    from google.cloud import logging as gcp_logging
except Exception:  # pragma: no cover - GCP logging optional
    gcp_logging = None

_CONFIGURED = False
_CLOUD_HANDLER_ATTACHED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_TRUTHY = {"1", "true", "yes", "on"}


def _level_from_env(default: int) -> int:
    raw = os.getenv("ENTITLEMENT_LOG_LEVEL")
    if not raw:
        return default
    resolved = logging.getLevelName(raw.strip().upper())
    return resolved if isinstance(resolved, int) else default


def _maybe_setup_google_logging(level: int) -> None:
    """Attach Google Cloud Logging handler when enabled via environment."""
    global _CLOUD_HANDLER_ATTACHED
    if _CLOUD_HANDLER_ATTACHED or gcp_logging is None:
        return
    if os.getenv("ENABLE_GOOGLE_CLOUD_LOGGING", "false").strip().lower() not in _TRUTHY:
        return
    try:
        client = gcp_logging.Client()
        client.setup_logging(log_level=level)
        _CLOUD_HANDLER_ATTACHED = True
    except Exception as exc:  # pragma: no cover - handler best-effort
        logging.getLogger(__name__).warning("Failed to initialise Google Cloud Logging: %s", exc)


def setup_logging(level: int = logging.INFO, *, fmt: Optional[str] = None) -> None:
    """Configure the root logger once, honouring ``ENTITLEMENT_LOG_LEVEL``."""
    global _CONFIGURED
    effective = _level_from_env(level)
    if not _CONFIGURED:
        logging.basicConfig(level=effective, format=fmt or _DEFAULT_FORMAT)
        _CONFIGURED = True
    _maybe_setup_google_logging(effective)


def get_logger(name: str, *, level: Optional[int] = None) -> logging.Logger:
    """Return a module logger after making sure logging is configured."""
    setup_logging()
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger


__all__ = ["get_logger", "setup_logging"]
