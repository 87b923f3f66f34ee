"""Environment variable helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from core.logging import get_logger

logger = get_logger(__name__)


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def env_int(key: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %d.", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s=%d is below the minimum %d. Falling back to %d.", key, value, minimum, default)
        return default
    return value


def env_float(key: str, default: float, *, minimum: Optional[float] = None) -> float:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %.2f.", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s=%.2f is below the minimum %.2f. Falling back to %.2f.", key, value, minimum, default)
        return default
    return value


def env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    logger.warning("Invalid boolean env %s='%s'. Using default=%s.", key, raw, default)
    return default


def env_path(key: str, default: Path) -> Path:
    """Resolve a filesystem path from ``key``, expanding ``~``."""
    raw = env_str(key)
    return Path(raw).expanduser() if raw else Path(default)


__all__ = ["env_bool", "env_float", "env_int", "env_path", "env_str"]
