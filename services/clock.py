"""Injectable time sources for lifecycle and usage-window logic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from pathlib import Path
from typing import Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.env import env_str
from core.logging import get_logger

logger = get_logger(__name__)

HOST_ZONE_FILE = Path("/etc/localtime")


class Clock(Protocol):
    def now(self) -> datetime:
        """Return the current timezone-aware instant."""


def _load_zone(name: str) -> Optional[tzinfo]:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def _host_zone() -> Optional[tzinfo]:
    """The host's named zone from ``TZ`` or ``/etc/localtime``, with its DST rules."""
    tz_name = (env_str("TZ") or "").lstrip(":")
    if tz_name:
        zone = _load_zone(tz_name)
        if zone is not None:
            return zone
    if HOST_ZONE_FILE.is_file():
        try:
            with HOST_ZONE_FILE.open("rb") as handle:
                return ZoneInfo.from_file(handle, key="localtime")
        except (OSError, ValueError) as exc:
            logger.warning("Could not read host zone from %s: %s", HOST_ZONE_FILE, exc)
    return None


def resolve_timezone(name: Optional[str] = None) -> tzinfo:
    """Return the configured zone, falling back to the host's local zone."""
    zone_name = name or env_str("ENTITLEMENT_TIMEZONE")
    if zone_name:
        zone = _load_zone(zone_name)
        if zone is not None:
            return zone
        logger.warning("Unknown ENTITLEMENT_TIMEZONE '%s'; using local time.", zone_name)
    host = _host_zone()
    if host is not None:
        return host
    logger.warning("Host timezone could not be resolved; using UTC.")
    return timezone.utc


class SystemClock:
    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self._tz = tz or resolve_timezone()

    def now(self) -> datetime:
        return datetime.now(self._tz)


class ManualClock:
    """Clock that only moves when told to; used to pin boundaries in tests."""

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware start time.")
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            raise ValueError("ManualClock requires timezone-aware datetimes.")
        self._now = value

    def advance(self, delta: Optional[timedelta] = None, **kwargs: float) -> datetime:
        self._now = self._now + (delta or timedelta(**kwargs))
        return self._now


__all__ = ["Clock", "ManualClock", "SystemClock", "resolve_timezone"]
