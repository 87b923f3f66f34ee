"""Per-user, per-feature usage counters with optional on-disk persistence."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from core.logging import get_logger
from core.tier_constants import Feature
from services.json_store import JsonDocumentStore

logger = get_logger(__name__)


@dataclass(slots=True)
class UsageCounter:
    count: int
    window_start: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "windowStart": self.window_start.isoformat()}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UsageCounter":
        count = int(payload.get("count") or 0)
        window_start = datetime.fromisoformat(str(payload["windowStart"]))
        if window_start.tzinfo is None:
            raise ValueError("windowStart must be timezone-aware")
        return cls(count=max(count, 0), window_start=window_start)


class UsageStore:
    """Map of ``user_id -> feature -> UsageCounter``.

    Counters are created on first access through :meth:`get_or_create`; the
    store never deletes them. When ``path`` is given every mutation is mirrored
    to a JSON document so counters survive a restart of the client.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._counters: Dict[str, Dict[Feature, UsageCounter]] = {}
        self._document = JsonDocumentStore(path, root_key="users") if path is not None else None
        self._hydrated: set[str] = set()

    def _user_counters(self, user_id: str) -> Dict[Feature, UsageCounter]:
        counters = self._counters.setdefault(user_id, {})
        if self._document is not None and user_id not in self._hydrated:
            self._hydrated.add(user_id)
            stored = self._document.load().get(user_id) or {}
            for name, payload in stored.items():
                try:
                    feature = Feature(name)
                    counters.setdefault(feature, UsageCounter.from_dict(payload))
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Dropping malformed usage counter %s for user=%s: %s", name, user_id, exc)
        return counters

    def get(self, user_id: str, feature: Feature) -> Optional[UsageCounter]:
        counter = self._user_counters(user_id).get(Feature(feature))
        if counter is None:
            return None
        return UsageCounter(count=counter.count, window_start=counter.window_start)

    def get_or_create(self, user_id: str, feature: Feature, window_start: datetime) -> UsageCounter:
        existing = self.get(user_id, feature)
        if existing is not None:
            return existing
        created = UsageCounter(count=0, window_start=window_start)
        self.put(user_id, feature, created)
        return UsageCounter(count=0, window_start=window_start)

    def put(self, user_id: str, feature: Feature, counter: UsageCounter) -> None:
        feature = Feature(feature)
        stored = UsageCounter(count=counter.count, window_start=counter.window_start)
        self._user_counters(user_id)[feature] = stored
        if self._document is not None:
            self._document.update(
                lambda users: users.setdefault(user_id, {}).__setitem__(feature.value, stored.to_dict())
            )

    def replace_user(self, user_id: str, counters: Mapping[Feature, UsageCounter]) -> None:
        """Overwrite the user's counters wholesale (remote snapshot wins)."""
        fresh = {
            Feature(feature): UsageCounter(count=counter.count, window_start=counter.window_start)
            for feature, counter in counters.items()
        }
        self._counters[user_id] = fresh
        self._hydrated.add(user_id)
        if self._document is not None:
            payload = {feature.value: counter.to_dict() for feature, counter in fresh.items()}
            self._document.update(lambda users: users.__setitem__(user_id, payload))


__all__ = ["UsageCounter", "UsageStore"]
