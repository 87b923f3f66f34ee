"""Quota checks and consumption over calendar-windowed usage counters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Dict, Mapping, Optional

from core.logging import get_logger
from core.tier_constants import Feature, WindowKind
from services.clock import Clock
from services.entitlement_evaluator import DenialReason
from services.tier_catalog import TierLimits, Unlimited
from services.usage_store import UsageCounter, UsageStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class UsageDecision:
    allowed: bool
    remaining: Optional[int] = None
    limit: Optional[int] = None
    resets_at: Optional[datetime] = None
    reason: Optional[DenialReason] = None


def window_start_for(kind: WindowKind, now: datetime) -> datetime:
    """Start of the window containing ``now`` in ``now``'s own timezone."""
    if kind is WindowKind.DAILY:
        return datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    if kind is WindowKind.MONTHLY:
        return datetime.combine(now.date().replace(day=1), time.min, tzinfo=now.tzinfo)
    return now


def next_window_start(kind: WindowKind, now: datetime) -> Optional[datetime]:
    if kind is WindowKind.DAILY:
        return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)
    if kind is WindowKind.MONTHLY:
        first = now.date().replace(day=1)
        following = first.replace(year=first.year + 1, month=1) if first.month == 12 else first.replace(month=first.month + 1)
        return datetime.combine(following, time.min, tzinfo=now.tzinfo)
    return None


class UsageMeter:
    """Answers "may this metered action run now?" and records consumption.

    Counters live in the client-side :class:`UsageStore`. Two sessions of the
    same user each hold their own counters and can both pass the check, so the
    sum can exceed the limit until the next remote refresh. Strict enforcement
    needs an atomic increment-and-check on the server.
    """

    def __init__(self, store: UsageStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    def _current_counter(self, user_id: str, feature: Feature) -> UsageCounter:
        now = self._clock.now()
        kind = feature.window
        current_start = window_start_for(kind, now)
        counter = self._store.get_or_create(user_id, feature, current_start)
        if kind is not WindowKind.TOTAL and counter.window_start < current_start:
            logger.debug(
                "Usage window rolled over for user=%s feature=%s (was %s).",
                user_id,
                feature,
                counter.window_start.isoformat(),
            )
            counter = UsageCounter(count=0, window_start=current_start)
            self._store.put(user_id, feature, counter)
        return counter

    def can_use_feature(self, user_id: str, feature: Feature, limits: TierLimits) -> UsageDecision:
        feature = Feature(feature)
        counter = self._current_counter(user_id, feature)
        limit = limits.limit_for(feature)
        if isinstance(limit, Unlimited):
            return UsageDecision(allowed=True)

        resets_at = next_window_start(feature.window, self._clock.now())
        remaining = max(0, limit - counter.count)
        allowed = counter.count < limit
        reason: Optional[DenialReason] = None
        if not allowed:
            reason = DenialReason.FEATURE_UNAVAILABLE if limit == 0 else DenialReason.QUOTA_EXCEEDED
        return UsageDecision(allowed=allowed, remaining=remaining, limit=limit, resets_at=resets_at, reason=reason)

    def record_usage(self, user_id: str, feature: Feature) -> UsageCounter:
        """Count one use of ``feature``; enforcement belongs to :meth:`can_use_feature`."""
        feature = Feature(feature)
        counter = self._current_counter(user_id, feature)
        updated = UsageCounter(count=counter.count + 1, window_start=counter.window_start)
        self._store.put(user_id, feature, updated)
        logger.debug("Recorded %s usage for user=%s (count=%d).", feature, user_id, updated.count)
        return updated

    def release_usage(self, user_id: str, feature: Feature) -> UsageCounter:
        """Give back one unit of a running cap, e.g. when a favorite is removed."""
        feature = Feature(feature)
        if feature.window is not WindowKind.TOTAL:
            raise ValueError(f"{feature} is metered per window and cannot be released.")
        counter = self._current_counter(user_id, feature)
        updated = UsageCounter(count=max(0, counter.count - 1), window_start=counter.window_start)
        self._store.put(user_id, feature, updated)
        return updated

    def usage_snapshot(self, user_id: str) -> Dict[Feature, UsageCounter]:
        return {feature: self._current_counter(user_id, feature) for feature in Feature}

    def apply_remote_counts(self, user_id: str, counts: Mapping[Feature, int]) -> None:
        """Replace local counters with server-side counts for the current windows."""
        now = self._clock.now()
        snapshot = self.usage_snapshot(user_id)
        for feature, count in counts.items():
            feature = Feature(feature)
            start = snapshot[feature].window_start if feature.window is WindowKind.TOTAL else window_start_for(feature.window, now)
            snapshot[feature] = UsageCounter(count=max(int(count), 0), window_start=start)
        self._store.replace_user(user_id, snapshot)


__all__ = ["UsageDecision", "UsageMeter", "next_window_start", "window_start_for"]
