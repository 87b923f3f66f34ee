"""Shared tier, status and feature enumerations used across services and routers."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class Tier(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    PRO = "pro"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


class SubscriptionStatus(str, Enum):
    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELED = "canceled"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


class WindowKind(str, Enum):
    """Cadence at which a metered counter starts over."""

    DAILY = "daily"
    MONTHLY = "monthly"
    TOTAL = "total"


class Feature(str, Enum):
    PLACES = "places"
    AI_QUERIES = "ai_queries"
    DEALS = "deals"
    FAVORITES = "favorites"
    POSTS = "posts"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value

    @property
    def window(self) -> WindowKind:
        return FEATURE_WINDOWS[self]


FEATURE_WINDOWS = {
    Feature.PLACES: WindowKind.DAILY,
    Feature.AI_QUERIES: WindowKind.MONTHLY,
    Feature.DEALS: WindowKind.DAILY,
    Feature.FAVORITES: WindowKind.TOTAL,
    Feature.POSTS: WindowKind.DAILY,
}

# Rank order; TierCatalog is the only consumer of this sequence.
SUPPORTED_TIERS: Sequence[Tier] = (Tier.FREE, Tier.BASIC, Tier.PREMIUM, Tier.PRO)

__all__ = [
    "FEATURE_WINDOWS",
    "Feature",
    "SUPPORTED_TIERS",
    "SubscriptionStatus",
    "Tier",
    "WindowKind",
]
