"""Static tier table: rank order, trial terms and per-feature quota limits."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from core.env import env_str
from core.logging import get_logger
from core.tier_constants import SUPPORTED_TIERS, Feature, Tier
from services.json_store import read_json_document

logger = get_logger(__name__)

CATALOG_VERSION = "2024.1"


class Unlimited(Enum):
    """Sentinel type for limits that are never exhausted."""

    TOKEN = "unlimited"

    def __repr__(self) -> str:  # pragma: no cover - convenience
        return "UNLIMITED"


UNLIMITED = Unlimited.TOKEN

Limit = Union[int, Unlimited]


@dataclass(frozen=True, slots=True)
class TierLimits:
    places_per_day: Limit
    ai_queries_per_period: Limit
    deals_per_day: Limit
    favorites_max: Limit
    posts_per_day: Limit
    trial_eligible: bool
    trial_length_days: int
    monthly_price: float = 0.0
    label: str = ""

    def limit_for(self, feature: Feature) -> Limit:
        return getattr(self, _FEATURE_FIELDS[feature])

    def to_dict(self) -> Dict[str, Any]:
        def _encode(value: Limit) -> Union[int, str]:
            return value.value if isinstance(value, Unlimited) else value

        return {
            "placesPerDay": _encode(self.places_per_day),
            "aiQueriesPerPeriod": _encode(self.ai_queries_per_period),
            "dealsPerDay": _encode(self.deals_per_day),
            "favoritesMax": _encode(self.favorites_max),
            "postsPerDay": _encode(self.posts_per_day),
            "trialEligible": self.trial_eligible,
            "trialLengthDays": self.trial_length_days,
            "monthlyPrice": self.monthly_price,
            "label": self.label,
        }


_FEATURE_FIELDS: Mapping[Feature, str] = {
    Feature.PLACES: "places_per_day",
    Feature.AI_QUERIES: "ai_queries_per_period",
    Feature.DEALS: "deals_per_day",
    Feature.FAVORITES: "favorites_max",
    Feature.POSTS: "posts_per_day",
}

_LIMIT_KEYS: Mapping[str, str] = {
    "placesPerDay": "places_per_day",
    "aiQueriesPerPeriod": "ai_queries_per_period",
    "dealsPerDay": "deals_per_day",
    "favoritesMax": "favorites_max",
    "postsPerDay": "posts_per_day",
}

DEFAULT_TIER_LIMITS: Mapping[Tier, TierLimits] = MappingProxyType(
    {
        Tier.FREE: TierLimits(
            places_per_day=10,
            ai_queries_per_period=0,
            deals_per_day=5,
            favorites_max=5,
            posts_per_day=0,
            trial_eligible=False,
            trial_length_days=0,
            monthly_price=0.0,
            label="Free",
        ),
        Tier.BASIC: TierLimits(
            places_per_day=30,
            ai_queries_per_period=10,
            deals_per_day=20,
            favorites_max=50,
            posts_per_day=3,
            trial_eligible=True,
            trial_length_days=7,
            monthly_price=4.99,
            label="Basic",
        ),
        Tier.PREMIUM: TierLimits(
            places_per_day=100,
            ai_queries_per_period=50,
            deals_per_day=100,
            favorites_max=200,
            posts_per_day=10,
            trial_eligible=True,
            trial_length_days=7,
            monthly_price=9.99,
            label="Premium",
        ),
        Tier.PRO: TierLimits(
            places_per_day=UNLIMITED,
            ai_queries_per_period=UNLIMITED,
            deals_per_day=UNLIMITED,
            favorites_max=UNLIMITED,
            posts_per_day=UNLIMITED,
            trial_eligible=True,
            trial_length_days=7,
            monthly_price=19.99,
            label="Pro",
        ),
    }
)


class TierCatalog:
    """Immutable tier table; rank comparison is the only hierarchy check."""

    def __init__(
        self,
        limits: Optional[Mapping[Tier, TierLimits]] = None,
        *,
        order: Sequence[Tier] = SUPPORTED_TIERS,
        version: str = CATALOG_VERSION,
    ) -> None:
        table = dict(limits or DEFAULT_TIER_LIMITS)
        missing = [tier for tier in order if tier not in table]
        if missing:
            raise ValueError(f"Tier catalog is missing limits for: {', '.join(str(t) for t in missing)}")
        if len(set(order)) != len(order):
            raise ValueError("Tier order must not contain duplicates.")
        self._order = tuple(order)
        self._ranks = MappingProxyType({tier: index for index, tier in enumerate(self._order)})
        self._limits = MappingProxyType(table)
        self.version = version

    def limits_of(self, tier: Tier) -> TierLimits:
        return self._limits[Tier(tier)]

    def rank_of(self, tier: Tier) -> int:
        return self._ranks[Tier(tier)]

    def tiers(self) -> Sequence[Tier]:
        return self._order

    def next_tier(self, tier: Tier) -> Optional[Tier]:
        """Return the tier one step up, or ``None`` at the top of the order."""
        rank = self.rank_of(tier)
        if rank + 1 >= len(self._order):
            return None
        return self._order[rank + 1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "tiers": [{"tier": tier.value, **self._limits[tier].to_dict()} for tier in self._order],
        }


def _decode_limit(key: str, value: Any, fallback: Limit) -> Limit:
    if value is None:
        return UNLIMITED
    if isinstance(value, str) and value.strip().lower() == UNLIMITED.value:
        return UNLIMITED
    if isinstance(value, bool):
        logger.warning("Invalid %s override in tier catalog ignored: %s", key, value)
        return fallback
    try:
        candidate = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s override in tier catalog ignored: %s", key, value)
        return fallback
    if candidate == -1:
        return UNLIMITED
    if candidate < 0:
        logger.warning("Invalid %s (negative) in tier catalog ignored: %s", key, value)
        return fallback
    return candidate


def _apply_overrides(base: TierLimits, payload: Mapping[str, Any]) -> TierLimits:
    changes: Dict[str, Any] = {}
    for key, attr in _LIMIT_KEYS.items():
        if key in payload:
            changes[attr] = _decode_limit(key, payload[key], getattr(base, attr))
    if "trialEligible" in payload:
        changes["trial_eligible"] = bool(payload["trialEligible"])
    if "trialLengthDays" in payload:
        try:
            days = int(payload["trialLengthDays"])
        except (TypeError, ValueError):
            logger.warning("Invalid trialLengthDays override ignored: %s", payload["trialLengthDays"])
        else:
            if days >= 0:
                changes["trial_length_days"] = days
    if "monthlyPrice" in payload:
        try:
            changes["monthly_price"] = float(payload["monthlyPrice"])
        except (TypeError, ValueError):
            logger.warning("Invalid monthlyPrice override ignored: %s", payload["monthlyPrice"])
    if isinstance(payload.get("label"), str) and payload["label"].strip():
        changes["label"] = payload["label"].strip()
    merged = replace(base, **changes)
    if merged.trial_eligible and merged.trial_length_days <= 0:
        logger.warning("Trial-eligible tier has no trial length; disabling trial.")
        merged = replace(merged, trial_eligible=False)
    return merged


def load_tier_catalog(path: Optional[Path] = None) -> TierCatalog:
    """Build the catalog from defaults, overlaid with ``TIER_CATALOG_FILE`` when set."""

    source = path
    if source is None:
        configured = env_str("TIER_CATALOG_FILE")
        source = Path(configured).expanduser() if configured else None
    if source is None:
        return TierCatalog()

    raw = read_json_document(source)
    if not isinstance(raw, Mapping):
        logger.warning("Tier catalog override %s is missing or not an object; using defaults.", source)
        return TierCatalog()

    limits: Dict[Tier, TierLimits] = dict(DEFAULT_TIER_LIMITS)
    tiers_raw = raw.get("tiers") or {}
    if isinstance(tiers_raw, Mapping):
        for name, payload in tiers_raw.items():
            try:
                tier = Tier(str(name).strip().lower())
            except ValueError:
                logger.warning("Unknown tier '%s' in catalog override ignored.", name)
                continue
            if isinstance(payload, Mapping):
                limits[tier] = _apply_overrides(limits[tier], payload)
    version = str(raw.get("version") or CATALOG_VERSION)
    logger.info("Loaded tier catalog version %s from %s.", version, source)
    return TierCatalog(limits, version=version)


__all__ = [
    "CATALOG_VERSION",
    "DEFAULT_TIER_LIMITS",
    "Limit",
    "TierCatalog",
    "TierLimits",
    "UNLIMITED",
    "Unlimited",
    "load_tier_catalog",
]
