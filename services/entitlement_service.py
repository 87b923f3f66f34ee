"""Session-scoped entitlement facade wiring catalog, lifecycle, gateway and meter."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.env import env_path
from core.env_utils import load_dotenv_if_available, require_env_vars
from core.logging import get_logger
from core.tier_constants import Feature, SubscriptionStatus, Tier
from services.clock import Clock, SystemClock
from services.entitlement_evaluator import (
    AccessDecision,
    DenialReason,
    effective_tier,
    evaluate_access,
)
from services.lifecycle_manager import LifecycleManager, LifecycleResult
from services.persistence_gateway import PersistenceGateway, SubscriptionCache
from services.subscription_api import SubscriptionApiClient, SubscriptionApiError, get_subscription_api_client
from services.subscription_record import SubscriptionRecord
from services.tier_catalog import TierCatalog, load_tier_catalog
from services.trial_registry import TrialRegistry
from services.usage_meter import UsageDecision, UsageMeter
from services.usage_store import UsageStore

logger = get_logger(__name__)

DEFAULT_STATE_DIR = Path("var") / "entitlements"


@dataclass(frozen=True, slots=True)
class FeatureDecision:
    """Combined answer for a metered feature: status gate plus quota."""

    feature: Feature
    tier: Tier
    allowed: bool
    remaining: Optional[int] = None
    limit: Optional[int] = None
    reason: Optional[DenialReason] = None
    next_tier: Optional[Tier] = None
    resets_at: Optional[str] = None

    @classmethod
    def from_usage(
        cls,
        feature: Feature,
        tier: Tier,
        usage: UsageDecision,
        *,
        next_tier: Optional[Tier],
    ) -> "FeatureDecision":
        return cls(
            feature=feature,
            tier=tier,
            allowed=usage.allowed,
            remaining=usage.remaining,
            limit=usage.limit,
            reason=usage.reason,
            next_tier=next_tier,
            resets_at=usage.resets_at.isoformat() if usage.resets_at else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature": self.feature.value,
            "tier": self.tier.value,
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "reason": self.reason.value if self.reason else None,
            "remediation": self.reason.remediation.value if self.reason else None,
            "nextTier": self.next_tier.value if self.next_tier else None,
            "resetsAt": self.resets_at,
        }


class EntitlementService:
    """Entry point used by UI handlers for every gated or metered action.

    Construct one per session with :func:`build_entitlement_service` (or by
    hand in tests) and pass it to callers; nothing here is a module global.
    """

    def __init__(
        self,
        *,
        catalog: TierCatalog,
        clock: Clock,
        gateway: PersistenceGateway,
        lifecycle: LifecycleManager,
        meter: UsageMeter,
        api: Optional[SubscriptionApiClient] = None,
    ) -> None:
        self.catalog = catalog
        self.clock = clock
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.meter = meter
        self._api = api

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def open_session(self, user_id: str) -> LifecycleResult:
        """Reconcile the stored record and refresh usage before any check is trusted."""
        result = await self.lifecycle.reconcile(user_id)
        await self.refresh_usage(user_id)
        return result

    async def refresh_usage(self, user_id: str) -> bool:
        if self._api is None:
            return False
        try:
            counts = await self._api.fetch_usage(user_id)
        except SubscriptionApiError as exc:
            logger.info("Usage refresh skipped for user=%s: %s", user_id, exc)
            return False
        self.meter.apply_remote_counts(user_id, counts)
        return True

    def subscription(self, user_id: str) -> SubscriptionRecord:
        return self.gateway.cached(user_id)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_access(self, user_id: str, required_tier: Tier) -> AccessDecision:
        return evaluate_access(self.subscription(user_id), required_tier, self.clock.now(), self.catalog)

    def has_access(self, user_id: str, required_tier: Tier) -> bool:
        return self.check_access(user_id, required_tier).allowed

    def effective_tier(self, user_id: str) -> Tier:
        return effective_tier(self.subscription(user_id), self.clock.now())

    def check_feature(self, user_id: str, feature: Feature) -> FeatureDecision:
        """Quota check against the limits of the tier that is live right now."""
        feature = Feature(feature)
        tier = self.effective_tier(user_id)
        usage = self.meter.can_use_feature(user_id, feature, self.catalog.limits_of(tier))
        decision = FeatureDecision.from_usage(feature, tier, usage, next_tier=self.catalog.next_tier(tier))
        if decision.reason is DenialReason.FEATURE_UNAVAILABLE and self._lapsed(user_id):
            return FeatureDecision(
                feature=feature,
                tier=tier,
                allowed=False,
                remaining=decision.remaining,
                limit=decision.limit,
                reason=DenialReason.SUBSCRIPTION_EXPIRED,
                next_tier=decision.next_tier,
            )
        return decision

    def consume(self, user_id: str, feature: Feature) -> FeatureDecision:
        """Check and, when allowed, record one use of ``feature``."""
        decision = self.check_feature(user_id, feature)
        if not decision.allowed:
            return decision
        self.meter.record_usage(user_id, feature)
        if decision.remaining is None:
            return decision
        return replace(decision, remaining=max(0, decision.remaining - 1))

    def record_usage(self, user_id: str, feature: Feature) -> None:
        self.meter.record_usage(user_id, feature)

    def release_usage(self, user_id: str, feature: Feature) -> None:
        self.meter.release_usage(user_id, feature)

    def _lapsed(self, user_id: str) -> bool:
        record = self.subscription(user_id)
        if record.status is SubscriptionStatus.EXPIRED:
            return True
        return record.status in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE) and self.effective_tier(
            user_id
        ) is Tier.FREE

    # ------------------------------------------------------------------
    # Lifecycle passthroughs
    # ------------------------------------------------------------------

    async def start_trial(self, user_id: str, tier: Tier) -> LifecycleResult:
        return await self.lifecycle.start_trial(user_id, tier)

    async def subscribe(self, user_id: str, tier: Tier, *, payment_method: str = "paypal") -> LifecycleResult:
        return await self.lifecycle.subscribe(user_id, tier, payment_method=payment_method)

    async def cancel(self, user_id: str, reason: Optional[str] = None) -> LifecycleResult:
        return await self.lifecycle.cancel(user_id, reason)

    async def change_tier(self, user_id: str, new_tier: Tier) -> LifecycleResult:
        return await self.lifecycle.change_tier(user_id, new_tier)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def trial_days_remaining(self, user_id: str) -> Optional[int]:
        record = self.subscription(user_id)
        if record.status is not SubscriptionStatus.TRIAL or record.trial_ends_at is None:
            return None
        seconds = (record.trial_ends_at - self.clock.now()).total_seconds()
        return max(0, -int(-seconds // 86400))

    def usage_summary(self, user_id: str) -> List[Dict[str, Any]]:
        tier = self.effective_tier(user_id)
        limits = self.catalog.limits_of(tier)
        snapshot = self.meter.usage_snapshot(user_id)
        entries: List[Dict[str, Any]] = []
        for feature in Feature:
            usage = self.meter.can_use_feature(user_id, feature, limits)
            entries.append(
                {
                    "feature": feature.value,
                    "count": snapshot[feature].count,
                    "limit": usage.limit,
                    "remaining": usage.remaining,
                    "resetsAt": usage.resets_at.isoformat() if usage.resets_at else None,
                }
            )
        return entries


def build_entitlement_service(
    *,
    clock: Optional[Clock] = None,
    api: Optional[SubscriptionApiClient] = None,
    state_dir: Optional[Path] = None,
) -> EntitlementService:
    """Wire an :class:`EntitlementService` from environment configuration."""

    load_dotenv_if_available()
    if api is None:
        require_env_vars(["SUBSCRIPTION_API_BASE_URL"], context="entitlements")
        api = get_subscription_api_client()

    base_dir = state_dir or DEFAULT_STATE_DIR
    clock = clock or SystemClock()
    catalog = load_tier_catalog()
    gateway = PersistenceGateway(
        cache=SubscriptionCache(env_path("SUBSCRIPTION_CACHE_FILE", base_dir / "subscriptions.json")),
        clock=clock,
        api=api,
    )
    lifecycle = LifecycleManager(
        catalog=catalog,
        clock=clock,
        gateway=gateway,
        trial_registry=TrialRegistry(env_path("TRIAL_REGISTRY_FILE", base_dir / "trial_registry.json")),
        api=api,
    )
    meter = UsageMeter(UsageStore(env_path("USAGE_CACHE_FILE", base_dir / "usage.json")), clock)
    logger.info("Entitlement service ready (catalog version %s).", catalog.version)
    return EntitlementService(
        catalog=catalog,
        clock=clock,
        gateway=gateway,
        lifecycle=lifecycle,
        meter=meter,
        api=api,
    )


__all__ = ["EntitlementService", "FeatureDecision", "build_entitlement_service"]
