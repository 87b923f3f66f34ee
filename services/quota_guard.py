"""Shared helper for metering feature usage outside the web layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.logging import get_logger
from core.tier_constants import Feature
from services.entitlement_service import EntitlementService, FeatureDecision

logger = get_logger(__name__)


@dataclass(slots=True)
class QuotaExceededError(RuntimeError):
    """Raised by :func:`ensure_feature_quota` when a metered action is refused."""

    decision: FeatureDecision

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, f"{self.decision.feature.value} is not available: {self.reason}")

    @property
    def reason(self) -> Optional[str]:
        return self.decision.reason.value if self.decision.reason else None

    def to_detail(self) -> Dict[str, Any]:
        return {"code": f"quota.{self.reason}", "message": str(self), **self.decision.to_dict()}


def evaluate_feature(service: EntitlementService, user_id: str, feature: Feature) -> FeatureDecision:
    """Evaluate the quota for ``feature`` without consuming anything."""
    return service.check_feature(user_id, Feature(feature))


def consume_feature(
    service: EntitlementService,
    user_id: str,
    feature: Feature,
    *,
    context: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Check and record one use of ``feature``.

    Returns ``True`` when the action was allowed and counted, ``False`` when
    the quota (or the tier) refused it. Nothing is recorded on refusal.
    """

    decision = service.consume(user_id, Feature(feature))
    if decision.allowed:
        return True

    log_extra = {
        "feature": decision.feature.value,
        "context": context or "ui",
        "tier": decision.tier.value,
        "remaining": decision.remaining,
        "limit": decision.limit,
        "reason": decision.reason.value if decision.reason else None,
    }
    if extra:
        log_extra.update(extra)
    logger.info("quota.blocked", extra=log_extra)
    return False


def ensure_feature_quota(service: EntitlementService, user_id: str, feature: Feature) -> FeatureDecision:
    """Consume one use of ``feature`` or raise :class:`QuotaExceededError`."""
    decision = service.consume(user_id, Feature(feature))
    if not decision.allowed:
        raise QuotaExceededError(decision)
    return decision


__all__ = ["QuotaExceededError", "consume_feature", "ensure_feature_quota", "evaluate_feature"]
