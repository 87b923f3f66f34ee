"""Helper utilities for tier-based feature quota enforcement."""

from __future__ import annotations

from fastapi import Depends, HTTPException, status

from core.logging import get_logger
from core.tier_constants import Feature
from services.entitlement_evaluator import DenialReason
from services.entitlement_service import EntitlementService, FeatureDecision
from web.deps import get_current_user_id, get_entitlement_service

logger = get_logger(__name__)

_FEATURE_LABELS = {
    Feature.PLACES: "place searches",
    Feature.AI_QUERIES: "AI assistant queries",
    Feature.DEALS: "deal views",
    Feature.FAVORITES: "saved favorites",
    Feature.POSTS: "community posts",
}

_PROBLEM_TYPE = "https://docs.travel.example/errors/feature-quota"


def enforce_feature_quota(service: EntitlementService, user_id: str, feature: Feature) -> FeatureDecision:
    """Consume one use of ``feature`` and raise RFC7807 errors when refused."""

    decision = service.consume(user_id, Feature(feature))
    if decision.allowed:
        return decision
    _raise_quota_exception(decision)


def require_feature(feature: Feature):
    """Dependency factory that meters one use of ``feature`` per request."""

    def _dependency(
        user_id: str = Depends(get_current_user_id),
        service: EntitlementService = Depends(get_entitlement_service),
    ) -> FeatureDecision:
        return enforce_feature_quota(service, user_id, feature)

    return _dependency


def _raise_quota_exception(decision: FeatureDecision) -> None:
    tier_label = decision.tier.value.title()
    feature_label = _FEATURE_LABELS.get(decision.feature, decision.feature.value)

    if decision.reason is DenialReason.QUOTA_EXCEEDED:
        status_code = status.HTTP_429_TOO_MANY_REQUESTS
        code = "quota.exceeded"
        message = f"You have used all {feature_label} included in the {tier_label} plan."
    elif decision.reason is DenialReason.SUBSCRIPTION_EXPIRED:
        status_code = status.HTTP_402_PAYMENT_REQUIRED
        code = "quota.subscription_expired"
        message = f"Your subscription has ended; renew to keep using {feature_label}."
    else:
        status_code = status.HTTP_403_FORBIDDEN
        code = "quota.feature_unavailable"
        message = f"{feature_label.capitalize()} are not included in the {tier_label} plan."

    logger.info("quota.blocked", extra={"feature": decision.feature.value, "context": "web", "code": code})
    detail = {
        "type": _PROBLEM_TYPE,
        "title": message,
        "status": status_code,
        "detail": message,
        "code": code,
        "tier": decision.tier.value,
        "upgradeRequired": status_code != status.HTTP_429_TOO_MANY_REQUESTS,
        "nextTier": decision.next_tier.value if decision.next_tier else None,
        "quota": {
            "feature": decision.feature.value,
            "remaining": decision.remaining,
            "limit": decision.limit,
            "resetsAt": decision.resets_at,
        },
    }

    raise HTTPException(status_code=status_code, detail=detail)


__all__ = ["enforce_feature_quota", "require_feature"]
