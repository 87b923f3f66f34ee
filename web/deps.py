"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from core.tier_constants import Tier
from services.entitlement_service import EntitlementService
from services.tier_guard import TierGuardError, ensure_tier

_GUARD_STATUS = {
    "tier.tier_too_low": status.HTTP_403_FORBIDDEN,
    "tier.subscription_expired": status.HTTP_402_PAYMENT_REQUIRED,
    "tier.no_subscription": status.HTTP_402_PAYMENT_REQUIRED,
}


def get_entitlement_service(request: Request) -> EntitlementService:
    """Fetch the entitlement service wired onto the application."""
    service = getattr(request.app.state, "entitlements", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "entitlements.unavailable", "message": "Entitlement service is not configured."},
        )
    return service


def get_current_user_id(request: Request) -> str:
    user_id = (request.headers.get("x-user-id") or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "auth.required", "message": "Sign in to continue."},
        )
    return user_id


def require_tier(required_tier: Tier):
    """Dependency factory that ensures the user's live subscription reaches ``required_tier``."""

    def _dependency(
        user_id: str = Depends(get_current_user_id),
        service: EntitlementService = Depends(get_entitlement_service),
    ) -> Tier:
        try:
            return ensure_tier(service, user_id, required_tier)
        except TierGuardError as exc:
            status_code = _GUARD_STATUS.get(exc.code, status.HTTP_403_FORBIDDEN)
            raise HTTPException(status_code=status_code, detail=exc.to_detail()) from exc

    return _dependency


__all__ = ["get_current_user_id", "get_entitlement_service", "require_tier"]
