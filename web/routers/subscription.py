"""Subscription routes exposing tier status, lifecycle transitions and feature meters."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from core.tier_constants import Feature, Tier
from schemas.api.subscription import (
    CancelRequest,
    ChangeTierRequest,
    LifecycleResponse,
    SubscribeRequest,
    SubscriptionStatusResponse,
    TrialStartRequest,
)
from services.entitlement_service import EntitlementService
from services.lifecycle_manager import LifecycleErrorCode, LifecycleResult
from services.persistence_gateway import PersistenceUnavailableError
from web.deps import get_current_user_id, get_entitlement_service
from web.quota_guard import enforce_feature_quota

router = APIRouter(prefix="/subscription", tags=["Subscription"])

_ERROR_STATUS = {
    LifecycleErrorCode.TRIAL_ALREADY_USED: status.HTTP_409_CONFLICT,
    LifecycleErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    LifecycleErrorCode.TIER_NOT_TRIAL_ELIGIBLE: status.HTTP_400_BAD_REQUEST,
    LifecycleErrorCode.PAYMENT_FAILED: status.HTTP_402_PAYMENT_REQUIRED,
}


def _lifecycle_response(result: LifecycleResult) -> LifecycleResponse:
    if not result.ok and result.error is not None:
        raise HTTPException(
            status_code=_ERROR_STATUS.get(result.error, status.HTTP_400_BAD_REQUEST),
            detail={
                "code": f"subscription.{result.error.value}",
                "message": result.message or result.error.value,
                "subscription": result.record.to_payload(),
            },
        )
    return LifecycleResponse.model_validate(result.to_dict())


def _persistence_failed(exc: PersistenceUnavailableError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "subscription.persist_failed", "message": str(exc)},
    )


@router.get("/catalog", summary="Return the tier table with quotas and trial terms.")
def read_tier_catalog(service: EntitlementService = Depends(get_entitlement_service)) -> Dict[str, Any]:
    return service.catalog.to_dict()


@router.post("/session", response_model=LifecycleResponse, summary="Reconcile the subscription at session start.")
async def open_session(
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> LifecycleResponse:
    try:
        result = await service.open_session(user_id)
    except PersistenceUnavailableError as exc:
        raise _persistence_failed(exc) from exc
    return _lifecycle_response(result)


@router.get("/status", response_model=SubscriptionStatusResponse, summary="Return the current subscription and usage.")
def read_subscription_status(
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> SubscriptionStatusResponse:
    record = service.subscription(user_id)
    effective = service.effective_tier(user_id)
    next_tier = service.catalog.next_tier(record.tier)
    return SubscriptionStatusResponse(
        subscription=record.to_payload(),
        effectiveTier=effective.value,
        nextTier=next_tier.value if next_tier else None,
        trialDaysRemaining=service.trial_days_remaining(user_id),
        usage=service.usage_summary(user_id),
    )


@router.post("/trial", response_model=LifecycleResponse, summary="Start the one-time free trial.")
async def start_trial(
    payload: TrialStartRequest,
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> LifecycleResponse:
    try:
        result = await service.start_trial(user_id, Tier(payload.tier))
    except PersistenceUnavailableError as exc:
        raise _persistence_failed(exc) from exc
    return _lifecycle_response(result)


@router.post("/subscribe", response_model=LifecycleResponse, summary="Pay for and activate a tier.")
async def subscribe(
    payload: SubscribeRequest,
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> LifecycleResponse:
    try:
        result = await service.subscribe(user_id, Tier(payload.tier), payment_method=payload.paymentMethod)
    except PersistenceUnavailableError as exc:
        raise _persistence_failed(exc) from exc
    return _lifecycle_response(result)


@router.post("/cancel", response_model=LifecycleResponse, summary="Cancel the subscription or trial.")
async def cancel(
    payload: CancelRequest,
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> LifecycleResponse:
    try:
        result = await service.cancel(user_id, payload.reason)
    except PersistenceUnavailableError as exc:
        raise _persistence_failed(exc) from exc
    return _lifecycle_response(result)


@router.post("/change-tier", response_model=LifecycleResponse, summary="Switch tier without resetting the period.")
async def change_tier(
    payload: ChangeTierRequest,
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> LifecycleResponse:
    try:
        result = await service.change_tier(user_id, Tier(payload.tier))
    except PersistenceUnavailableError as exc:
        raise _persistence_failed(exc) from exc
    return _lifecycle_response(result)


@router.get("/features/{feature}", summary="Check a feature quota without consuming it.")
def read_feature_quota(
    feature: Feature,
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> Dict[str, Any]:
    return service.check_feature(user_id, feature).to_dict()


@router.post("/features/{feature}/use", summary="Consume one use of a metered feature.")
def use_feature(
    feature: Feature,
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> Dict[str, Any]:
    return enforce_feature_quota(service, user_id, feature).to_dict()


@router.post("/features/{feature}/release", summary="Give back one unit of a running cap.")
def release_feature(
    feature: Feature,
    user_id: str = Depends(get_current_user_id),
    service: EntitlementService = Depends(get_entitlement_service),
) -> Dict[str, Any]:
    try:
        service.release_usage(user_id, feature)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "subscription.release_unsupported", "message": str(exc)},
        ) from exc
    return service.check_feature(user_id, feature).to_dict()
