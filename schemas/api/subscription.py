"""Pydantic schemas for the subscription backend and the subscription routes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from core.logging import get_logger
from core.tier_constants import Feature, SubscriptionStatus, Tier
from services.subscription_record import SubscriptionRecord

logger = get_logger(__name__)

TierName = Literal["free", "basic", "premium", "pro"]
StatusName = Literal["none", "trial", "active", "expired", "canceled"]


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SubscriptionPayload(BaseModel):
    """Subscription state as returned by ``GET /subscriptions/{userId}``."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    tier: TierName = Field(default="free", description="Nominal subscription tier.")
    status: StatusName = Field(default="none", description="Lifecycle status of the subscription.")
    trialEndsAt: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("trialEndsAt", "trialEndDate"),
        description="End of the trial window. Naive values are read as UTC.",
    )
    subscriptionEndsAt: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("subscriptionEndsAt", "subscriptionEndDate", "endDate"),
        description="End of the paid period. Naive values are read as UTC.",
    )

    @field_validator("tier", mode="before")
    def _normalize_tier(cls, value: Optional[str]) -> str:
        return str(value or "free").strip().lower()

    @field_validator("status", mode="before")
    def _normalize_status(cls, value: Optional[str]) -> str:
        normalized = str(value or "none").strip().lower()
        return "canceled" if normalized == "cancelled" else normalized

    def to_record(self) -> SubscriptionRecord:
        """Map the wire payload onto a record that satisfies the status invariants."""
        status = SubscriptionStatus(self.status)
        tier = Tier(self.tier)
        trial_ends = _as_aware(self.trialEndsAt)
        paid_ends = _as_aware(self.subscriptionEndsAt)

        if status is SubscriptionStatus.TRIAL:
            ends_at = trial_ends or paid_ends
            if ends_at is None:
                logger.warning("Backend trial record has no end date; treating as expired.")
                return SubscriptionRecord.lapsed(SubscriptionStatus.EXPIRED)
            return SubscriptionRecord.trial(tier, ends_at)
        if status is SubscriptionStatus.ACTIVE:
            if paid_ends is None:
                logger.warning("Backend active record has no end date; treating as expired.")
                return SubscriptionRecord.lapsed(SubscriptionStatus.EXPIRED)
            return SubscriptionRecord.active(tier, paid_ends)
        if status in (SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELED):
            return SubscriptionRecord.lapsed(status)
        return SubscriptionRecord(tier=tier, status=status)


class UsagePayload(BaseModel):
    """Server-side usage counts from ``GET /subscriptions/{userId}/usage``."""

    model_config = ConfigDict(extra="ignore")

    placesToday: int = Field(default=0, ge=0)
    aiQueriesThisMonth: int = Field(default=0, ge=0)
    dealsToday: int = Field(default=0, ge=0)
    totalFavorites: int = Field(default=0, ge=0)
    postsToday: int = Field(default=0, ge=0)

    def to_counts(self) -> Dict[Feature, int]:
        return {
            Feature.PLACES: self.placesToday,
            Feature.AI_QUERIES: self.aiQueriesThisMonth,
            Feature.DEALS: self.dealsToday,
            Feature.FAVORITES: self.totalFavorites,
            Feature.POSTS: self.postsToday,
        }


class TrialHistoryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    hasUsedTrial: bool = Field(default=False, description="Whether the user has ever started a trial.")


class PaymentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = Field(default=False)
    paymentId: Optional[str] = Field(default=None)
    error: Optional[str] = Field(default=None)


class TrialStartRequest(BaseModel):
    tier: TierName = Field(..., description="Tier to trial.")


class SubscribeRequest(BaseModel):
    tier: TierName = Field(..., description="Tier to purchase.")
    paymentMethod: Literal["paypal", "stripe"] = Field(default="paypal", description="Payment method identifier.")


class ChangeTierRequest(BaseModel):
    tier: TierName = Field(..., description="Tier to switch to. 'free' cancels the subscription.")


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500, description="Optional cancellation reason.")


class SubscriptionRecordSchema(BaseModel):
    tier: TierName
    status: StatusName
    trialEndsAt: Optional[str] = None
    subscriptionEndsAt: Optional[str] = None


class UsageEntrySchema(BaseModel):
    feature: str
    count: int
    limit: Optional[int] = Field(default=None, description="Null means unlimited.")
    remaining: Optional[int] = None
    resetsAt: Optional[str] = None


class SubscriptionStatusResponse(BaseModel):
    subscription: SubscriptionRecordSchema
    effectiveTier: TierName
    nextTier: Optional[TierName] = None
    trialDaysRemaining: Optional[int] = None
    usage: list[UsageEntrySchema] = Field(default_factory=list)


class LifecycleResponse(BaseModel):
    ok: bool
    subscription: SubscriptionRecordSchema
    error: Optional[str] = None
    notice: Optional[str] = None
    remoteSynced: bool = True


__all__ = [
    "CancelRequest",
    "ChangeTierRequest",
    "LifecycleResponse",
    "PaymentPayload",
    "SubscribeRequest",
    "SubscriptionPayload",
    "SubscriptionRecordSchema",
    "SubscriptionStatusResponse",
    "TrialHistoryPayload",
    "TrialStartRequest",
    "UsageEntrySchema",
    "UsagePayload",
]
