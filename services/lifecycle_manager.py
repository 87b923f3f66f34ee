"""Subscription state machine: trial, subscribe, cancel, tier change, reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from functools import partial
from typing import Any, Dict, Optional, Tuple

from core.env import env_int
from core.logging import get_logger
from core.tier_constants import SubscriptionStatus, Tier
from services.clock import Clock
from services.persistence_gateway import PersistenceGateway, RemoteWrite
from services.subscription_api import SubscriptionApiClient, SubscriptionApiError
from services.subscription_record import SubscriptionRecord
from services.tier_catalog import TierCatalog
from services.trial_registry import TrialRegistry

logger = get_logger(__name__)

SUBSCRIPTION_PERIOD_DAYS = env_int("SUBSCRIPTION_PERIOD_DAYS", 365, minimum=1)

_TRIAL_ENTRY_STATES = frozenset(
    {SubscriptionStatus.NONE, SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELED}
)
_LIVE_STATES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL})


class LifecycleErrorCode(str, Enum):
    TRIAL_ALREADY_USED = "trial_already_used"
    TIER_NOT_TRIAL_ELIGIBLE = "tier_not_trial_eligible"
    PAYMENT_FAILED = "payment_failed"
    INVALID_TRANSITION = "invalid_transition"


class LifecycleNotice(str, Enum):
    """User-facing notices raised by reconciliation; not errors."""

    TRIAL_ENDED = "trial_ended"
    SUBSCRIPTION_ENDED = "subscription_ended"


@dataclass(frozen=True, slots=True)
class LifecycleResult:
    ok: bool
    record: SubscriptionRecord
    error: Optional[LifecycleErrorCode] = None
    message: Optional[str] = None
    notice: Optional[LifecycleNotice] = None
    remote_synced: bool = True
    payment_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "subscription": self.record.to_payload(),
            "error": self.error.value if self.error else None,
            "notice": self.notice.value if self.notice else None,
            "remoteSynced": self.remote_synced,
        }


def check_status(record: SubscriptionRecord, now: datetime) -> Tuple[SubscriptionRecord, Optional[LifecycleNotice]]:
    """Recompute status from stored timestamps; returns the record and any expiry notice."""
    if record.status is SubscriptionStatus.TRIAL and record.trial_ends_at is not None:
        if now > record.trial_ends_at:
            return SubscriptionRecord.lapsed(SubscriptionStatus.EXPIRED), LifecycleNotice.TRIAL_ENDED
    if record.status is SubscriptionStatus.ACTIVE and record.subscription_ends_at is not None:
        if now > record.subscription_ends_at:
            return SubscriptionRecord.lapsed(SubscriptionStatus.EXPIRED), LifecycleNotice.SUBSCRIPTION_ENDED
    return record, None


class LifecycleManager:
    """Mutates subscription records through the lifecycle transitions.

    Every operation returns a :class:`LifecycleResult`; expected failures
    (second trial, failed payment, illegal transition) are reported in the
    result rather than raised. Records that change are persisted through the
    gateway before the result is returned.
    """

    def __init__(
        self,
        *,
        catalog: TierCatalog,
        clock: Clock,
        gateway: PersistenceGateway,
        trial_registry: TrialRegistry,
        api: Optional[SubscriptionApiClient] = None,
        subscription_period: timedelta = timedelta(days=SUBSCRIPTION_PERIOD_DAYS),
    ) -> None:
        self._catalog = catalog
        self._clock = clock
        self._gateway = gateway
        self._trials = trial_registry
        self._api = api
        self._subscription_period = subscription_period

    def _reject(self, record: SubscriptionRecord, code: LifecycleErrorCode, message: str) -> LifecycleResult:
        logger.info("Lifecycle operation rejected (%s): %s", code.value, message)
        return LifecycleResult(ok=False, record=record, error=code, message=message)

    async def _commit(
        self,
        user_id: str,
        record: SubscriptionRecord,
        *,
        remote_write: Optional[RemoteWrite] = None,
        notice: Optional[LifecycleNotice] = None,
        payment_id: Optional[str] = None,
    ) -> LifecycleResult:
        outcome = await self._gateway.write(user_id, record, remote_write=remote_write)
        return LifecycleResult(
            ok=True,
            record=outcome.record,
            notice=notice,
            remote_synced=outcome.remote_synced,
            payment_id=payment_id,
        )

    async def _trial_used(self, user_id: str) -> bool:
        if self._trials.has_used_trial(user_id):
            return True
        if self._api is None:
            return False
        try:
            return await self._api.fetch_trial_history(user_id)
        except SubscriptionApiError as exc:
            logger.warning("Trial history unavailable for user=%s; relying on local registry. %s", user_id, exc)
            return False

    def _current(self, user_id: str) -> SubscriptionRecord:
        """Cached record with any elapsed window already expired, in memory only."""
        record, _ = check_status(self._gateway.cached(user_id), self._clock.now())
        return record

    async def start_trial(self, user_id: str, tier: Tier) -> LifecycleResult:
        tier = Tier(tier)
        current = self._current(user_id)
        if await self._trial_used(user_id):
            return self._reject(current, LifecycleErrorCode.TRIAL_ALREADY_USED, "The free trial has already been used.")
        limits = self._catalog.limits_of(tier)
        if not limits.trial_eligible:
            return self._reject(current, LifecycleErrorCode.TIER_NOT_TRIAL_ELIGIBLE, f"No trial is offered for {tier.value}.")
        if current.status not in _TRIAL_ENTRY_STATES:
            return self._reject(
                current,
                LifecycleErrorCode.INVALID_TRANSITION,
                f"Cannot start a trial while the subscription is {current.status.value}.",
            )

        now = self._clock.now()
        record = SubscriptionRecord.trial(tier, now + timedelta(days=limits.trial_length_days))
        self._trials.mark_used(user_id, tier, now)
        remote = partial(self._api.start_trial, user_id, tier, limits.trial_length_days) if self._api else None
        return await self._commit(user_id, record, remote_write=remote)

    async def subscribe(self, user_id: str, tier: Tier, *, payment_method: str = "paypal") -> LifecycleResult:
        tier = Tier(tier)
        current = self._current(user_id)
        if tier is Tier.FREE:
            return self._reject(current, LifecycleErrorCode.INVALID_TRANSITION, "The free tier cannot be purchased.")
        if self._api is None:
            return self._reject(current, LifecycleErrorCode.PAYMENT_FAILED, "Payment gateway is not configured.")

        amount = self._catalog.limits_of(tier).monthly_price
        try:
            payment = await self._api.process_payment(user_id, tier, amount, payment_method)
        except SubscriptionApiError as exc:
            return self._reject(current, LifecycleErrorCode.PAYMENT_FAILED, str(exc))
        if not payment.success:
            return self._reject(current, LifecycleErrorCode.PAYMENT_FAILED, payment.error or "Payment was declined.")

        record = SubscriptionRecord.active(tier, self._clock.now() + self._subscription_period)
        logger.info("Payment %s confirmed for user=%s tier=%s.", payment.paymentId, user_id, tier)
        return await self._commit(
            user_id,
            record,
            remote_write=partial(self._api.upgrade_subscription, user_id, tier),
            payment_id=payment.paymentId,
        )

    async def cancel(self, user_id: str, reason: Optional[str] = None) -> LifecycleResult:
        current = self._current(user_id)
        if current.status not in _LIVE_STATES:
            return self._reject(
                current,
                LifecycleErrorCode.INVALID_TRANSITION,
                f"There is no subscription to cancel (status={current.status.value}).",
            )
        record = SubscriptionRecord.lapsed(SubscriptionStatus.CANCELED)
        remote = partial(self._api.cancel_subscription, user_id, reason) if self._api else None
        logger.info("Canceling %s %s for user=%s.", current.tier, current.status, user_id)
        return await self._commit(user_id, record, remote_write=remote)

    async def change_tier(self, user_id: str, new_tier: Tier) -> LifecycleResult:
        new_tier = Tier(new_tier)
        current = self._current(user_id)
        if current.status not in _LIVE_STATES:
            return self._reject(
                current,
                LifecycleErrorCode.INVALID_TRANSITION,
                f"Tier changes need an active subscription or trial (status={current.status.value}).",
            )
        if new_tier is Tier.FREE:
            return await self.cancel(user_id, reason="downgrade_to_free")
        if current.status is SubscriptionStatus.TRIAL and not self._catalog.limits_of(new_tier).trial_eligible:
            return self._reject(
                current,
                LifecycleErrorCode.TIER_NOT_TRIAL_ELIGIBLE,
                f"{new_tier.value} cannot be used during a trial.",
            )
        if new_tier is current.tier:
            return LifecycleResult(ok=True, record=current)
        # Timestamps are untouched; a tier change never restarts the clock.
        record = replace(current, tier=new_tier)
        logger.info("Changing tier for user=%s: %s -> %s.", user_id, current.tier, new_tier)
        return await self._commit(user_id, record)

    async def reconcile(self, user_id: str) -> LifecycleResult:
        """Load the record (remote wins) and expire it if its window has elapsed."""
        loaded = await self._gateway.read(user_id)
        reconciled, notice = check_status(loaded, self._clock.now())
        if notice is None:
            return LifecycleResult(ok=True, record=loaded)
        logger.info("Subscription for user=%s lapsed (%s); downgrading to free.", user_id, notice.value)
        return await self._commit(user_id, reconciled, notice=notice)


__all__ = [
    "LifecycleErrorCode",
    "LifecycleManager",
    "LifecycleNotice",
    "LifecycleResult",
    "SUBSCRIPTION_PERIOD_DAYS",
    "check_status",
]
