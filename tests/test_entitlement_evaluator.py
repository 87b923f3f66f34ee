from datetime import datetime, timedelta, timezone

import pytest

from core.tier_constants import SubscriptionStatus, Tier
from services.entitlement_evaluator import (
    DenialReason,
    Remediation,
    effective_tier,
    evaluate_access,
    has_access,
)
from services.subscription_record import SubscriptionRecord
from services.tier_catalog import TierCatalog

NOW = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
CATALOG = TierCatalog()
ALL_TIERS = [Tier.FREE, Tier.BASIC, Tier.PREMIUM, Tier.PRO]


def _active(tier: Tier, *, days: int = 30) -> SubscriptionRecord:
    return SubscriptionRecord.active(tier, NOW + timedelta(days=days))


def test_free_features_are_always_available() -> None:
    for record in (
        SubscriptionRecord.initial(),
        SubscriptionRecord.lapsed(SubscriptionStatus.EXPIRED),
        SubscriptionRecord.lapsed(SubscriptionStatus.CANCELED),
    ):
        assert has_access(record, Tier.FREE, NOW, CATALOG)


@pytest.mark.parametrize("held", ALL_TIERS[1:])
def test_access_is_monotonic_in_tier(held: Tier) -> None:
    record = _active(held)
    for required in ALL_TIERS:
        expected = CATALOG.rank_of(held) >= CATALOG.rank_of(required)
        assert has_access(record, required, NOW, CATALOG) is expected


def test_tier_too_low_is_reported_before_status() -> None:
    decision = evaluate_access(_active(Tier.BASIC), Tier.PREMIUM, NOW, CATALOG)
    assert not decision.allowed
    assert decision.reason is DenialReason.TIER_TOO_LOW
    assert decision.reason.remediation is Remediation.UPGRADE


def test_access_holds_at_the_exact_end_instant_and_not_after() -> None:
    record = SubscriptionRecord.active(Tier.PREMIUM, NOW)
    assert has_access(record, Tier.PREMIUM, NOW, CATALOG)

    later = NOW + timedelta(microseconds=1)
    decision = evaluate_access(record, Tier.PREMIUM, later, CATALOG)
    assert not decision.allowed
    assert decision.reason is DenialReason.SUBSCRIPTION_EXPIRED


def test_trial_user_gets_premium_until_trial_ends() -> None:
    trial = SubscriptionRecord.trial(Tier.PREMIUM, NOW + timedelta(days=7))

    assert has_access(trial, Tier.PREMIUM, NOW + timedelta(days=3), CATALOG)
    assert has_access(trial, Tier.BASIC, NOW + timedelta(days=3), CATALOG)
    assert not has_access(trial, Tier.PRO, NOW + timedelta(days=3), CATALOG)

    expired = evaluate_access(trial, Tier.PREMIUM, NOW + timedelta(days=8), CATALOG)
    assert expired.reason is DenialReason.SUBSCRIPTION_EXPIRED


def test_lapsed_records_report_the_right_reason() -> None:
    expired = evaluate_access(SubscriptionRecord(tier=Tier.BASIC, status=SubscriptionStatus.EXPIRED), Tier.BASIC, NOW, CATALOG)
    assert expired.reason is DenialReason.SUBSCRIPTION_EXPIRED
    assert expired.to_dict()["remediation"] == "renew"

    never = evaluate_access(SubscriptionRecord.initial(), Tier.BASIC, NOW, CATALOG)
    assert never.reason is DenialReason.TIER_TOO_LOW

    canceled = evaluate_access(SubscriptionRecord(tier=Tier.BASIC, status=SubscriptionStatus.CANCELED), Tier.BASIC, NOW, CATALOG)
    assert canceled.reason is DenialReason.NO_SUBSCRIPTION


def test_effective_tier_drops_to_free_once_window_elapses() -> None:
    record = _active(Tier.PRO, days=1)
    assert effective_tier(record, NOW) is Tier.PRO
    assert effective_tier(record, NOW + timedelta(days=2)) is Tier.FREE
    assert effective_tier(SubscriptionRecord.initial(), NOW) is Tier.FREE
