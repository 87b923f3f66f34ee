import asyncio
from datetime import timedelta

from core.tier_constants import SubscriptionStatus, Tier
from services.lifecycle_manager import LifecycleErrorCode, LifecycleNotice, check_status
from services.subscription_record import SubscriptionRecord


def test_trial_grants_premium_until_reconciliation_expires_it(service, clock) -> None:
    result = asyncio.run(service.start_trial("u1", Tier.PREMIUM))
    assert result.ok
    assert result.record.status is SubscriptionStatus.TRIAL
    assert result.record.trial_ends_at == clock.now() + timedelta(days=7)

    clock.advance(days=6)
    assert service.has_access("u1", Tier.PREMIUM)

    clock.advance(days=2)
    reconciled = asyncio.run(service.open_session("u1"))
    assert reconciled.notice is LifecycleNotice.TRIAL_ENDED
    assert reconciled.record.status is SubscriptionStatus.EXPIRED
    assert reconciled.record.tier is Tier.FREE
    assert service.subscription("u1").status is SubscriptionStatus.EXPIRED


def test_second_trial_is_refused_even_after_cancel(service) -> None:
    assert asyncio.run(service.start_trial("u1", Tier.BASIC)).ok
    assert asyncio.run(service.cancel("u1")).ok

    second = asyncio.run(service.start_trial("u1", Tier.PREMIUM))
    assert not second.ok
    assert second.error is LifecycleErrorCode.TRIAL_ALREADY_USED
    assert service.subscription("u1").status is SubscriptionStatus.CANCELED


def test_second_trial_while_first_is_running_is_refused(service) -> None:
    first = asyncio.run(service.start_trial("u1", Tier.BASIC))
    second = asyncio.run(service.start_trial("u1", Tier.BASIC))

    assert second.error is LifecycleErrorCode.TRIAL_ALREADY_USED
    assert service.subscription("u1") == first.record


def test_trial_after_unreconciled_expiry_is_refused(service, clock) -> None:
    asyncio.run(service.start_trial("u1", Tier.BASIC))
    clock.advance(days=9)

    result = asyncio.run(service.start_trial("u1", Tier.PREMIUM))

    assert result.error is LifecycleErrorCode.TRIAL_ALREADY_USED
    assert result.record.status is SubscriptionStatus.EXPIRED


def test_trial_during_paid_subscription_is_an_invalid_transition(service) -> None:
    asyncio.run(service.subscribe("u1", Tier.BASIC))
    result = asyncio.run(service.start_trial("u1", Tier.PREMIUM))
    assert result.error is LifecycleErrorCode.INVALID_TRANSITION


def test_elapsed_subscription_cannot_be_changed_or_canceled(service, clock) -> None:
    asyncio.run(service.subscribe("u1", Tier.BASIC))
    clock.advance(days=366)

    changed = asyncio.run(service.change_tier("u1", Tier.PREMIUM))
    canceled = asyncio.run(service.cancel("u1"))

    assert changed.error is LifecycleErrorCode.INVALID_TRANSITION
    assert changed.record.status is SubscriptionStatus.EXPIRED
    assert canceled.error is LifecycleErrorCode.INVALID_TRANSITION
    assert service.subscription("u1").tier is Tier.BASIC


def test_trial_history_on_backend_blocks_trial_on_fresh_device(service, backend) -> None:
    backend.trials.add("u1")
    result = asyncio.run(service.start_trial("u1", Tier.BASIC))
    assert result.error is LifecycleErrorCode.TRIAL_ALREADY_USED


def test_offline_trial_is_blocked_by_local_registry(make_service) -> None:
    service = make_service(None)
    assert asyncio.run(service.start_trial("u1", Tier.BASIC)).ok
    assert asyncio.run(service.cancel("u1")).ok
    assert asyncio.run(service.start_trial("u1", Tier.BASIC)).error is LifecycleErrorCode.TRIAL_ALREADY_USED


def test_free_tier_has_no_trial(service) -> None:
    result = asyncio.run(service.start_trial("u1", Tier.FREE))
    assert result.error is LifecycleErrorCode.TIER_NOT_TRIAL_ELIGIBLE
    assert service.subscription("u1") == SubscriptionRecord.initial()


def test_change_tier_during_trial_keeps_trial_end(service) -> None:
    started = asyncio.run(service.start_trial("u1", Tier.BASIC))
    changed = asyncio.run(service.change_tier("u1", Tier.PREMIUM))

    assert changed.ok
    assert changed.record.tier is Tier.PREMIUM
    assert changed.record.status is SubscriptionStatus.TRIAL
    assert changed.record.trial_ends_at == started.record.trial_ends_at


def test_change_tier_to_free_cancels(service) -> None:
    asyncio.run(service.subscribe("u1", Tier.BASIC))
    result = asyncio.run(service.change_tier("u1", Tier.FREE))
    assert result.ok
    assert result.record == SubscriptionRecord.lapsed(SubscriptionStatus.CANCELED)


def test_change_tier_without_subscription_is_invalid(service) -> None:
    result = asyncio.run(service.change_tier("u1", Tier.PRO))
    assert result.error is LifecycleErrorCode.INVALID_TRANSITION


def test_subscribe_activates_for_a_year(service, backend, clock) -> None:
    result = asyncio.run(service.subscribe("u1", Tier.PRO, payment_method="stripe"))

    assert result.ok
    assert result.payment_id == "pay_001"
    assert result.record.status is SubscriptionStatus.ACTIVE
    assert result.record.subscription_ends_at == clock.now() + timedelta(days=365)
    assert result.record.trial_ends_at is None
    assert "/subscriptions/upgrade" in backend.paths("POST")


def test_failed_payment_leaves_record_untouched(service, backend) -> None:
    asyncio.run(service.start_trial("u1", Tier.BASIC))
    before = service.subscription("u1")
    backend.payment_ok = False

    result = asyncio.run(service.subscribe("u1", Tier.PREMIUM))

    assert not result.ok
    assert result.error is LifecycleErrorCode.PAYMENT_FAILED
    assert result.message == "card declined"
    assert service.subscription("u1") == before
    assert "/subscriptions/upgrade" not in backend.paths("POST")


def test_subscribe_offline_reports_payment_failure(make_service) -> None:
    service = make_service(None)
    result = asyncio.run(service.subscribe("u1", Tier.BASIC))
    assert result.error is LifecycleErrorCode.PAYMENT_FAILED
    assert service.subscription("u1") == SubscriptionRecord.initial()


def test_cancel_reverts_to_free_immediately(service) -> None:
    asyncio.run(service.subscribe("u1", Tier.PRO))
    assert service.has_access("u1", Tier.BASIC)

    result = asyncio.run(service.cancel("u1", "too expensive"))

    assert result.ok
    assert result.record.tier is Tier.FREE
    assert result.record.status is SubscriptionStatus.CANCELED
    assert not service.has_access("u1", Tier.BASIC)


def test_cancel_without_subscription_is_invalid(service) -> None:
    result = asyncio.run(service.cancel("u1"))
    assert result.error is LifecycleErrorCode.INVALID_TRANSITION


def test_remote_failure_still_commits_locally(service, backend) -> None:
    backend.offline = True
    result = asyncio.run(service.start_trial("u1", Tier.BASIC))

    assert result.ok
    assert result.remote_synced is False
    assert service.subscription("u1").status is SubscriptionStatus.TRIAL


def test_check_status_leaves_live_records_alone(clock) -> None:
    record = SubscriptionRecord.active(Tier.BASIC, clock.now() + timedelta(days=1))
    assert check_status(record, clock.now()) == (record, None)

    expired, notice = check_status(record, clock.now() + timedelta(days=2))
    assert notice is LifecycleNotice.SUBSCRIPTION_ENDED
    assert expired == SubscriptionRecord.lapsed(SubscriptionStatus.EXPIRED)
