import asyncio
from datetime import timedelta

import pytest

from core.tier_constants import Tier
from services.tier_guard import TierGuardError, ensure_tier


def test_ensure_tier_returns_effective_tier(service) -> None:
    asyncio.run(service.subscribe("u1", Tier.PREMIUM))
    assert ensure_tier(service, "u1", Tier.BASIC) is Tier.PREMIUM


def test_ensure_tier_raises_for_free_user(service) -> None:
    with pytest.raises(TierGuardError) as exc:
        ensure_tier(service, "u1", Tier.BASIC)

    detail = exc.value.to_detail()
    assert detail["code"] == "tier.tier_too_low"
    assert detail["requiredTier"] == "basic"
    assert detail["currentTier"] == "free"
    assert detail["nextTier"] == "basic"
    assert detail["remediation"] == "upgrade"


def test_ensure_tier_flags_elapsed_window_before_reconciliation(service, clock) -> None:
    asyncio.run(service.start_trial("u1", Tier.PREMIUM))
    clock.advance(days=8)

    with pytest.raises(TierGuardError) as exc:
        ensure_tier(service, "u1", Tier.PREMIUM)

    assert exc.value.code == "tier.subscription_expired"
    assert exc.value.remediation == "renew"
    assert "premium" in exc.value.message
