import json
from pathlib import Path

import pytest

from core.tier_constants import Feature, Tier
from services.tier_catalog import DEFAULT_TIER_LIMITS, UNLIMITED, TierCatalog, load_tier_catalog


def test_rank_order_is_strictly_increasing() -> None:
    catalog = TierCatalog()
    ranks = [catalog.rank_of(tier) for tier in (Tier.FREE, Tier.BASIC, Tier.PREMIUM, Tier.PRO)]
    assert ranks == sorted(ranks)
    assert len(set(ranks)) == 4


def test_default_limits_match_published_table() -> None:
    catalog = TierCatalog()
    basic = catalog.limits_of(Tier.BASIC)
    assert basic.limit_for(Feature.PLACES) == 30
    assert basic.limit_for(Feature.AI_QUERIES) == 10
    assert basic.trial_eligible is True
    assert basic.trial_length_days == 7

    free = catalog.limits_of(Tier.FREE)
    assert free.trial_eligible is False
    assert free.limit_for(Feature.AI_QUERIES) == 0

    pro = catalog.limits_of(Tier.PRO)
    assert all(pro.limit_for(feature) is UNLIMITED for feature in Feature)


def test_next_tier_walks_up_and_stops_at_top() -> None:
    catalog = TierCatalog()
    assert catalog.next_tier(Tier.FREE) is Tier.BASIC
    assert catalog.next_tier(Tier.PREMIUM) is Tier.PRO
    assert catalog.next_tier(Tier.PRO) is None


def test_catalog_rejects_missing_tier() -> None:
    limits = dict(DEFAULT_TIER_LIMITS)
    limits.pop(Tier.PREMIUM)
    with pytest.raises(ValueError):
        TierCatalog(limits)


def test_to_dict_encodes_unlimited_as_token() -> None:
    payload = TierCatalog().to_dict()
    pro = next(entry for entry in payload["tiers"] if entry["tier"] == "pro")
    assert pro["placesPerDay"] == "unlimited"
    assert [entry["tier"] for entry in payload["tiers"]] == ["free", "basic", "premium", "pro"]


def test_load_tier_catalog_without_file_uses_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TIER_CATALOG_FILE", raising=False)
    catalog = load_tier_catalog()
    assert catalog.limits_of(Tier.BASIC) == DEFAULT_TIER_LIMITS[Tier.BASIC]


def test_load_tier_catalog_applies_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "tiers.json"
    path.write_text(
        json.dumps(
            {
                "version": "2024.2",
                "tiers": {
                    "basic": {"placesPerDay": 40, "aiQueriesPerPeriod": -1, "trialLengthDays": 14},
                    "premium": {"dealsPerDay": "lots"},
                    "platinum": {"placesPerDay": 1},
                },
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("TIER_CATALOG_FILE", str(path))

    catalog = load_tier_catalog()

    assert catalog.version == "2024.2"
    basic = catalog.limits_of(Tier.BASIC)
    assert basic.places_per_day == 40
    assert basic.ai_queries_per_period is UNLIMITED
    assert basic.trial_length_days == 14
    assert catalog.limits_of(Tier.PREMIUM).deals_per_day == DEFAULT_TIER_LIMITS[Tier.PREMIUM].deals_per_day


def test_load_tier_catalog_ignores_corrupt_file(tmp_path: Path) -> None:
    path = tmp_path / "tiers.json"
    path.write_text("{not json", encoding="utf-8")
    catalog = load_tier_catalog(path)
    assert catalog.version == TierCatalog().version
