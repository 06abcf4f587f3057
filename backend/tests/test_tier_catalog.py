"""
Tier catalog tests: feature entitlements, limits, price lookups and the
effective tier used by every gated endpoint.
"""
import pytest
from datetime import datetime, timedelta, timezone

from models import UserTier, Feature
from services.tier_catalog import (
    TIER_PRICES,
    DEFAULT_LIMITS,
    has_permission,
    get_tier_limits,
    tier_for_amount,
    subscription_expiry,
    effective_tier,
    is_purchasable,
    get_catalog,
)

PAID_ORDER = [UserTier.FREE, UserTier.PIONEER, UserTier.EARLY_ADOPTER, UserTier.GROWTH, UserTier.PRO]


class TestPermissions:
    def test_core_analysis_denied_only_for_free(self):
        for tier in UserTier:
            assert has_permission(tier, Feature.CORE_ANALYSIS) is (tier != UserTier.FREE)

    def test_export_and_alerts_need_growth_or_pro(self):
        for tier in (UserTier.FREE, UserTier.PIONEER, UserTier.EARLY_ADOPTER):
            assert not has_permission(tier, Feature.EXPORT_DATA)
            assert not has_permission(tier, Feature.WATCHLIST_ALERTS)
        for tier in (UserTier.GROWTH, UserTier.PRO):
            assert has_permission(tier, Feature.EXPORT_DATA)
            assert has_permission(tier, Feature.WATCHLIST_ALERTS)

    def test_early_adopter_gets_priority_support_pioneer_does_not(self):
        assert has_permission("early_adopter", Feature.PRIORITY_SUPPORT)
        assert not has_permission("pioneer", Feature.PRIORITY_SUPPORT)

    def test_unknown_tier_has_no_features(self):
        for feature in Feature:
            assert not has_permission("platinum", feature)
            assert not has_permission(None, feature)

    def test_string_tier_is_resolved(self):
        assert has_permission("GROWTH", Feature.EXPORT_DATA)


class TestLimits:
    def test_watchlist_size_monotonic_in_tier_order(self):
        sizes = [get_tier_limits(t).max_watchlist_size for t in PAID_ORDER]
        assert sizes == sorted(sizes)
        assert sizes == [5, 20, 20, 50, 9999]

    def test_free_and_unknown_fall_back_to_defaults(self):
        assert get_tier_limits(UserTier.FREE) == DEFAULT_LIMITS
        assert get_tier_limits("corrupted") == DEFAULT_LIMITS
        assert DEFAULT_LIMITS.can_export is False

    def test_export_flag_matches_feature(self):
        for tier in UserTier:
            assert get_tier_limits(tier).can_export == has_permission(tier, Feature.EXPORT_DATA)


class TestTierForAmount:
    def test_exact_prices_resolve(self):
        assert tier_for_amount("999000.00") == UserTier.GROWTH
        assert tier_for_amount(1999000) == UserTier.PRO
        assert tier_for_amount("5000") == UserTier.PIONEER
        assert tier_for_amount("599000.00") == UserTier.EARLY_ADOPTER

    def test_fractional_or_unknown_amount_matches_nothing(self):
        assert tier_for_amount("999000.50") is None
        assert tier_for_amount("123") is None
        assert tier_for_amount("") is None
        assert tier_for_amount(None) is None
        assert tier_for_amount("abc") is None

    def test_free_is_never_purchasable(self):
        assert tier_for_amount("0") is None
        assert not is_purchasable("free")
        assert is_purchasable("pro")


class TestExpiry:
    def test_lifetime_tiers_never_expire(self):
        start = datetime(2025, 3, 1, tzinfo=timezone.utc)
        assert subscription_expiry(UserTier.PIONEER, start) is None
        assert subscription_expiry(UserTier.EARLY_ADOPTER, start) is None

    def test_yearly_tiers_expire_after_one_year(self):
        start = datetime(2025, 3, 1, 10, 30, tzinfo=timezone.utc)
        assert subscription_expiry(UserTier.GROWTH, start) == datetime(2026, 3, 1, 10, 30, tzinfo=timezone.utc)

    def test_leap_day_rolls_to_feb_28(self):
        start = datetime(2024, 2, 29, tzinfo=timezone.utc)
        assert subscription_expiry(UserTier.PRO, start) == datetime(2025, 2, 28, tzinfo=timezone.utc)


class TestEffectiveTier:
    def test_active_unexpired(self):
        future = datetime.now(timezone.utc) + timedelta(days=30)
        assert effective_tier({"tier": "growth", "status": "active", "expiry_date": future}) == UserTier.GROWTH

    def test_lifetime_without_expiry(self):
        assert effective_tier({"tier": "pioneer", "status": "active", "expiry_date": None}) == UserTier.PIONEER

    def test_past_expiry_is_free_even_if_still_active(self):
        past = datetime.now(timezone.utc) - timedelta(seconds=1)
        assert effective_tier({"tier": "pro", "status": "active", "expiry_date": past}) == UserTier.FREE

    def test_naive_datetime_is_treated_as_utc(self):
        past = (datetime.now(timezone.utc) - timedelta(days=1)).replace(tzinfo=None)
        assert effective_tier({"tier": "pro", "status": "active", "expiry_date": past}) == UserTier.FREE

    @pytest.mark.parametrize("status", ["expired", "canceled"])
    def test_inactive_status_is_free(self, status):
        assert effective_tier({"tier": "pro", "status": status}) == UserTier.FREE

    def test_missing_subscription_is_free(self):
        assert effective_tier(None) == UserTier.FREE
        assert effective_tier({"tier": "bogus", "status": "active"}) == UserTier.FREE


def test_catalog_lists_every_tier_with_price():
    catalog = {entry["tier"]: entry for entry in get_catalog()}
    assert set(catalog) == {t.value for t in UserTier}
    assert catalog["growth"]["price"] == TIER_PRICES[UserTier.GROWTH]
    assert catalog["pioneer"]["lifetime"] is True
    assert catalog["free"]["purchasable"] is False
    assert catalog["pro"]["limits"]["max_watchlist_size"] == 9999
