"""Tier Catalog - Single source of truth for subscription tiers.

This is the AUTHORITATIVE source for:
- Tier prices (IDR, gross amount charged by the payment gateway)
- Feature entitlements per tier
- Numeric limits per tier (watchlist size, export, support level)
- Subscription duration per tier (lifetime vs yearly)

Rules:
1. Everything here is pure - no I/O, safe to call on every request
2. Unknown or corrupted tier values fail safe to the most restrictive limits
3. Tier is inferred from the paid amount by exact match only
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Union
import logging

from models import UserTier, Feature, SubscriptionStatus

logger = logging.getLogger(__name__)


# ============================================================================
# PRICING
# ============================================================================
TIER_PRICES: Dict[UserTier, int] = {
    UserTier.FREE: 0,
    UserTier.PIONEER: 5000,
    UserTier.EARLY_ADOPTER: 599000,
    UserTier.GROWTH: 999000,
    UserTier.PRO: 1999000,
}

PURCHASABLE_TIERS = frozenset({
    UserTier.PIONEER,
    UserTier.EARLY_ADOPTER,
    UserTier.GROWTH,
    UserTier.PRO,
})

# Never expire once bought
LIFETIME_TIERS = frozenset({UserTier.PIONEER, UserTier.EARLY_ADOPTER})

# Reverse lookup: price -> tier (purchasable tiers only)
PRICE_TO_TIER: Dict[int, UserTier] = {
    TIER_PRICES[tier]: tier for tier in PURCHASABLE_TIERS
}


# ============================================================================
# FEATURES
# ============================================================================
_PIONEER_FEATURES = frozenset({
    Feature.CORE_ANALYSIS,
    Feature.COMMUNITY_ACCESS,
    Feature.TIMING_LABELS,
})

_FULL_FEATURES = _PIONEER_FEATURES | {
    Feature.WATCHLIST_ALERTS,
    Feature.EXPORT_DATA,
    Feature.PRIORITY_SUPPORT,
}

TIER_FEATURES: Dict[UserTier, FrozenSet[Feature]] = {
    UserTier.FREE: frozenset(),
    UserTier.PIONEER: _PIONEER_FEATURES,
    UserTier.EARLY_ADOPTER: _PIONEER_FEATURES | {Feature.PRIORITY_SUPPORT},
    UserTier.GROWTH: _FULL_FEATURES,
    UserTier.PRO: _FULL_FEATURES,
}


# ============================================================================
# LIMITS
# ============================================================================
@dataclass(frozen=True)
class TierLimits:
    max_watchlist_size: int
    can_export: bool
    support_level: str

    def to_dict(self) -> Dict:
        return {
            "max_watchlist_size": self.max_watchlist_size,
            "can_export": self.can_export,
            "support_level": self.support_level,
        }


# Fallback for anything not in TIER_LIMITS, including free
DEFAULT_LIMITS = TierLimits(max_watchlist_size=5, can_export=False, support_level="none")

TIER_LIMITS: Dict[UserTier, TierLimits] = {
    UserTier.PIONEER: TierLimits(max_watchlist_size=20, can_export=False, support_level="community"),
    UserTier.EARLY_ADOPTER: TierLimits(max_watchlist_size=20, can_export=False, support_level="community"),
    UserTier.GROWTH: TierLimits(max_watchlist_size=50, can_export=True, support_level="priority"),
    UserTier.PRO: TierLimits(max_watchlist_size=9999, can_export=True, support_level="priority_vip"),
}

TIER_LABELS = {
    UserTier.FREE: "Free Plan",
    UserTier.PIONEER: "Pioneer",
    UserTier.EARLY_ADOPTER: "Early Adopter",
    UserTier.GROWTH: "Growth",
    UserTier.PRO: "Pro",
}


# ============================================================================
# LOOKUPS
# ============================================================================
TierLike = Union[UserTier, str, None]


def resolve_tier(tier: TierLike) -> Optional[UserTier]:
    """Return the UserTier for a value, or None if unrecognized."""
    if isinstance(tier, UserTier):
        return tier
    if not tier:
        return None
    try:
        return UserTier(str(tier).strip().lower())
    except ValueError:
        return None


def has_permission(tier: TierLike, feature: Feature) -> bool:
    """Set-membership check; unknown tiers get the empty (free) set."""
    return feature in TIER_FEATURES.get(resolve_tier(tier), frozenset())


def get_tier_limits(tier: TierLike) -> TierLimits:
    return TIER_LIMITS.get(resolve_tier(tier), DEFAULT_LIMITS)


def is_purchasable(tier: TierLike) -> bool:
    return resolve_tier(tier) in PURCHASABLE_TIERS


def tier_for_amount(amount) -> Optional[UserTier]:
    """
    Reverse lookup of the purchased tier from a gross amount.

    The gateway reports amounts as strings like "999000.00". Match is exact:
    "999000.50" matches nothing.
    """
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return None
    if not value.is_integer():
        return None
    return PRICE_TO_TIER.get(int(value))


def subscription_expiry(tier: UserTier, start: datetime) -> Optional[datetime]:
    """None for lifetime tiers, otherwise one calendar year after start."""
    if tier in LIFETIME_TIERS:
        return None
    try:
        return start.replace(year=start.year + 1)
    except ValueError:
        # Feb 29 -> Feb 28
        return start.replace(year=start.year + 1, day=28)


def _as_aware(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        # Motor returns naive UTC datetimes
        value = value.replace(tzinfo=timezone.utc)
    return value


def is_subscription_expired(subscription: Optional[Dict], now: Optional[datetime] = None) -> bool:
    if not subscription:
        return False
    expiry = _as_aware(subscription.get("expiry_date"))
    if expiry is None:
        return False
    return expiry <= (now or datetime.now(timezone.utc))


def effective_tier(subscription: Optional[Dict], now: Optional[datetime] = None) -> UserTier:
    """
    Tier used for gating on read paths.

    A subscription that is not active, or whose expiry_date has passed, is
    treated as free regardless of the stored tier.
    """
    if not subscription:
        return UserTier.FREE
    if subscription.get("status") != SubscriptionStatus.ACTIVE.value:
        return UserTier.FREE
    if is_subscription_expired(subscription, now):
        return UserTier.FREE
    return resolve_tier(subscription.get("tier")) or UserTier.FREE


def get_catalog() -> list:
    """Public pricing table for the pricing page."""
    return [
        {
            "tier": tier.value,
            "label": TIER_LABELS[tier],
            "price": TIER_PRICES[tier],
            "purchasable": tier in PURCHASABLE_TIERS,
            "lifetime": tier in LIFETIME_TIERS,
            "features": sorted(f.value for f in TIER_FEATURES[tier]),
            "limits": get_tier_limits(tier).to_dict(),
        }
        for tier in UserTier
    ]
