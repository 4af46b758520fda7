"""Plan tiers, their ordering and the Stripe price catalogue."""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

from .errors import InvalidTier
from .models.subscription import ACTIVE, CANCEL_AT_PERIOD_END, CANCELED, INACTIVE, PAST_DUE

ESSENTIAL = "essential"
ADVANCED = "advanced"
PREMIUM = "premium"
SAFETY_NET = "safety-net"

TIERS = (ESSENTIAL, ADVANCED, PREMIUM, SAFETY_NET)

# Only the upgrade path is ordered; safety-net sits outside the ladder.
TIER_RANK: Dict[str, int] = {
    ESSENTIAL: 1,
    ADVANCED: 2,
    PREMIUM: 3,
}

ANNUAL = "annual"
QUARTERLY = "quarterly"
MONTHLY = "monthly"

BILLING_CYCLES = (ANNUAL, QUARTERLY, MONTHLY)

# List prices in dollars, used for display and proration previews.
PLAN_AMOUNTS: Dict[str, Dict[str, int]] = {
    ESSENTIAL: {ANNUAL: 679, QUARTERLY: 207, MONTHLY: 69},
    ADVANCED: {ANNUAL: 1299, QUARTERLY: 399, MONTHLY: 119},
    PREMIUM: {ANNUAL: 2599, QUARTERLY: 799, MONTHLY: 239},
    SAFETY_NET: {ANNUAL: 299},
}

DEFAULT_PRICE_IDS: Dict[Tuple[str, str], str] = {
    (ESSENTIAL, ANNUAL): "price_1S8hrpAFl7pIsUOsWA9XFhQJ",
    (ADVANCED, ANNUAL): "price_1SlR6lAFl7pIsUOs2C9HqP3f",
    (PREMIUM, ANNUAL): "price_1SlR6lAFl7pIsUOssc19PMYR",
    (SAFETY_NET, ANNUAL): "price_1SlRYNPTDVjQnuCnm9lCoiQT",
}

# Stripe subscription status -> internal status vocabulary.
STATUS_MAP: Dict[str, str] = {
    "active": ACTIVE,
    "trialing": ACTIVE,
    "past_due": PAST_DUE,
    "unpaid": INACTIVE,
    "incomplete": INACTIVE,
    "paused": INACTIVE,
    "incomplete_expired": CANCELED,
    "canceled": CANCELED,
}


def tier_rank(tier: str) -> int:
    try:
        return TIER_RANK[tier]
    except KeyError:
        raise InvalidTier(f"Invalid tier: {tier}") from None


def is_upgrade(current_tier: Optional[str], new_tier: str) -> bool:
    """True when ``new_tier`` sits above ``current_tier`` on the ladder.

    A current tier off the ladder (safety-net, or none) ranks below essential.
    """
    return tier_rank(new_tier) > TIER_RANK.get(current_tier or "", 0)


def is_downgrade(current_tier: Optional[str], new_tier: str) -> bool:
    return tier_rank(new_tier) < TIER_RANK.get(current_tier or "", 0)


def map_status(provider_status: Optional[str], cancel_at_period_end: bool = False) -> str:
    status = STATUS_MAP.get(provider_status or "", INACTIVE)
    if status == ACTIVE and cancel_at_period_end:
        return CANCEL_AT_PERIOD_END
    return status


class PriceCatalog:
    """Resolves (tier, billing cycle) pairs to Stripe price IDs and back."""

    def __init__(self, prices: Optional[Mapping[Tuple[str, str], str]] = None) -> None:
        self._prices: Dict[Tuple[str, str], str] = dict(DEFAULT_PRICE_IDS)
        if prices:
            self._prices.update({key: value for key, value in prices.items() if value})
        self._tiers_by_price = {price_id: key for key, price_id in self._prices.items()}

    def price_for(self, tier: str, billing_cycle: str = ANNUAL) -> str:
        if tier not in TIERS:
            raise InvalidTier(f"Invalid tier: {tier}")
        if billing_cycle not in BILLING_CYCLES:
            raise InvalidTier(f"Invalid billing cycle: {billing_cycle}")
        price_id = self._prices.get((tier, billing_cycle))
        if not price_id:
            raise InvalidTier(f"The {tier} plan is not offered on a {billing_cycle} cycle.")
        return price_id

    def lookup(self, price_id: Optional[str]) -> Optional[Tuple[str, str]]:
        """Return ``(tier, billing_cycle)`` for a known price ID."""
        if not price_id:
            return None
        return self._tiers_by_price.get(price_id)

    def amount_for(self, tier: str, billing_cycle: str = ANNUAL) -> Optional[int]:
        return PLAN_AMOUNTS.get(tier, {}).get(billing_cycle)
