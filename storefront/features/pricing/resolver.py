"""
Pricing resolution.

Resolves a unit price for (product, plan tier, billing period):

1. Authoritative catalog match: an enabled plan for the tier whose price
   field for the period parses to a positive number.
2. Multiplier estimate: rescale the line's previous price from its previous
   tier/period to the requested ones using the price table.

The catalog is eventually consistent and may lag the product's canonical
price, so the estimate keeps the cart usable when the catalog has nothing.
Nothing here touches the network; fallback_price is a pure function.
"""
import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence

from storefront.core.errors import PricingUnavailable
from storefront.core.metrics import pricing_resolution_total
from storefront.features.pricing.price_table import (
    DEFAULT_PERIOD,
    DEFAULT_TIER,
    BillingPeriod,
    known_periods,
    known_tiers,
    parse_period,
    parse_tier,
)
from storefront.models.cart import PriceSource
from storefront.models.catalog import PricingPlan, Product

_PRICE_NOISE_RE = re.compile(r"[^\d.,]")


@dataclass(frozen=True)
class PriorPrice:
    """The price a line had before the mutation, and what it was quoted for."""
    price: float
    plan_tier: str
    billing_period: str


@dataclass(frozen=True)
class PriceResolution:
    price: float
    source: PriceSource
    plan_id: Optional[str] = None


def parse_price(raw: Optional[str]) -> Optional[float]:
    """
    Parse free-text catalog prices like "₹1,400" or "$11,200.50".

    Returns None when nothing numeric and positive can be read.
    """
    if raw is None:
        return None
    cleaned = _PRICE_NOISE_RE.sub("", str(raw)).replace(",", "")
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def price_field_for(plan: PricingPlan, billing_period: str) -> Optional[str]:
    """Raw catalog price for the period; the catalog only stores monthly and yearly."""
    period = parse_period(billing_period)
    if period is BillingPeriod.ONE_MONTH:
        return plan.monthly_price
    if period is BillingPeriod.ONE_YEAR:
        return plan.yearly_price
    return None


def match_catalog_price(
    plans: Iterable[PricingPlan],
    plan_tier: str,
    billing_period: str,
) -> Optional[PriceResolution]:
    for plan in plans:
        if not plan.enabled or plan.plan_tier != plan_tier:
            continue
        price = parse_price(price_field_for(plan, billing_period))
        if price is not None:
            return PriceResolution(price=price, source=PriceSource.CATALOG, plan_id=plan.id)
    return None


def _round_half_up(value: float) -> float:
    return float(Decimal(repr(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def fallback_price(
    current_price: Optional[float],
    old_tier: str,
    old_period: str,
    new_tier: str,
    new_period: str,
) -> Optional[float]:
    """
    Rescale current_price from (old_tier, old_period) to (new_tier, new_period).

    Returns None if there is no usable current price.
    """
    if current_price is None or not math.isfinite(current_price) or current_price <= 0:
        return None
    old_factor = parse_tier(old_tier).multiplier * parse_period(old_period).multiplier
    new_factor = parse_tier(new_tier).multiplier * parse_period(new_period).multiplier
    base_price = current_price / old_factor
    new_price = _round_half_up(base_price * new_factor)
    if not math.isfinite(new_price) or new_price <= 0:
        return None
    return new_price


def prior_for_product(product: Optional[Product]) -> Optional[PriorPrice]:
    """Fallback anchor for a product not yet in the cart."""
    if product is None or not product.base_price:
        return None
    return PriorPrice(
        price=product.base_price,
        plan_tier=DEFAULT_TIER.value,
        billing_period=DEFAULT_PERIOD.value,
    )


def resolve_price(
    product_id: str,
    plan_tier: str,
    billing_period: str,
    plans: Optional[Sequence[PricingPlan]],
    previous: Optional[PriorPrice] = None,
) -> PriceResolution:
    """
    Resolve a unit price, catalog first, then the multiplier estimate.

    Args:
        product_id: Product being priced (for error reporting)
        plan_tier: Requested tier
        billing_period: Requested period
        plans: The product's plans from the catalog, or None if unknown
        previous: Price and tier/period the line had before this change

    Raises:
        PricingUnavailable: If neither path yields a finite positive price
    """
    match = match_catalog_price(plans or [], plan_tier, billing_period)
    if match is not None:
        pricing_resolution_total.inc({"source": PriceSource.CATALOG.value})
        return match

    if previous is not None:
        estimate = fallback_price(
            previous.price,
            previous.plan_tier,
            previous.billing_period,
            plan_tier,
            billing_period,
        )
        if estimate is not None:
            pricing_resolution_total.inc({"source": PriceSource.FALLBACK.value})
            return PriceResolution(price=estimate, source=PriceSource.FALLBACK)

    pricing_resolution_total.inc({"source": "unavailable"})
    raise PricingUnavailable(
        f"No price available for {product_id} ({plan_tier}, {billing_period})"
    )


def available_tiers(plans: Optional[Sequence[PricingPlan]]) -> List[str]:
    """Tiers a product can be bought at; every known tier when the catalog is silent."""
    enabled = [plan for plan in plans or [] if plan.enabled]
    if not enabled:
        return [tier.value for tier in known_tiers()]
    offered = []
    for plan in enabled:
        if plan.plan_tier not in offered:
            offered.append(plan.plan_tier)
    known = [tier.value for tier in known_tiers() if tier.value in offered]
    return known + [tier for tier in offered if tier not in known]


def available_periods(plans: Optional[Sequence[PricingPlan]]) -> List[str]:
    """Periods implied by which catalog price fields are filled in."""
    enabled = [plan for plan in plans or [] if plan.enabled]
    if not enabled:
        return [period.value for period in known_periods()]
    offered = set()
    for plan in enabled:
        if plan.monthly_price:
            offered.add(BillingPeriod.ONE_MONTH)
        if plan.yearly_price:
            offered.add(BillingPeriod.ONE_YEAR)
        if not plan.monthly_price and not plan.yearly_price:
            offered.add(BillingPeriod.ONE_MONTH)
    return [period.value for period in known_periods() if period in offered]
