"""
Static multiplier tables for plan tiers and billing periods.

Used only by the fallback estimate when the catalog has no usable price.
Tier and period strings come from an external catalog and are open-ended,
so parsing never fails: anything outside the known set becomes an Unknown
value with multiplier 1.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Union


class PlanTier(str, Enum):
    SHARED = "shared"
    SEMI_PRIVATE = "semi_private"
    PRIVATE = "private"

    @property
    def multiplier(self) -> float:
        return TIER_MULTIPLIERS[self]

    @property
    def label(self) -> str:
        return TIER_LABELS[self]


class BillingPeriod(str, Enum):
    ONE_MONTH = "1_month"
    THREE_MONTHS = "3_months"
    SIX_MONTHS = "6_months"
    ONE_YEAR = "1_year"
    TWO_YEARS = "2_years"
    LIFETIME = "lifetime"

    @property
    def multiplier(self) -> float:
        return PERIOD_MULTIPLIERS[self]

    @property
    def label(self) -> str:
        return PERIOD_LABELS[self]


@dataclass(frozen=True)
class Unknown:
    """A tier or period string the tables do not know about."""
    value: str
    multiplier: float = 1.0

    @property
    def label(self) -> str:
        return self.value


Tier = Union[PlanTier, Unknown]
Period = Union[BillingPeriod, Unknown]


TIER_MULTIPLIERS: Dict[PlanTier, float] = {
    PlanTier.SHARED: 1.0,
    PlanTier.SEMI_PRIVATE: 1.5,
    PlanTier.PRIVATE: 2.0,
}

PERIOD_MULTIPLIERS: Dict[BillingPeriod, float] = {
    BillingPeriod.ONE_MONTH: 1.0,
    BillingPeriod.THREE_MONTHS: 2.5,
    BillingPeriod.SIX_MONTHS: 4.5,
    BillingPeriod.ONE_YEAR: 8.0,
    BillingPeriod.TWO_YEARS: 14.0,
    BillingPeriod.LIFETIME: 25.0,
}

TIER_LABELS: Dict[PlanTier, str] = {
    PlanTier.SHARED: "Shared",
    PlanTier.SEMI_PRIVATE: "Semi-Private",
    PlanTier.PRIVATE: "Private",
}

PERIOD_LABELS: Dict[BillingPeriod, str] = {
    BillingPeriod.ONE_MONTH: "1 Month",
    BillingPeriod.THREE_MONTHS: "3 Months",
    BillingPeriod.SIX_MONTHS: "6 Months",
    BillingPeriod.ONE_YEAR: "1 Year",
    BillingPeriod.TWO_YEARS: "2 Years",
    BillingPeriod.LIFETIME: "Lifetime",
}

# New cart lines are priced from Product.base_price, which is quoted at this tier/period
DEFAULT_TIER = PlanTier.SHARED
DEFAULT_PERIOD = BillingPeriod.ONE_MONTH


def parse_tier(value: Union[str, Tier]) -> Tier:
    if isinstance(value, (PlanTier, Unknown)):
        return value
    try:
        return PlanTier(value)
    except ValueError:
        return Unknown(str(value))


def parse_period(value: Union[str, Period]) -> Period:
    if isinstance(value, (BillingPeriod, Unknown)):
        return value
    try:
        return BillingPeriod(value)
    except ValueError:
        return Unknown(str(value))


def tier_multiplier(value: Union[str, Tier]) -> float:
    return parse_tier(value).multiplier


def period_multiplier(value: Union[str, Period]) -> float:
    return parse_period(value).multiplier


def known_tiers() -> List[PlanTier]:
    return list(PlanTier)


def known_periods() -> List[BillingPeriod]:
    return list(BillingPeriod)
