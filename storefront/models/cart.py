"""
storefront/models/cart.py
Cart line and persisted cart models.
"""

import math
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PriceSource(str, Enum):
    CATALOG = "catalog"
    FALLBACK = "fallback"


class PriceSnapshotRef(BaseModel):
    """Which catalog data produced a line's price (audit/debugging only)."""

    model_config = ConfigDict(frozen=True)

    source: PriceSource
    plan_id: Optional[str] = None
    fetched_at: Optional[datetime] = None


class CartLine(BaseModel):
    """One product in the cart. product_id is unique within a cart."""

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(min_length=1)
    product_name: str = ""
    quantity: int = Field(ge=1)
    plan_tier: str
    billing_period: str
    resolved_unit_price: float = Field(gt=0)
    catalog_snapshot_ref: Optional[PriceSnapshotRef] = None

    @field_validator("resolved_unit_price")
    @classmethod
    def _finite_price(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("resolved_unit_price must be finite")
        return value

    @property
    def subtotal(self) -> float:
        return self.resolved_unit_price * self.quantity


class PersistedCart(BaseModel):
    """Blob written to cart storage on every mutation."""

    version: int = 1
    lines: List[CartLine] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_products(self) -> "PersistedCart":
        seen = set()
        for line in self.lines:
            if line.product_id in seen:
                raise ValueError(f"duplicate cart line for product {line.product_id}")
            seen.add(line.product_id)
        return self


class CartMutationResult(BaseModel):
    """Outcome of a cart mutation. Errors are returned, not raised."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    ok: bool
    line: Optional[CartLine] = None
    removed: bool = False
    error: Optional[Exception] = None

    @property
    def error_code(self) -> Optional[str]:
        return getattr(self.error, "code", None) if self.error else None
