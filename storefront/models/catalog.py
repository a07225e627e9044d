"""
storefront/models/catalog.py
Read-only catalog records as supplied by the catalog provider.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Product(BaseModel):
    """A subscription product. Immutable for the lifetime of a cache entry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    name: str
    category: str = ""
    base_price: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("base_price", "price"),
        description="Legacy single price; anchors the fallback for new cart lines",
    )
    main_image_url: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class PricingPlan(BaseModel):
    """
    One pricing row for a product and plan tier.

    Prices are free text (currency symbols, thousands separators) and may be
    missing entirely. Tiers are open-ended strings.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    product_id: str
    plan_tier: str = Field(validation_alias=AliasChoices("plan_tier", "plan_type"))
    monthly_price: Optional[str] = None
    yearly_price: Optional[str] = None
    enabled: bool = Field(default=True, validation_alias=AliasChoices("enabled", "is_enabled"))

    @field_validator("id", "product_id", "monthly_price", "yearly_price", mode="before")
    @classmethod
    def _numbers_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class CatalogSnapshot(BaseModel):
    """Products and plans as known to the client at fetched_at."""

    model_config = ConfigDict(frozen=True)

    fetched_at: datetime
    products: List[Product] = Field(default_factory=list)
    plans_by_product: Dict[str, List[PricingPlan]] = Field(default_factory=dict)
    stale: bool = False

    def product(self, product_id: str) -> Optional[Product]:
        for product in self.products:
            if product.id == product_id:
                return product
        return None

    def plans_for(self, product_id: str) -> List[PricingPlan]:
        return list(self.plans_by_product.get(product_id, []))
