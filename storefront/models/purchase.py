"""
storefront/models/purchase.py
Checkout request/response models exchanged with the purchase backend.
"""

from typing import List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


class Buyer(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=100)
    email: str = Field(pattern=EMAIL_PATTERN)


class PurchaseItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    plan_tier: str
    billing_period: str
    price: float


class PurchaseRequest(BaseModel):
    """Built fresh for every checkout attempt."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    buyer: Buyer
    items: List[PurchaseItem]
    currency: str

    def to_backend_payload(self) -> dict:
        return {
            "p_user_name": self.buyer.name,
            "p_user_email": self.buyer.email,
            "p_products": [
                {
                    "product_id": item.product_id,
                    "subscription_type": item.plan_tier,
                    "subscription_period": item.billing_period,
                    "price": item.price,
                }
                for item in self.items
            ],
            "p_currency": self.currency,
        }


class ProductCode(BaseModel):
    """A generated per-product code awaiting admin approval."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    code: str = Field(validation_alias=AliasChoices("code", "product_code"))
    product_id: str
    product_name: str = ""
    status: str = "pending"


class PurchaseResult(BaseModel):
    """Terminal outcome of a successful checkout. Never mutated."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    success: bool = True
    attempt_id: str
    user_code: str
    is_returning_user: bool = False
    product_codes: List[ProductCode] = Field(default_factory=list)
    total_amount: float
    currency: str
    buyer_name: str
    buyer_email: str
