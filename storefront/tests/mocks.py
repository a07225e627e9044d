import asyncio
from typing import Any, Dict, List, Optional, Sequence

from storefront.models.catalog import PricingPlan, Product
from storefront.models.purchase import PurchaseRequest


class CountingCatalogProvider:
    """Catalog provider that counts calls and can be held open or made to fail."""

    def __init__(self, products: Sequence[Product] = (), plans: Sequence[PricingPlan] = ()):
        self.products = list(products)
        self.plans = list(plans)
        self.product_calls = 0
        self.plan_calls: List[List[str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Exception] = None

    def hold(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def fetch_products(self) -> List[Product]:
        self.product_calls += 1
        await self._wait()
        return list(self.products)

    async def fetch_pricing_plans(self, product_ids: Sequence[str]) -> List[PricingPlan]:
        self.plan_calls.append(list(product_ids))
        await self._wait()
        wanted = set(product_ids)
        return [plan for plan in self.plans if plan.product_id in wanted]


class FakePurchaseBackend:
    def __init__(self, response: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.response = response if response is not None else success_body()
        self.error = error
        self.requests: List[PurchaseRequest] = []
        self.gate: Optional[asyncio.Event] = None

    def hold(self) -> asyncio.Event:
        self.gate = asyncio.Event()
        return self.gate

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def create_purchase(self, request: PurchaseRequest) -> Dict[str, Any]:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response


def success_body(returning: bool = False) -> Dict[str, Any]:
    return {
        "success": True,
        "user_code": "USR-7Q2K",
        "is_returning_user": returning,
        "product_codes": [
            {"product_code": "PRD-0001", "product_id": "p1", "product_name": "Netflix Premium"},
        ],
        "total_amount": 1400,
        "currency": "NGN",
    }


class RecordingChannel:
    name = "recording"

    def __init__(self):
        self.sent = []

    async def send(self, result, message):
        self.sent.append((result, message))
