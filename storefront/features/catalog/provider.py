"""
Catalog provider protocol.

Defines the interface for the remote product/pricing catalog.
This allows swapping providers without changing cache or cart logic.
The catalog is eventually consistent and may omit plans for some products.
"""
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from storefront.models.catalog import PricingPlan, Product


class CatalogProvider(Protocol):
    """
    Protocol for catalog providers.

    Implementations must handle:
    - Listing products
    - Listing pricing plans for a set of product ids
    """

    async def fetch_products(self) -> List[Product]:
        """
        Fetch every product in the catalog.

        Raises:
            CatalogProviderError: If the catalog cannot be reached or parsed
        """
        ...

    async def fetch_pricing_plans(self, product_ids: Sequence[str]) -> List[PricingPlan]:
        """
        Fetch pricing plans for the given products (enabled or not).

        Args:
            product_ids: Products to fetch plans for

        Returns:
            Plans in catalog order; products without plans are simply absent

        Raises:
            CatalogProviderError: If the catalog cannot be reached or parsed
        """
        ...


class CatalogProviderError(Exception):
    """Base exception for catalog provider errors."""
    pass


class HttpCatalogProvider:
    """PostgREST-style catalog over HTTP (products and pricing_plans tables)."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP catalog provider.

        Args:
            base_url: Catalog root, e.g. https://project.supabase.co
            api_key: Sent as apikey and bearer token when set
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not base_url:
            raise CatalogProviderError("CATALOG_BASE_URL not configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _get_rows(self, path: str, params: Dict[str, str]) -> List[dict]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(path, params=params, headers=self._headers())
                response.raise_for_status()
                rows = response.json()
        except httpx.HTTPError as e:
            raise CatalogProviderError(f"Catalog request {path} failed: {e}") from e
        except ValueError as e:
            raise CatalogProviderError(f"Catalog response for {path} is not JSON") from e
        if not isinstance(rows, list):
            raise CatalogProviderError(f"Catalog response for {path} is not a list")
        return rows

    async def fetch_products(self) -> List[Product]:
        rows = await self._get_rows("/rest/v1/products", {"select": "*"})
        return _parse_rows(Product, rows)

    async def fetch_pricing_plans(self, product_ids: Sequence[str]) -> List[PricingPlan]:
        if not product_ids:
            return []
        id_list = ",".join(product_ids)
        rows = await self._get_rows(
            "/rest/v1/pricing_plans",
            {"select": "*", "product_id": f"in.({id_list})"},
        )
        return _parse_rows(PricingPlan, rows)


class StaticCatalogProvider:
    """In-memory catalog (fixtures, demos, tests)."""

    def __init__(self, products: Iterable[Product] = (), plans: Iterable[PricingPlan] = ()):
        self.products = list(products)
        self.plans = list(plans)

    async def fetch_products(self) -> List[Product]:
        return list(self.products)

    async def fetch_pricing_plans(self, product_ids: Sequence[str]) -> List[PricingPlan]:
        wanted = set(product_ids)
        return [plan for plan in self.plans if plan.product_id in wanted]


def _parse_rows(model, rows: List[dict]) -> list:
    try:
        return [model.model_validate(row) for row in rows]
    except PydanticValidationError as e:
        raise CatalogProviderError(f"Malformed {model.__name__} row: {e}") from e
