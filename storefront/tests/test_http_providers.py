"""
Tests for the HTTP catalog provider and purchase backend (httpx.MockTransport).
"""
import json

import httpx
import pytest

from storefront.features.catalog.provider import CatalogProviderError, HttpCatalogProvider
from storefront.features.checkout.backend import (
    HttpPurchaseBackend,
    PurchaseBackendError,
    PurchaseRejectedError,
    PurchaseTransportError,
)
from storefront.models.purchase import Buyer, PurchaseItem, PurchaseRequest
from storefront.tests.mocks import success_body

BASE_URL = "https://catalog.example.com"


def make_request():
    return PurchaseRequest(
        attempt_id="attempt-1",
        buyer=Buyer(name="Ada Obi", email="ada@example.com"),
        items=[PurchaseItem(product_id="p1", plan_tier="shared", billing_period="1_month", price=1400)],
        currency="NGN",
    )


@pytest.mark.asyncio
async def test_fetch_products_parses_rows():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[
            {"id": 1, "name": "Netflix Premium", "category": "streaming", "price": 1400, "extra": "ignored"},
            {"id": "p2", "name": "Canva Pro", "base_price": None},
        ])

    provider = HttpCatalogProvider(BASE_URL, api_key="anon-key", transport=httpx.MockTransport(handler))
    products = await provider.fetch_products()

    assert [p.id for p in products] == ["1", "p2"]
    assert products[0].base_price == 1400
    assert products[1].base_price is None
    assert seen[0].url.path == "/rest/v1/products"
    assert seen[0].headers["apikey"] == "anon-key"
    assert seen[0].headers["authorization"] == "Bearer anon-key"


@pytest.mark.asyncio
async def test_fetch_pricing_plans_filters_by_ids():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[
            {"id": 10, "product_id": "p1", "plan_type": "shared", "monthly_price": "₹1,400",
             "yearly_price": 11200, "is_enabled": True},
        ])

    provider = HttpCatalogProvider(BASE_URL, transport=httpx.MockTransport(handler))
    plans = await provider.fetch_pricing_plans(["p1", "p2"])

    assert seen[0].url.params["product_id"] == "in.(p1,p2)"
    assert plans[0].id == "10"
    assert plans[0].plan_tier == "shared"
    assert plans[0].yearly_price == "11200"
    assert plans[0].enabled is True


@pytest.mark.asyncio
async def test_fetch_pricing_plans_for_no_ids_skips_request():
    def handler(request):
        raise AssertionError("no request expected")

    provider = HttpCatalogProvider(BASE_URL, transport=httpx.MockTransport(handler))
    assert await provider.fetch_pricing_plans([]) == []


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"message": "boom"}),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"not": "a list"}),
        httpx.Response(200, json=[{"name": "missing id"}]),
    ],
)
@pytest.mark.asyncio
async def test_catalog_failures_raise_provider_error(response):
    provider = HttpCatalogProvider(BASE_URL, transport=httpx.MockTransport(lambda request: response))
    with pytest.raises(CatalogProviderError):
        await provider.fetch_products()


@pytest.mark.asyncio
async def test_catalog_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    provider = HttpCatalogProvider(BASE_URL, transport=httpx.MockTransport(handler))
    with pytest.raises(CatalogProviderError, match="refused"):
        await provider.fetch_products()


def test_providers_require_base_url():
    with pytest.raises(CatalogProviderError):
        HttpCatalogProvider("")
    with pytest.raises(PurchaseBackendError):
        HttpPurchaseBackend("")


@pytest.mark.asyncio
async def test_create_purchase_posts_rpc_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=success_body())

    backend = HttpPurchaseBackend(BASE_URL, api_key="anon-key", transport=httpx.MockTransport(handler))
    body = await backend.create_purchase(make_request())

    assert body["user_code"] == "USR-7Q2K"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/rpc/create_simple_purchase"
    assert request.headers["idempotency-key"] == "attempt-1"
    payload = json.loads(request.content)
    assert payload["p_user_name"] == "Ada Obi"
    assert payload["p_products"][0]["subscription_type"] == "shared"
    assert payload["p_products"][0]["price"] == 1400


@pytest.mark.asyncio
async def test_create_purchase_error_status_is_rejected():
    backend = HttpPurchaseBackend(
        BASE_URL,
        transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"message": "invalid email"})),
    )
    with pytest.raises(PurchaseRejectedError) as exc:
        await backend.create_purchase(make_request())
    assert exc.value.status_code == 400
    assert str(exc.value) == "invalid email"


@pytest.mark.parametrize(
    "response",
    [httpx.Response(200, text="not json"), httpx.Response(200, json=["a", "list"])],
)
@pytest.mark.asyncio
async def test_create_purchase_unreadable_response(response):
    backend = HttpPurchaseBackend(BASE_URL, transport=httpx.MockTransport(lambda request: response))
    with pytest.raises(PurchaseTransportError):
        await backend.create_purchase(make_request())


@pytest.mark.asyncio
async def test_create_purchase_connection_error():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    backend = HttpPurchaseBackend(BASE_URL, transport=httpx.MockTransport(handler))
    with pytest.raises(PurchaseTransportError):
        await backend.create_purchase(make_request())
