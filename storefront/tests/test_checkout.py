"""
Tests for the checkout orchestrator.

Covers:
- Validation before any backend call
- One backend submission per attempt token
- Result mapping and terminal error classification
- PurchaseCompleted publication
"""
import asyncio

import pytest

from storefront.core.errors import NetworkError, ServerError, ValidationError
from storefront.core.metrics import checkout_submissions_total
from storefront.features.checkout.backend import PurchaseRejectedError, PurchaseTransportError
from storefront.features.checkout.service import CheckoutOrchestrator, validate_buyer
from storefront.features.notifications.events import EventBus, PurchaseCompleted
from storefront.models.cart import CartLine
from storefront.tests.mocks import FakePurchaseBackend, success_body

BUYER = {"name": "Ada Obi", "email": "ada@example.com"}


def make_line(product_id="p1", price=1400.0, quantity=1, tier="shared", period="1_month", name="Netflix Premium"):
    return CartLine(
        product_id=product_id,
        product_name=name,
        quantity=quantity,
        plan_tier=tier,
        billing_period=period,
        resolved_unit_price=price,
    )


@pytest.mark.parametrize(
    "buyer,message",
    [
        ({"name": "", "email": "ada@example.com"}, "Please fill in all required fields"),
        ({"name": "Ada Obi", "email": "   "}, "Please fill in all required fields"),
        ({"name": "Ada Obi", "email": "ada@example"}, "Please enter a valid email address"),
        ({"name": "Ada Obi", "email": "ada obi@example.com"}, "Please enter a valid email address"),
        ({"name": "A", "email": "ada@example.com"}, "Name must be between 2 and 100 characters"),
        ({"name": "A" * 101, "email": "ada@example.com"}, "Name must be between 2 and 100 characters"),
    ],
)
@pytest.mark.asyncio
async def test_invalid_buyer_never_reaches_backend(buyer, message):
    backend = FakePurchaseBackend()
    orchestrator = CheckoutOrchestrator(backend)

    with pytest.raises(ValidationError) as exc:
        await orchestrator.submit(buyer, [make_line()])

    assert exc.value.message == message
    assert backend.calls == 0


@pytest.mark.asyncio
async def test_empty_cart_never_reaches_backend():
    backend = FakePurchaseBackend()
    with pytest.raises(ValidationError, match="Your cart is empty"):
        await CheckoutOrchestrator(backend).submit(BUYER, [])
    assert backend.calls == 0


def test_validate_buyer_normalizes_input():
    buyer = validate_buyer({"name": "  Ada Obi ", "email": " Ada@Example.COM "})
    assert buyer.name == "Ada Obi"
    assert buyer.email == "ada@example.com"


@pytest.mark.asyncio
async def test_duplicate_submits_share_one_backend_call():
    backend = FakePurchaseBackend()
    gate = backend.hold()
    orchestrator = CheckoutOrchestrator(backend)
    lines = [make_line()]

    first = asyncio.ensure_future(orchestrator.submit(BUYER, lines, attempt_token="attempt-1"))
    second = asyncio.ensure_future(orchestrator.submit(BUYER, lines, attempt_token="attempt-1"))
    await asyncio.sleep(0.01)
    assert orchestrator.is_submitting("attempt-1")

    gate.set()
    a, b = await asyncio.gather(first, second)

    assert backend.calls == 1
    assert a == b
    assert a.user_code == "USR-7Q2K"
    assert checkout_submissions_total.value({"outcome": "deduplicated"}) == 1
    assert checkout_submissions_total.value({"outcome": "success"}) == 1
    assert not orchestrator.is_submitting("attempt-1")


@pytest.mark.asyncio
async def test_identical_requests_without_token_collapse():
    backend = FakePurchaseBackend()
    gate = backend.hold()
    orchestrator = CheckoutOrchestrator(backend)

    calls = [asyncio.ensure_future(orchestrator.submit(BUYER, [make_line()])) for _ in range(3)]
    await asyncio.sleep(0.01)
    gate.set()
    results = await asyncio.gather(*calls)

    assert backend.calls == 1
    assert len({r.attempt_id for r in results}) == 1


@pytest.mark.asyncio
async def test_result_mapping_for_new_customer():
    backend = FakePurchaseBackend()
    orchestrator = CheckoutOrchestrator(backend, currency="NGN")

    result = await orchestrator.submit(
        {"name": "Ada Obi", "email": "ADA@example.com"}, [make_line()], attempt_token="attempt-2"
    )

    assert result.success
    assert result.attempt_id == "attempt-2"
    assert result.user_code == "USR-7Q2K"
    assert result.is_returning_user is False
    assert [(pc.code, pc.product_id, pc.status) for pc in result.product_codes] == [("PRD-0001", "p1", "pending")]
    assert result.total_amount == 1400
    assert result.currency == "NGN"
    assert result.buyer_email == "ada@example.com"


@pytest.mark.asyncio
async def test_result_fills_names_and_total_from_cart():
    body = {
        "success": True,
        "user_code": "USR-9",
        "is_returning_user": True,
        "product_codes": [
            {"product_code": "PRD-1", "product_id": "p1"},
            {"product_code": "PRD-2", "product_id": "p2", "status": "approved"},
        ],
    }
    backend = FakePurchaseBackend(response=body)
    lines = [make_line(), make_line("p2", price=2000, name="Canva Pro", tier="private")]

    result = await CheckoutOrchestrator(backend, currency="NGN").submit(BUYER, lines)

    assert result.is_returning_user
    assert [pc.product_name for pc in result.product_codes] == ["Netflix Premium", "Canva Pro"]
    assert all(pc.status == "pending" for pc in result.product_codes)
    assert result.total_amount == 3400
    assert result.currency == "NGN"


@pytest.mark.asyncio
async def test_request_carries_resolved_prices_unchanged():
    backend = FakePurchaseBackend()
    lines = [make_line(price=11200, period="1_year"), make_line("p2", price=267, tier="shared", name="Canva Pro")]

    await CheckoutOrchestrator(backend).submit(BUYER, lines, attempt_token="attempt-3")

    payload = backend.requests[0].to_backend_payload()
    assert payload["p_user_email"] == "ada@example.com"
    assert payload["p_currency"] == "NGN"
    assert payload["p_products"] == [
        {"product_id": "p1", "subscription_type": "shared", "subscription_period": "1_year", "price": 11200},
        {"product_id": "p2", "subscription_type": "shared", "subscription_period": "1_month", "price": 267},
    ]


@pytest.mark.asyncio
async def test_unsuccessful_body_is_server_error():
    backend = FakePurchaseBackend(response={"success": False, "error": "Product p1 is disabled"})

    with pytest.raises(ServerError) as exc:
        await CheckoutOrchestrator(backend).submit(BUYER, [make_line()], attempt_token="attempt-4")

    assert exc.value.message == "Product p1 is disabled"
    assert exc.value.attempt_id == "attempt-4"
    assert exc.value.to_payload()["error"]["code"] == "server_error"


@pytest.mark.asyncio
async def test_unsuccessful_body_without_message():
    backend = FakePurchaseBackend(response={"success": False})
    with pytest.raises(ServerError, match="Failed to process purchase"):
        await CheckoutOrchestrator(backend).submit(BUYER, [make_line()])


@pytest.mark.asyncio
async def test_http_rejection_is_server_error():
    backend = FakePurchaseBackend(error=PurchaseRejectedError("permission denied", status_code=401))
    with pytest.raises(ServerError, match="permission denied"):
        await CheckoutOrchestrator(backend).submit(BUYER, [make_line()])


@pytest.mark.asyncio
async def test_malformed_success_body_is_server_error():
    backend = FakePurchaseBackend(response={"success": True, "product_codes": []})
    with pytest.raises(ServerError, match="Malformed purchase response"):
        await CheckoutOrchestrator(backend).submit(BUYER, [make_line()])


@pytest.mark.asyncio
async def test_transport_failure_is_network_error():
    backend = FakePurchaseBackend(error=PurchaseTransportError("connection refused"))
    with pytest.raises(NetworkError, match="connection refused"):
        await CheckoutOrchestrator(backend).submit(BUYER, [make_line()])
    assert checkout_submissions_total.value({"outcome": "network_error"}) == 1


@pytest.mark.asyncio
async def test_timeout_is_network_error():
    backend = FakePurchaseBackend()
    backend.hold()  # never released
    orchestrator = CheckoutOrchestrator(backend, timeout=0.01)

    with pytest.raises(NetworkError, match="timed out"):
        await orchestrator.submit(BUYER, [make_line()], attempt_token="attempt-5")

    assert not orchestrator.is_submitting("attempt-5")


@pytest.mark.asyncio
async def test_resubmit_after_failure_calls_backend_again():
    backend = FakePurchaseBackend(error=PurchaseTransportError("connection reset"))
    orchestrator = CheckoutOrchestrator(backend)

    with pytest.raises(NetworkError):
        await orchestrator.submit(BUYER, [make_line()], attempt_token="attempt-6")

    backend.error = None
    result = await orchestrator.submit(BUYER, [make_line()], attempt_token="attempt-6")

    assert backend.calls == 2
    assert result.user_code == "USR-7Q2K"


@pytest.mark.asyncio
async def test_success_publishes_purchase_completed():
    bus = EventBus()
    received = []

    async def handler(event):
        received.append(event)

    bus.subscribe(PurchaseCompleted, handler)
    backend = FakePurchaseBackend(response=success_body(returning=True))

    result = await CheckoutOrchestrator(backend, events=bus).submit(BUYER, [make_line()])
    await bus.drain()

    assert len(received) == 1
    assert received[0].result == result
    assert received[0].event_type == "purchase.completed"


@pytest.mark.asyncio
async def test_failure_publishes_nothing():
    bus = EventBus()
    received = []

    async def handler(event):
        received.append(event)

    bus.subscribe(PurchaseCompleted, handler)
    backend = FakePurchaseBackend(response={"success": False, "error": "nope"})

    with pytest.raises(ServerError):
        await CheckoutOrchestrator(backend, events=bus).submit(BUYER, [make_line()])
    await bus.drain()

    assert received == []
