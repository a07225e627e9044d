"""
Checkout orchestrator.

Pure-ish business logic that coordinates:
- Buyer and cart validation (before any network call)
- Request assembly from the cart's last resolved prices
- Exactly one backend submission per attempt token
- Mapping backend responses to PurchaseResult / terminal errors

There is no automatic retry: a failed attempt is resubmitted by the user.
"""
import asyncio
import math
import re
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from storefront.core.errors import NetworkError, ServerError, ValidationError
from storefront.core.idempotency import InFlightRegistry, request_fingerprint
from storefront.core.logging import bind_attempt_id, log_event
from storefront.core.metrics import checkout_submissions_total
from storefront.features.checkout.backend import (
    PurchaseBackend,
    PurchaseRejectedError,
    PurchaseTransportError,
)
from storefront.features.notifications.events import EventBus, PurchaseCompleted
from storefront.models.cart import CartLine
from storefront.models.purchase import (
    EMAIL_PATTERN,
    Buyer,
    ProductCode,
    PurchaseItem,
    PurchaseRequest,
    PurchaseResult,
)

EMAIL_RE = re.compile(EMAIL_PATTERN)
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100

BuyerInput = Union[Buyer, Mapping[str, Any]]


def validate_buyer(buyer: BuyerInput) -> Buyer:
    """
    Normalize and validate buyer details.

    Raises:
        ValidationError: With a message fit for inline display
    """
    if isinstance(buyer, Buyer):
        raw_name, raw_email = buyer.name, buyer.email
    else:
        raw_name, raw_email = buyer.get("name"), buyer.get("email")
    name = (raw_name or "").strip()
    email = (raw_email or "").strip().lower()

    if not name or not email:
        raise ValidationError("Please fill in all required fields")
    if not EMAIL_RE.match(email):
        raise ValidationError("Please enter a valid email address")
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters")
    return Buyer(name=name, email=email)


def validate_lines(lines: Sequence[CartLine]) -> None:
    if not lines:
        raise ValidationError("Your cart is empty")
    for line in lines:
        price = line.resolved_unit_price
        if price is None or not math.isfinite(price) or price <= 0:
            raise ValidationError(f"{line.product_name or line.product_id} has no valid price")


class CheckoutOrchestrator:
    def __init__(
        self,
        backend: PurchaseBackend,
        currency: str = "NGN",
        events: Optional[EventBus] = None,
        timeout: Optional[float] = 10.0,
    ):
        self.backend = backend
        self.currency = currency
        self.events = events
        self.timeout = timeout
        self._inflight = InFlightRegistry()

    def build_request(self, buyer: Buyer, lines: Sequence[CartLine], attempt_id: Optional[str] = None) -> PurchaseRequest:
        """Project cart lines into a request; prices are sent exactly as last resolved."""
        items = [
            PurchaseItem(
                product_id=line.product_id,
                plan_tier=line.plan_tier,
                billing_period=line.billing_period,
                price=line.resolved_unit_price,
            )
            for line in lines
        ]
        if attempt_id is None:
            attempt_id = request_fingerprint({
                "buyer": buyer.model_dump(),
                "items": [item.model_dump() for item in items],
                "currency": self.currency,
            })
        return PurchaseRequest(attempt_id=attempt_id, buyer=buyer, items=items, currency=self.currency)

    def is_submitting(self, attempt_id: str) -> bool:
        return self._inflight.is_pending(attempt_id)

    async def submit(
        self,
        buyer: BuyerInput,
        lines: Sequence[CartLine],
        attempt_token: Optional[str] = None,
    ) -> PurchaseResult:
        """
        Validate, then submit once per attempt token.

        A call whose token is already in flight awaits that submission's outcome
        instead of reaching the backend again. Without a token, the request
        content is the token, so identical rapid resubmits collapse.

        Raises:
            ValidationError: Bad buyer details or unusable cart
            ServerError: Backend rejected the purchase
            NetworkError: Backend unreachable or timed out
        """
        valid_buyer = validate_buyer(buyer)
        validate_lines(lines)
        request = self.build_request(valid_buyer, lines, attempt_token)
        names = {line.product_id: line.product_name for line in lines}

        if self._inflight.is_pending(request.attempt_id):
            checkout_submissions_total.inc({"outcome": "deduplicated"})
            log_event("info", "checkout.duplicate_ignored", attempt_id=request.attempt_id)

        return await self._inflight.run(request.attempt_id, lambda: self._submit(request, names))

    async def _submit(self, request: PurchaseRequest, names: Dict[str, str]) -> PurchaseResult:
        with bind_attempt_id(request.attempt_id):
            log_event(
                "info",
                "checkout.submitting",
                extra={"items": len(request.items), "currency": request.currency},
            )
            try:
                body = await self._call_backend(request)
            except asyncio.TimeoutError as e:
                checkout_submissions_total.inc({"outcome": "network_error"})
                raise NetworkError("Purchase request timed out", attempt_id=request.attempt_id) from e
            except (PurchaseTransportError, OSError) as e:
                checkout_submissions_total.inc({"outcome": "network_error"})
                raise NetworkError(str(e) or "Network error", attempt_id=request.attempt_id) from e
            except PurchaseRejectedError as e:
                checkout_submissions_total.inc({"outcome": "server_error"})
                raise ServerError(str(e), attempt_id=request.attempt_id) from e

            if not body.get("success"):
                checkout_submissions_total.inc({"outcome": "server_error"})
                message = body.get("error") or "Failed to process purchase"
                log_event("warning", "checkout.rejected", error_code=ServerError.code, extra={"detail": message})
                raise ServerError(str(message), attempt_id=request.attempt_id)

            try:
                result = self._to_result(request, body, names)
            except PydanticValidationError as e:
                checkout_submissions_total.inc({"outcome": "server_error"})
                raise ServerError("Malformed purchase response", attempt_id=request.attempt_id) from e

            checkout_submissions_total.inc({"outcome": "success"})
            log_event(
                "info",
                "checkout.completed",
                extra={
                    "returning": result.is_returning_user,
                    "codes": len(result.product_codes),
                    "total": result.total_amount,
                },
            )
            if self.events is not None:
                self.events.publish(PurchaseCompleted(result=result))
            return result

    async def _call_backend(self, request: PurchaseRequest) -> Dict[str, Any]:
        call = self.backend.create_purchase(request)
        if self.timeout:
            return await asyncio.wait_for(call, timeout=self.timeout)
        return await call

    def _to_result(self, request: PurchaseRequest, body: Mapping[str, Any], names: Dict[str, str]) -> PurchaseResult:
        codes = []
        for raw in body.get("product_codes") or []:
            product_id = raw.get("product_id", "")
            codes.append(ProductCode.model_validate({
                "code": raw.get("product_code") or raw.get("code"),
                "product_id": product_id,
                "product_name": raw.get("product_name") or names.get(product_id, ""),
                "status": "pending",
            }))
        total = body.get("total_amount")
        if total is None:
            total = sum(item.price for item in request.items)
        return PurchaseResult(
            success=True,
            attempt_id=request.attempt_id,
            user_code=body.get("user_code"),
            is_returning_user=bool(body.get("is_returning_user")),
            product_codes=codes,
            total_amount=total,
            currency=body.get("currency") or request.currency,
            buyer_name=request.buyer.name,
            buyer_email=request.buyer.email,
        )
