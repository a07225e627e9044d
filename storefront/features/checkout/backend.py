"""
Purchase backend protocol.

The backend accepts a purchase request and generates a permanent user code
(or reuses the buyer's existing one) plus one code per purchased product.
Payment happens out of band; nothing here moves money.
"""
from typing import Any, Dict, Optional, Protocol

import httpx

from storefront.models.purchase import PurchaseRequest


class PurchaseBackend(Protocol):
    async def create_purchase(self, request: PurchaseRequest) -> Dict[str, Any]:
        """
        Submit one purchase.

        Returns:
            Backend body: {success, user_code, is_returning_user, product_codes,
            total_amount, currency} or {success: False, error}

        Raises:
            PurchaseTransportError: If the request never got a usable response
            PurchaseRejectedError: If the backend answered with an HTTP error
        """
        ...


class PurchaseBackendError(Exception):
    """Base exception for purchase backend errors."""
    pass


class PurchaseTransportError(PurchaseBackendError):
    """Connection failures, timeouts, unreadable responses."""
    pass


class PurchaseRejectedError(PurchaseBackendError):
    """The backend answered, with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class HttpPurchaseBackend:
    """Calls the create_simple_purchase RPC over HTTP."""

    RPC_PATH = "/rest/v1/rpc/create_simple_purchase"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise PurchaseBackendError("PURCHASE_BACKEND_URL not configured")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self, request: PurchaseRequest) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Idempotency-Key": request.attempt_id,
        }
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def create_purchase(self, request: PurchaseRequest) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.post(
                    self.RPC_PATH,
                    json=request.to_backend_payload(),
                    headers=self._headers(request),
                )
        except httpx.HTTPError as e:
            raise PurchaseTransportError(f"Purchase request failed: {e}") from e

        if response.status_code >= 400:
            raise PurchaseRejectedError(_error_message(response), status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise PurchaseTransportError("Purchase response is not JSON") from e
        if not isinstance(body, dict):
            raise PurchaseTransportError("Purchase response is not an object")
        return body


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"
