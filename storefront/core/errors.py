"""Error taxonomy shared by the cart, pricing and checkout services."""

from typing import Optional


class AppError(Exception):
    code = "app_error"

    def __init__(self, message: str, *, code: Optional[str] = None, attempt_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.attempt_id = attempt_id

    def to_payload(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.attempt_id:
            payload["attempt_id"] = self.attempt_id
        return {"error": payload}


class ValidationError(AppError, ValueError):
    """Malformed buyer input or an empty cart. Reported inline, never retried."""
    code = "validation_error"


class NotFoundError(AppError, KeyError):
    code = "not_found"

    def __str__(self) -> str:
        return self.message


class PricingUnavailable(AppError):
    """No catalog match and no usable fallback price."""
    code = "pricing_unavailable"


class CacheFetchError(AppError):
    """Catalog fetch failed and nothing was cached before."""
    code = "cache_fetch_failed"


class NetworkError(AppError):
    """Checkout submission never reached the purchase backend."""
    code = "network_error"


class ServerError(AppError):
    """Purchase backend rejected the submission."""
    code = "server_error"
