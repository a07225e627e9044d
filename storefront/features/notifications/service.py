"""Purchase notifications for out-of-band admin approval (WhatsApp / webhook)."""

from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol, Sequence
from urllib.parse import quote

import httpx

from storefront.core.logging import log_event
from storefront.core.metrics import notifications_total
from storefront.features.notifications.events import EventBus, PurchaseCompleted
from storefront.models.purchase import PurchaseResult

WEBHOOK_TIMEOUT_SECONDS = 10


class NotificationDeliveryError(Exception):
    pass


class NotificationChannel(Protocol):
    name: str

    async def send(self, result: PurchaseResult, message: str) -> None:
        ...


def checkout_headline(result: PurchaseResult) -> str:
    if result.is_returning_user:
        return "Welcome back! New product codes generated for your existing account"
    return "Account created! Your account has a permanent User Code"


def format_amount(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def format_purchase_summary(result: PurchaseResult) -> str:
    codes = "\n".join(
        f"• {pc.code} ({pc.product_name or pc.product_id})" for pc in result.product_codes
    )
    customer = "Returning Customer" if result.is_returning_user else "New Customer"
    return (
        "Hi! I just completed my purchase and here are my details:\n"
        "\n"
        f"{customer}\n"
        f"User Code: {result.user_code}\n"
        f"Email: {result.buyer_email}\n"
        "\n"
        "Product Codes:\n"
        f"{codes}\n"
        "\n"
        f"Total: {format_amount(result.total_amount)} {result.currency}\n"
        "\n"
        "Please approve my product codes and provide access. Thank you!"
    )


def whatsapp_link(number: str, message: str) -> str:
    digits = "".join(ch for ch in number if ch.isdigit())
    return f"https://wa.me/{digits}?text={quote(message, safe='')}"


class WhatsAppLinkChannel:
    """Builds the wa.me deep link the buyer opens to message the admin."""

    name = "whatsapp"

    def __init__(self, number: str):
        if not any(ch.isdigit() for ch in number):
            raise ValueError("WhatsApp number must contain digits")
        self.number = number
        self.links: List[str] = []

    @property
    def last_link(self) -> Optional[str]:
        return self.links[-1] if self.links else None

    async def send(self, result: PurchaseResult, message: str) -> None:
        link = whatsapp_link(self.number, message)
        self.links.append(link)
        log_event("info", "notification.whatsapp.link_ready", attempt_id=result.attempt_id)


class WebhookNotificationChannel:
    """POSTs the summary to a webhook, retrying with backoff."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        max_attempts: int = 3,
        backoff_seconds: Sequence[float] = (1, 5, 15),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = list(backoff_seconds) or [1.0]
        self.transport = transport

    def _delay(self, attempt: int) -> float:
        return self.backoff_seconds[min(attempt, len(self.backoff_seconds) - 1)]

    async def send(self, result: PurchaseResult, message: str) -> None:
        payload = {
            "text": message,
            "user_code": result.user_code,
            "product_codes": [pc.code for pc in result.product_codes],
            "attempt_id": result.attempt_id,
        }
        last_error: Optional[Exception] = None
        async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS, transport=self.transport) as client:
            for attempt in range(self.max_attempts):
                try:
                    response = await client.post(self.url, json=payload)
                    response.raise_for_status()
                    return
                except httpx.HTTPError as e:
                    last_error = e
                    log_event(
                        "warning",
                        "notification.webhook.attempt_failed",
                        attempt_id=result.attempt_id,
                        extra={"attempt": attempt + 1, "error": e},
                    )
                    if attempt + 1 < self.max_attempts:
                        await asyncio.sleep(self._delay(attempt))
        raise NotificationDeliveryError(
            f"Webhook delivery failed after {self.max_attempts} attempts: {last_error}"
        )


class NotificationService:
    """Subscribes to PurchaseCompleted and fans the summary out to every channel."""

    def __init__(self, channels: Sequence[NotificationChannel]):
        self.channels = list(channels)

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(PurchaseCompleted, self.handle)

    async def handle(self, event: PurchaseCompleted) -> None:
        message = format_purchase_summary(event.result)
        for channel in self.channels:
            try:
                await channel.send(event.result, message)
            except NotificationDeliveryError as e:
                # the purchase stands; delivery failures are only reported
                notifications_total.inc({"outcome": "failed"})
                log_event(
                    "error",
                    "notification.delivery_failed",
                    attempt_id=event.result.attempt_id,
                    error_code="notification_failed",
                    extra={"channel": channel.name, "error": e},
                )
            else:
                notifications_total.inc({"outcome": "sent"})
