"""
Application container.

Builds the catalog cache, cart store, checkout orchestrator and notification
wiring once per application instance and hands them to UI code. init() runs
at startup; reset() runs on logout and in test teardown.
"""
import logging
from typing import List, Optional

from storefront.core.config import Settings, settings as default_settings, validate_config
from storefront.core.logging import configure_logging
from storefront.features.cart.service import CartStore
from storefront.features.cart.storage import CartStorage, FileCartStorage
from storefront.features.catalog.cache import CatalogCache
from storefront.features.catalog.provider import CatalogProvider, HttpCatalogProvider
from storefront.features.checkout.backend import HttpPurchaseBackend, PurchaseBackend
from storefront.features.checkout.service import CheckoutOrchestrator
from storefront.features.notifications.events import EventBus
from storefront.features.notifications.service import (
    NotificationChannel,
    NotificationService,
    WebhookNotificationChannel,
    WhatsAppLinkChannel,
)

logger = logging.getLogger("storefront")


class Storefront:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        catalog_provider: Optional[CatalogProvider] = None,
        purchase_backend: Optional[PurchaseBackend] = None,
        cart_storage: Optional[CartStorage] = None,
        channels: Optional[List[NotificationChannel]] = None,
    ):
        self.settings = settings or default_settings
        self._catalog_provider = catalog_provider
        self._purchase_backend = purchase_backend
        self._cart_storage = cart_storage
        self._channels = channels
        self.catalog: Optional[CatalogCache] = None
        self.cart: Optional[CartStore] = None
        self.checkout: Optional[CheckoutOrchestrator] = None
        self.events: Optional[EventBus] = None
        self.notifications: Optional[NotificationService] = None

    @property
    def initialized(self) -> bool:
        return self.cart is not None

    def init(self) -> "Storefront":
        """Construct services and rehydrate the persisted cart. Idempotent."""
        if self.initialized:
            return self
        cfg = self.settings
        validate_config(settings_obj=cfg)

        provider = self._catalog_provider or HttpCatalogProvider(
            cfg.CATALOG_BASE_URL or "",
            api_key=cfg.CATALOG_API_KEY,
            timeout=cfg.CATALOG_FETCH_TIMEOUT_SECONDS,
        )
        backend = self._purchase_backend or HttpPurchaseBackend(
            cfg.PURCHASE_BACKEND_URL or "",
            api_key=cfg.CATALOG_API_KEY,
            timeout=cfg.CHECKOUT_TIMEOUT_SECONDS,
        )
        storage = self._cart_storage or FileCartStorage(cfg.CART_STORAGE_DIR, key=cfg.CART_STORAGE_KEY)

        self.catalog = CatalogCache(
            provider,
            ttl_seconds=cfg.CATALOG_TTL_SECONDS,
            fetch_timeout=cfg.CATALOG_FETCH_TIMEOUT_SECONDS,
        )
        self.cart = CartStore(self.catalog, storage)
        self.events = EventBus()
        self.checkout = CheckoutOrchestrator(
            backend,
            currency=cfg.CURRENCY,
            events=self.events,
            timeout=cfg.CHECKOUT_TIMEOUT_SECONDS,
        )
        self.notifications = NotificationService(self._build_channels())
        self.notifications.attach(self.events)

        restored = self.cart.load()
        logger.info(f"storefront.init lines_restored={restored}")
        return self

    def _build_channels(self) -> List[NotificationChannel]:
        if self._channels is not None:
            return list(self._channels)
        cfg = self.settings
        channels: List[NotificationChannel] = []
        if cfg.WHATSAPP_NUMBER:
            channels.append(WhatsAppLinkChannel(cfg.WHATSAPP_NUMBER))
        if cfg.NOTIFICATION_WEBHOOK_URL:
            channels.append(WebhookNotificationChannel(
                cfg.NOTIFICATION_WEBHOOK_URL,
                max_attempts=cfg.NOTIFICATION_MAX_ATTEMPTS,
                backoff_seconds=cfg.notification_backoff(),
            ))
        return channels

    def reset(self) -> None:
        """Clear the cart (and its storage) and drop cached catalog data."""
        if not self.initialized:
            return
        self.cart.clear()
        self.cart.storage.delete()
        self.catalog.reset()
        logger.info("storefront.reset")


def create_storefront(settings: Optional[Settings] = None, **overrides) -> Storefront:
    """Configure logging and return an initialized Storefront."""
    cfg = settings or default_settings
    configure_logging(cfg.ENV, cfg.LOG_LEVEL)
    return Storefront(settings=cfg, **overrides).init()
