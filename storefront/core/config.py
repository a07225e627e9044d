import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Catalog provider (PostgREST-style endpoint)
    CATALOG_BASE_URL: Optional[str] = None
    CATALOG_API_KEY: Optional[str] = None
    CATALOG_TTL_SECONDS: int = 300
    CATALOG_FETCH_TIMEOUT_SECONDS: float = 10.0

    # Purchase backend
    PURCHASE_BACKEND_URL: Optional[str] = None
    CHECKOUT_TIMEOUT_SECONDS: float = 10.0
    CURRENCY: str = "NGN"

    # Persisted cart
    CART_STORAGE_DIR: str = ".storefront"
    CART_STORAGE_KEY: str = "tool-pal-cart"

    # Notifications
    WHATSAPP_NUMBER: Optional[str] = None
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_BACKOFF_SECONDS: str = "1,5,15"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def notification_backoff(self) -> List[float]:
        try:
            values = [float(x.strip()) for x in self.NOTIFICATION_BACKOFF_SECONDS.split(",") if x.strip()]
            return values or [1.0, 5.0, 15.0]
        except ValueError:
            return [1.0, 5.0, 15.0]

settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("storefront")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "CATALOG_BASE_URL",
        "CATALOG_API_KEY",
        "PURCHASE_BACKEND_URL",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.CATALOG_TTL_SECONDS <= 0:
        message = "CATALOG_TTL_SECONDS must be positive"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
