"""
storefront/features/catalog/cache.py

TTL catalog cache.

Handles:
- Serving products and plans while an entry is younger than the TTL
- Coalescing concurrent fetches for the same key into one provider call
- Serving the last entry (even expired) when a refresh fails
- Background per-product plan fetches that never block price resolution

One instance per application; it is advisory and can be reset at any time.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from storefront.core.errors import CacheFetchError
from storefront.core.idempotency import InFlightRegistry
from storefront.core.logging import log_event
from storefront.core.metrics import (
    catalog_cache_hits_total,
    catalog_coalesced_total,
    catalog_fetch_total,
)
from storefront.features.catalog.provider import CatalogProvider
from storefront.models.catalog import CatalogSnapshot, PricingPlan, Product

CacheKey = Optional[FrozenSet[str]]  # None is the full catalog

DEFAULT_TTL_SECONDS = 300
DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _cache_key(product_ids: Optional[Iterable[str]]) -> CacheKey:
    if product_ids is None:
        return None
    return frozenset(product_ids)


@dataclass
class CacheEntry:
    fetched_at: datetime
    products: List[Product]
    plans_by_product: Dict[str, List[PricingPlan]]
    product_ids: CacheKey = None
    invalidated: bool = False

    def snapshot(self, stale: bool = False) -> CatalogSnapshot:
        return CatalogSnapshot(
            fetched_at=self.fetched_at,
            products=list(self.products),
            plans_by_product={pid: list(plans) for pid, plans in self.plans_by_product.items()},
            stale=stale,
        )


@dataclass(frozen=True)
class PlanLookup:
    plans: List[PricingPlan] = field(default_factory=list)
    fetched_at: Optional[datetime] = None


class CatalogCache:
    def __init__(
        self,
        provider: CatalogProvider,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        fetch_timeout: Optional[float] = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ):
        self.provider = provider
        self.ttl = timedelta(seconds=ttl_seconds)
        self.fetch_timeout = fetch_timeout
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight = InFlightRegistry()
        self._background: Set["asyncio.Task[None]"] = set()
        self._generation = 0

    def is_valid(self, entry: CacheEntry) -> bool:
        return not entry.invalidated and _now() - entry.fetched_at < self.ttl

    async def get(self, product_ids: Optional[Iterable[str]] = None) -> CatalogSnapshot:
        """
        Return catalog data for product_ids (None = whole catalog).

        Raises:
            CacheFetchError: If the fetch fails and nothing was ever cached for the key
        """
        key = _cache_key(product_ids)
        entry = self._entries.get(key)
        if entry is not None and self.is_valid(entry):
            catalog_cache_hits_total.inc()
            return entry.snapshot()

        if self._inflight.is_pending(key):
            catalog_coalesced_total.inc()

        try:
            fresh = await self._inflight.run(key, lambda: self._fetch(key))
        except Exception as e:
            # re-read after the await: another caller may have stored data meanwhile
            stale = self._entries.get(key)
            if stale is not None:
                log_event(
                    "warning",
                    "catalog.fetch_failed.serving_stale",
                    error_code=CacheFetchError.code,
                    extra={"key": _describe(key), "error": e, "fetched_at": stale.fetched_at},
                )
                return stale.snapshot(stale=True)
            raise CacheFetchError(f"Catalog fetch failed for {_describe(key)}: {e}") from e
        return fresh.snapshot()

    async def _fetch(self, key: CacheKey) -> CacheEntry:
        generation = self._generation
        try:
            if self.fetch_timeout:
                products, plans = await asyncio.wait_for(self._load(key), timeout=self.fetch_timeout)
            else:
                products, plans = await self._load(key)
        except Exception:
            catalog_fetch_total.inc({"outcome": "error"})
            raise

        ids = sorted(key) if key is not None else [p.id for p in products]
        # every requested id gets an entry: an empty list means "catalog has no plans"
        plans_by_product: Dict[str, List[PricingPlan]] = {pid: [] for pid in ids}
        for plan in plans:
            plans_by_product.setdefault(plan.product_id, []).append(plan)

        entry = CacheEntry(
            fetched_at=_now(),
            products=products,
            plans_by_product=plans_by_product,
            product_ids=key,
        )
        if generation == self._generation:
            # wholesale replacement, never a merge
            self._entries[key] = entry
        catalog_fetch_total.inc({"outcome": "ok"})
        log_event(
            "info",
            "catalog.fetched",
            extra={"key": _describe(key), "products": len(products), "plans": len(plans)},
        )
        return entry

    async def _load(self, key: CacheKey):
        full = self._entries.get(None)
        if key is not None and full is not None:
            products = list(full.products)
        else:
            products = await self.provider.fetch_products()
        if key is None:
            ids = [p.id for p in products]
        else:
            ids = sorted(key)
            products = [p for p in products if p.id in key]
        plans = await self.provider.fetch_pricing_plans(ids)
        return products, plans

    def lookup_plans(self, product_id: str) -> Optional[PlanLookup]:
        """
        Plans currently cached for a product, without awaiting anything.

        Returns None when the product was never fetched; a background fetch is
        then scheduled and the caller should fall back. Expired data is still
        returned, with a background refresh scheduled.
        """
        candidates = [
            entry for entry in self._entries.values()
            if product_id in entry.plans_by_product
        ]
        if not candidates:
            self.schedule_fetch(product_id)
            return None

        candidates.sort(key=lambda e: (self.is_valid(e), e.fetched_at), reverse=True)
        best = candidates[0]
        if not self.is_valid(best):
            self.schedule_fetch(product_id)
        return PlanLookup(plans=list(best.plans_by_product[product_id]), fetched_at=best.fetched_at)

    def schedule_fetch(self, product_id: str) -> bool:
        """Fetch one product's plans in the background. Returns False if not scheduled."""
        key = _cache_key([product_id])
        if self._inflight.is_pending(key):
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log_event("debug", "catalog.background_fetch.no_loop", product_id=product_id)
            return False
        task = loop.create_task(self._background_get(product_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return True

    async def _background_get(self, product_id: str) -> None:
        try:
            await self.get([product_id])
        except CacheFetchError as e:
            log_event("warning", "catalog.background_fetch.failed", product_id=product_id, error_code=e.code)

    async def wait_for_background(self) -> None:
        """Await scheduled background fetches (startup warmup and tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def find_product(self, product_id: str) -> Optional[Product]:
        snapshot = await self.get()
        return snapshot.product(product_id)

    def invalidate(self) -> None:
        """Force the next get() to refetch. Old data stays available as a failure fallback."""
        for entry in self._entries.values():
            entry.invalidated = True

    def reset(self) -> None:
        """Drop everything (logout / test teardown). In-flight fetches will not be stored."""
        self._generation += 1
        self._entries.clear()
        self._inflight.clear()


def _describe(key: CacheKey) -> str:
    if key is None:
        return "*"
    return ",".join(sorted(key))
