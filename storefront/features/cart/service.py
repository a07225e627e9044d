"""
storefront/features/cart/service.py

Cart store: the only owner of cart lines.

Handles:
- One line per product (re-adding increments quantity)
- Price re-resolution whenever tier, period or catalog input changes
- Persisting the full line list after every mutation, rehydrating at startup

Mutations are atomic: a failed price resolution leaves the cart exactly as
it was, and the error is returned in the CartMutationResult.
"""

from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from storefront.core.errors import (
    AppError,
    CacheFetchError,
    NotFoundError,
    PricingUnavailable,
    ValidationError,
)
from storefront.core.logging import log_event
from storefront.core.metrics import cart_lines, cart_mutations_total
from storefront.features.cart.storage import CartStorage
from storefront.features.catalog.cache import CatalogCache
from storefront.features.pricing.resolver import (
    PriceResolution,
    PriorPrice,
    available_periods,
    available_tiers,
    prior_for_product,
    resolve_price,
)
from storefront.models.cart import (
    CartLine,
    CartMutationResult,
    PersistedCart,
    PriceSnapshotRef,
    PriceSource,
)
from storefront.models.catalog import Product

PLAN_FIELDS = ("tier", "period")


class CartStore:
    def __init__(self, catalog: CatalogCache, storage: CartStorage):
        self.catalog = catalog
        self.storage = storage
        self._lines: Dict[str, CartLine] = {}

    # ----- reads -----

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def get(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def contains(self, product_id: str) -> bool:
        return product_id in self._lines

    def total(self) -> float:
        return sum(line.subtotal for line in self._lines.values())

    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def tier_options(self, product_id: str) -> List[str]:
        lookup = self.catalog.lookup_plans(product_id)
        return available_tiers(lookup.plans if lookup else None)

    def period_options(self, product_id: str) -> List[str]:
        lookup = self.catalog.lookup_plans(product_id)
        return available_periods(lookup.plans if lookup else None)

    # ----- mutations -----

    async def add_or_update(
        self,
        product_id: str,
        plan_tier: str,
        billing_period: str,
        quantity: int = 1,
        product: Optional[Product] = None,
    ) -> CartMutationResult:
        """
        Add a product, or update the existing line for it.

        An existing line takes the new tier/period, its quantity grows by
        `quantity`, and its price is re-resolved from its previous price.
        A new line is priced from the catalog, else from product.base_price.
        """
        if quantity < 1:
            return self._rejected("add", product_id, ValidationError("Quantity must be at least 1"))

        lookup_error: Optional[CacheFetchError] = None
        if product is None and product_id not in self._lines:
            try:
                product = await self.catalog.find_product(product_id)
            except CacheFetchError as e:
                lookup_error = e

        # state read after the await: another mutation may have added this product meanwhile
        existing = self._lines.get(product_id)
        if existing is not None:
            previous = PriorPrice(
                price=existing.resolved_unit_price,
                plan_tier=existing.plan_tier,
                billing_period=existing.billing_period,
            )
            name = existing.product_name
            new_quantity = existing.quantity + quantity
        else:
            previous = prior_for_product(product)
            name = product.name if product else ""
            new_quantity = quantity

        try:
            line = self._priced_line(product_id, name, new_quantity, plan_tier, billing_period, previous)
        except PricingUnavailable as e:
            return self._rejected("add", product_id, lookup_error or e)

        self._commit("add" if existing is None else "update", line)
        return CartMutationResult(ok=True, line=line)

    def change_plan(self, product_id: str, field: str, value: str) -> CartMutationResult:
        """Change tier or period of a line and re-resolve its price against the current catalog."""
        if field not in PLAN_FIELDS:
            return self._rejected(
                "change_plan", product_id, ValidationError(f"Unknown plan field '{field}', expected tier or period")
            )
        existing = self._lines.get(product_id)
        if existing is None:
            return self._rejected("change_plan", product_id, NotFoundError(f"{product_id} is not in the cart"))

        new_tier = value if field == "tier" else existing.plan_tier
        new_period = value if field == "period" else existing.billing_period
        previous = PriorPrice(
            price=existing.resolved_unit_price,
            plan_tier=existing.plan_tier,
            billing_period=existing.billing_period,
        )
        try:
            line = self._priced_line(
                product_id, existing.product_name, existing.quantity, new_tier, new_period, previous
            )
        except PricingUnavailable as e:
            return self._rejected("change_plan", product_id, e)

        self._commit("change_plan", line)
        return CartMutationResult(ok=True, line=line)

    def set_quantity(self, product_id: str, quantity: int) -> CartMutationResult:
        existing = self._lines.get(product_id)
        if existing is None:
            return self._rejected("set_quantity", product_id, NotFoundError(f"{product_id} is not in the cart"))
        if quantity <= 0:
            return self.remove(product_id)
        line = existing.model_copy(update={"quantity": quantity})
        self._commit("set_quantity", line)
        return CartMutationResult(ok=True, line=line)

    def remove(self, product_id: str) -> CartMutationResult:
        if product_id not in self._lines:
            return self._rejected("remove", product_id, NotFoundError(f"{product_id} is not in the cart"))
        line = self._lines.pop(product_id)
        self._persist()
        cart_mutations_total.inc({"type": "remove"})
        log_event("info", "cart.removed", product_id=product_id)
        return CartMutationResult(ok=True, line=line, removed=True)

    def clear(self) -> None:
        self._lines = {}
        self._persist()
        cart_mutations_total.inc({"type": "clear"})

    # ----- persistence -----

    def load(self) -> int:
        """
        Rehydrate lines from storage.

        Corrupt or unparseable state is discarded and the cart starts empty.

        Returns:
            Number of lines restored
        """
        self._lines = {}
        blob = self.storage.read()
        if blob:
            try:
                persisted = PersistedCart.model_validate_json(blob)
            except (PydanticValidationError, ValueError) as e:
                log_event(
                    "warning",
                    "cart.load.discarded",
                    error_code="cart_corrupt",
                    extra={"key": self.storage.key, "error": e},
                )
                self.storage.delete()
            else:
                self._lines = {line.product_id: line for line in persisted.lines}
        cart_lines.set(len(self._lines))
        return len(self._lines)

    def _persist(self) -> None:
        blob = PersistedCart(lines=self.lines).model_dump_json()
        try:
            self.storage.write(blob)
        except OSError as e:
            # the in-memory cart stays authoritative; next mutation retries the write
            log_event("error", "cart.persist.failed", error_code="cart_persist_failed", extra={"error": e})
        cart_lines.set(len(self._lines))

    # ----- internal -----

    def _priced_line(
        self,
        product_id: str,
        product_name: str,
        quantity: int,
        plan_tier: str,
        billing_period: str,
        previous: Optional[PriorPrice],
    ) -> CartLine:
        lookup = self.catalog.lookup_plans(product_id)
        resolution: PriceResolution = resolve_price(
            product_id,
            plan_tier,
            billing_period,
            lookup.plans if lookup else None,
            previous=previous,
        )
        ref = PriceSnapshotRef(
            source=resolution.source,
            plan_id=resolution.plan_id,
            fetched_at=lookup.fetched_at if lookup and resolution.source is PriceSource.CATALOG else None,
        )
        return CartLine(
            product_id=product_id,
            product_name=product_name,
            quantity=quantity,
            plan_tier=plan_tier,
            billing_period=billing_period,
            resolved_unit_price=resolution.price,
            catalog_snapshot_ref=ref,
        )

    def _commit(self, kind: str, line: CartLine) -> None:
        # replacing the value keeps the line's original position
        self._lines[line.product_id] = line
        self._persist()
        cart_mutations_total.inc({"type": kind})
        log_event(
            "info",
            f"cart.{kind}",
            product_id=line.product_id,
            extra={
                "plan_tier": line.plan_tier,
                "billing_period": line.billing_period,
                "quantity": line.quantity,
                "price": line.resolved_unit_price,
            },
        )

    def _rejected(self, kind: str, product_id: str, error: AppError) -> CartMutationResult:
        cart_mutations_total.inc({"type": f"{kind}_rejected"})
        log_event("warning", f"cart.{kind}.rejected", product_id=product_id, error_code=error.code,
                  extra={"detail": error.message})
        return CartMutationResult(ok=False, error=error)
