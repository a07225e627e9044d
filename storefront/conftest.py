# storefront/conftest.py
import pytest

from storefront.core.metrics import METRICS
from storefront.features.cart.service import CartStore
from storefront.features.cart.storage import InMemoryCartStorage
from storefront.features.catalog.cache import CatalogCache
from storefront.models.catalog import PricingPlan, Product
from storefront.tests.mocks import CountingCatalogProvider


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-wide; start every test from zero."""
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def products():
    return [
        Product(id="p1", name="Netflix Premium", category="streaming", base_price=1400),
        Product(id="p2", name="Canva Pro", category="design", base_price=1000),
        Product(id="p3", name="ChatGPT Plus", category="ai", base_price=None),
    ]


@pytest.fixture
def plans():
    return [
        PricingPlan(id="plan-1", product_id="p1", plan_tier="shared", monthly_price="₹1,400", yearly_price="₹11,200"),
        PricingPlan(id="plan-2", product_id="p1", plan_tier="private", monthly_price="₹2,600", yearly_price=None),
        PricingPlan(id="plan-3", product_id="p1", plan_tier="semi_private", monthly_price="₹2,000", enabled=False),
        PricingPlan(id="plan-4", product_id="p3", plan_tier="shared", monthly_price="Contact us"),
    ]


@pytest.fixture
def provider(products, plans):
    return CountingCatalogProvider(products, plans)


@pytest.fixture
def catalog(provider):
    return CatalogCache(provider, ttl_seconds=300, fetch_timeout=5)


@pytest.fixture
def storage():
    return InMemoryCartStorage()


@pytest.fixture
def cart(catalog, storage):
    store = CartStore(catalog, storage)
    store.load()
    return store
