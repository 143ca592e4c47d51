"""
Shared fixtures: a small donation store seeded with realistic orders.

Week of 2024-03-25 (Mon) .. 2024-03-31 (Sun), plus one historical order
in February so that donor b@example.org is a returning donor.
"""
from datetime import date
from decimal import Decimal

import pytest

from donor_insights.core.cache import ResultCache, TTLCache
from donor_insights.repositories.frame_store import FrameOrderStore
from donor_insights.services.aggregation_service import InsightsEngine

TODAY = date(2024, 3, 31)


def _order(order_id, created_at, total, email, country, method, title, *, status="completed",
           source=None, first="", last=""):
    return {
        "id": order_id,
        "created_at": created_at,
        "status": status,
        "total": total,
        "customer_email": email,
        "first_name": first,
        "last_name": last,
        "billing_country": country,
        "payment_method": method,
        "payment_method_title": title,
        "utm_source": source,
    }


ORDERS = [
    _order(1, "2024-03-25 09:15:00", "50.00", "a@example.org", "GB", "stripe", "Credit Card",
           source="newsletter", first="Ana", last="Silva"),
    _order(2, "2024-03-25 14:00:00", "30.00", "b@example.org", "US", "ppcp-gateway", "PayPal",
           source="facebook", first="Bruno", last="Costa"),
    _order(3, "2024-03-26 09:40:00", "100.00", "a@example.org", "GB", "stripe", "Apple Pay (Stripe)",
           status="processing", source="newsletter", first="Ana", last="Silva"),
    _order(4, "2024-03-27 20:05:00", "20.00", "c@example.org", "FR", "bacs", "Direct bank transfer",
           first="Chloé", last="Martin"),
    _order(5, "2024-03-28 10:00:00", "999.00", "d@example.org", "US", "stripe", "Credit Card",
           status="cancelled"),
    _order(6, "2024-03-30 11:30:00", "25.00", "b@example.org", "US", "ppcp-gateway", "PayPal",
           first="Bruno", last="Costa"),
    _order(7, "2024-02-10 10:00:00", "40.00", "b@example.org", "US", "ppcp-gateway", "PayPal",
           first="Bruno", last="Costa"),
    _order(8, "2024-03-31 23:30:00", "10.00", "e@example.org", "", "cod", "Cash on delivery"),
]

ORDER_ITEMS = [
    {"id": 101, "order_id": 1, "product_id": 10, "line_total": "30.00"},
    {"id": 102, "order_id": 1, "product_id": 10, "line_total": "20.00"},
    {"id": 103, "order_id": 2, "product_id": 20, "line_total": "30.00"},
    {"id": 104, "order_id": 3, "product_id": 10, "line_total": "60.00"},
    {"id": 105, "order_id": 3, "product_id": 30, "line_total": "40.00"},
    {"id": 106, "order_id": 4, "product_id": 20, "line_total": "20.00"},
    {"id": 107, "order_id": 6, "product_id": 20, "line_total": "25.00"},
    {"id": 108, "order_id": 7, "product_id": 20, "line_total": "40.00"},
    {"id": 109, "order_id": 8, "product_id": 30, "line_total": "10.00"},
    {"id": 110, "order_id": 5, "product_id": 10, "line_total": "999.00"},
]

PRODUCTS = [
    {"id": 10, "name": "Water Well Appeal", "parent_id": None,
     "permalink": "https://example.org/appeal/water-well/?utm_source=x",
     "view_count": 500, "checkout_count": 40},
    {"id": 20, "name": "Orphan Sponsorship", "parent_id": None,
     "permalink": "https://example.org/appeal/orphans/", "view_count": None, "checkout_count": None},
    {"id": 30, "name": "General Fund", "parent_id": None, "permalink": None,
     "view_count": None, "checkout_count": None},
]

TERMS = [
    {"id": 1, "name": "Water", "taxonomy": "product_cat"},
    {"id": 2, "name": "Uncategorized", "taxonomy": "product_cat"},
    {"id": 3, "name": "Ramadan", "taxonomy": "product_tag"},
]

PRODUCT_TERMS = [
    {"product_id": 10, "term_id": 1},
    {"product_id": 10, "term_id": 3},
    {"product_id": 30, "term_id": 2},
]

SUBSCRIPTIONS = [
    {"id": 900, "parent_order_id": 2, "billing_period": "month", "billing_interval": 1},
    {"id": 901, "parent_order_id": 7, "billing_period": "year", "billing_interval": 1},
    {"id": 902, "parent_order_id": 6, "billing_period": "week", "billing_interval": 1},
]

SUBSCRIPTION_RENEWALS = [
    {"order_id": 6, "subscription_id": 900},
]


def build_store(orders=ORDERS, **overrides) -> FrameOrderStore:
    tables = {
        "order_items": ORDER_ITEMS,
        "products": PRODUCTS,
        "terms": TERMS,
        "product_terms": PRODUCT_TERMS,
        "subscriptions": SUBSCRIPTIONS,
        "subscription_renewals": SUBSCRIPTION_RENEWALS,
    }
    tables.update(overrides)
    return FrameOrderStore.from_records(orders, **tables)


class CountingStore:
    """Wraps a store and counts every call per method."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = {}

    def __getattr__(self, name):
        target = getattr(self.inner, name)
        if not callable(target):
            return target

        def counted(*args, **kwargs):
            self.calls[name] = self.calls.get(name, 0) + 1
            return target(*args, **kwargs)

        return counted

    def total_calls(self) -> int:
        return sum(self.calls.values())


@pytest.fixture
def store():
    return build_store()


@pytest.fixture
def counting_store(store):
    return CountingStore(store)


@pytest.fixture
def result_cache():
    return ResultCache(TTLCache(), ttl_seconds=3600, enabled=True, schema_version="test")


@pytest.fixture
def engine(store, result_cache):
    return InsightsEngine(store, cache=result_cache, subscriptions_enabled=True, chunk_days=30)


@pytest.fixture
def today():
    return TODAY


def D(value) -> Decimal:
    return Decimal(str(value))
