"""
Dimension processors over the seeded store (week of 2024-03-25).
"""
from datetime import date
from decimal import Decimal

import pytest

from donor_insights.core.cache import TTLCache
from donor_insights.core.errors import DataError
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterSet
from donor_insights.domain.models import DaytimeRow
from donor_insights.services.processors import (
    CountryProcessor,
    CustomerProcessor,
    DaytimeProcessor,
    DesignationProcessor,
    FrequencyProcessor,
    PaymentMethodProcessor,
    UrlPerformanceProcessor,
    normalize_payment_method,
)
from donor_insights.services.processors.daytime import CELLS
from donor_insights.services.processors.url_performance import display_url, estimate_counters

WEEK = DateRange(date(2024, 3, 25), date(2024, 3, 31))
TWO_WEEKS = DateRange(date(2024, 3, 18), date(2024, 3, 31))
NO_FILTERS = FilterSet()


class FailingStore:
    """Every read fails the way a dropped database connection does."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise DataError("Order Store query failed", query=name)

        return fail


# ────────────────────────────────────────────────────────────────────────────
# Formas de pagamento
# ────────────────────────────────────────────────────────────────────────────

class TestNormalizePaymentMethod:
    @pytest.mark.parametrize(
        "method, title, label",
        [
            ("stripe", "Credit Card", "Credit Card"),
            ("stripe", "Apple Pay (Stripe)", "Apple Pay"),
            ("stripe_cc", "Google Pay", "Google Pay"),
            ("ppcp-gateway", "PayPal", "PayPal"),
            ("paypal", "", "PayPal"),
            ("cod", "Cash on delivery", "Cash on Delivery"),
            ("bacs", "Direct bank transfer", "Bank Transfer"),
            ("cheque", "Check payments", "Check"),
            ("apple_pay", "", "Apple Pay"),
            ("woo_wallet", "", "Digital Wallet"),
            ("gocardless", "Direct Debit", "Direct Debit"),
            ("gocardless", "", "Other"),
        ],
    )
    def test_labels(self, method, title, label):
        assert normalize_payment_method(method, title)[0] == label


class TestPaymentMethodProcessor:
    def test_breakdown(self, store):
        data = PaymentMethodProcessor(store, subscriptions_enabled=True).process(WEEK, NO_FILTERS)

        assert set(data) == {"Credit Card", "PayPal", "Apple Pay", "Bank Transfer", "Cash on Delivery"}
        paypal = data["PayPal"]
        assert paypal["count"] == 2
        assert paypal["total"] == Decimal("55")
        assert paypal["icon"] == "paypal"
        assert paypal["chart_data"] == {"2024-03-25": Decimal("30"), "2024-03-30": Decimal("25")}
        assert paypal["recurring_median"] == [Decimal("25"), Decimal("30")]
        assert paypal["onetime_median"] == []
        assert paypal["median_value"] == Decimal("27.5")

        assert data["Credit Card"]["onetime_median"] == [Decimal("50")]
        assert data["Apple Pay"]["total"] == Decimal("100")

    def test_breakdown_totals_match_order_totals(self, store):
        data = PaymentMethodProcessor(store).process(WEEK, NO_FILTERS)
        assert sum(e["count"] for e in data.values()) == 6
        assert sum(e["total"] for e in data.values()) == Decimal("235")

    def test_subscriptions_off_puts_every_amount_in_onetime(self, store):
        data = PaymentMethodProcessor(store, subscriptions_enabled=False).process(WEEK, NO_FILTERS)
        assert data["PayPal"]["recurring_median"] == []
        assert data["PayPal"]["onetime_median"] == [Decimal("25"), Decimal("30")]


# ────────────────────────────────────────────────────────────────────────────
# Países
# ────────────────────────────────────────────────────────────────────────────

class TestCountryProcessor:
    def test_breakdown_by_display_name(self, store):
        data = CountryProcessor(store, subscriptions_enabled=True).process(WEEK, NO_FILTERS)

        assert set(data) == {"United Kingdom (UK)", "United States (US)", "France"}
        uk = data["United Kingdom (UK)"]
        assert (uk["count"], uk["total"], uk["code"]) == (2, Decimal("150"), "GB")
        assert uk["onetime_median"] == [Decimal("50"), Decimal("100")]
        assert uk["median_value"] == Decimal("75")
        assert data["United States (US)"]["recurring_median"] == [Decimal("25"), Decimal("30")]

    def test_orders_without_country_are_left_out(self, store):
        data = CountryProcessor(store).process(WEEK, NO_FILTERS)
        assert sum(e["count"] for e in data.values()) == 5


# ────────────────────────────────────────────────────────────────────────────
# Dia/hora
# ────────────────────────────────────────────────────────────────────────────

class StubDaytimeStore:
    def __init__(self, rows):
        self.rows = rows

    def daytime_rows(self, date_range, filters):
        return self.rows


class TestDaytimeProcessor:
    def test_heatmap_is_dense_and_monday_based(self, store):
        data = DaytimeProcessor(store).process(WEEK, NO_FILTERS)

        assert len(data["heatmap"]) == 168
        assert set(data["heatmap"]) == set(CELLS)
        assert data["heatmap"]["0-9"] == 1
        assert data["heatmap"]["0-14"] == 1
        assert data["heatmap"]["1-9"] == 1
        assert data["heatmap"]["2-20"] == 1
        assert data["heatmap"]["5-11"] == 1
        assert data["heatmap"]["6-23"] == 1
        assert data["heatmap_amounts"]["1-9"] == Decimal("100")
        assert sum(data["heatmap"].values()) == 6
        assert data["date_range_days"] == 7
        assert data["aggregated_weeks"] == 1

    def test_cells_outside_grid_are_dropped(self):
        rows = [
            DaytimeRow(day_of_week=2, hour=10, order_count=3, total_amount=Decimal("30")),
            DaytimeRow(day_of_week=8, hour=10, order_count=1, total_amount=Decimal("5")),
            DaytimeRow(day_of_week=1, hour=24, order_count=1, total_amount=Decimal("5")),
        ]
        data = DaytimeProcessor(StubDaytimeStore(rows)).process(WEEK, NO_FILTERS)
        assert sum(data["heatmap"].values()) == 3
        assert data["heatmap"]["0-10"] == 3

    def test_empty_store_still_returns_full_grid(self):
        data = DaytimeProcessor(StubDaytimeStore([])).process(TWO_WEEKS, NO_FILTERS)
        assert len(data["heatmap"]) == 168
        assert not any(data["heatmap"].values())
        assert data["aggregated_weeks"] == 2


# ────────────────────────────────────────────────────────────────────────────
# Designações
# ────────────────────────────────────────────────────────────────────────────

class TestDesignationProcessor:
    def test_counts_items_and_skips_uncategorized(self, store):
        data = DesignationProcessor(store).process(WEEK, NO_FILTERS)

        assert set(data) == {"Water"}
        assert data["Water"]["count"] == 3
        assert data["Water"]["total"] == Decimal("110")
        assert data["Water"]["chart_data"] == {"2024-03-25": Decimal("50"), "2024-03-26": Decimal("60")}

    def test_default_category_is_excluded_by_id(self, store):
        data = DesignationProcessor(store, default_category_id=1).process(WEEK, NO_FILTERS)
        assert data == {}

    def test_campaign_filter_limits_items(self, store):
        data = DesignationProcessor(store).process(WEEK, FilterSet(campaign=20))
        assert data == {}


# ────────────────────────────────────────────────────────────────────────────
# URLs
# ────────────────────────────────────────────────────────────────────────────

class TestUrlPerformance:
    def test_display_url_drops_scheme_and_query(self):
        assert display_url("https://example.org/appeal/water-well/?utm_source=x") == "example.org/appeal/water-well/"
        assert display_url(None) is None

    def test_estimates_are_stable_per_product(self):
        assert estimate_counters(20, 3) == estimate_counters(20, 3)
        visitors, checkouts = estimate_counters(20, 3)
        assert 60 <= visitors <= 150
        assert checkouts in (9, 12)

    def test_real_and_estimated_counters(self, store):
        data = UrlPerformanceProcessor(store).process(WEEK, NO_FILTERS)

        assert set(data) == {"example.org/appeal/water-well/", "example.org/appeal/orphans/"}

        water = data["example.org/appeal/water-well/"]
        assert water["donations"] == 3
        assert water["total"] == Decimal("110")
        assert (water["visitors"], water["checkout_opened"]) == (500, 40)
        assert water["is_estimated"] is False

        orphans = data["example.org/appeal/orphans/"]
        assert orphans["donations"] == 3
        assert orphans["is_estimated"] is True
        assert orphans["visitors_estimated"] and orphans["checkout_estimated"]
        assert orphans["checkout_opened"] >= orphans["donations"]

    def test_merge_keeps_real_counters(self, store):
        processor = UrlPerformanceProcessor(store)
        first = processor.process(DateRange(date(2024, 3, 25), date(2024, 3, 25)), NO_FILTERS)
        second = processor.process(DateRange(date(2024, 3, 26), date(2024, 3, 31)), NO_FILTERS)
        merged = processor.merge(first, second)

        water = merged["example.org/appeal/water-well/"]
        assert water["donations"] == 3
        assert water["visitors"] == 500
        orphans = merged["example.org/appeal/orphans/"]
        assert (orphans["visitors"], orphans["checkout_opened"]) == tuple(estimate_counters(20, 3))


# ────────────────────────────────────────────────────────────────────────────
# Frequências
# ────────────────────────────────────────────────────────────────────────────

class TestFrequencyProcessor:
    def test_short_window_classifies_each_order_once(self, store):
        data = FrequencyProcessor(store, subscriptions_enabled=True).process(WEEK, NO_FILTERS)

        assert set(data) == {"Once", "Monthly", "Weekly"}
        assert (data["Once"]["count"], data["Once"]["total"]) == (4, Decimal("180"))
        assert (data["Monthly"]["count"], data["Monthly"]["total"]) == (1, Decimal("30"))
        assert (data["Weekly"]["count"], data["Weekly"]["total"]) == (1, Decimal("25"))
        assert sum(b["count"] for b in data.values()) == 6
        assert data["Once"]["average"] == Decimal("45")

    def test_long_window_uses_store_aggregate(self, store):
        data = FrequencyProcessor(store, subscriptions_enabled=True).process(TWO_WEEKS, NO_FILTERS)

        assert (data["Once"]["count"], data["Once"]["total"]) == (4, Decimal("180"))
        assert data["Once"]["median"] == [Decimal("50"), Decimal("100"), Decimal("20"), Decimal("10")]
        assert data["Weekly"]["count"] == 1
        assert data["Monthly"]["count"] == 1

    def test_median_sample_is_capped(self, store):
        data = FrequencyProcessor(store, subscriptions_enabled=True, sample_size=2).process(TWO_WEEKS, NO_FILTERS)
        assert len(data["Once"]["median"]) == 2
        assert data["Once"]["count"] == 4

    def test_frequency_filter_claims_multi_linked_orders(self, store):
        data = FrequencyProcessor(store, subscriptions_enabled=True).process(WEEK, FilterSet(frequency="Monthly"))

        assert set(data) == {"Once", "Monthly"}
        assert (data["Monthly"]["count"], data["Monthly"]["total"]) == (2, Decimal("55"))
        assert data["Once"]["count"] == 0

    def test_frequency_filter_claims_multi_linked_orders_in_batch_windows(self, store):
        """Order 6 renews a monthly plan and is the parent of a weekly one."""
        processor = FrequencyProcessor(store, subscriptions_enabled=True)

        batch = processor.process(TWO_WEEKS, FilterSet(frequency="Monthly"))
        per_order = processor.process(WEEK, FilterSet(frequency="Monthly"))

        assert (batch["Monthly"]["count"], batch["Monthly"]["total"]) == (2, Decimal("55"))
        assert batch["Monthly"]["count"] == per_order["Monthly"]["count"]
        assert batch["Once"]["count"] == 0

    def test_subscriptions_off_is_all_once(self, store):
        data = FrequencyProcessor(store, subscriptions_enabled=False).process(WEEK, NO_FILTERS)
        assert set(data) == {"Once"}
        assert data["Once"]["count"] == 6

    def test_empty_range(self, store):
        empty_week = DateRange(date(2024, 1, 1), date(2024, 1, 7))
        data = FrequencyProcessor(store).process(empty_week, NO_FILTERS)
        assert data == {"Once": {"count": 0, "total": Decimal(0), "average": 0, "median": [], "chart_data": {}}}


# ────────────────────────────────────────────────────────────────────────────
# Doadores
# ────────────────────────────────────────────────────────────────────────────

class TestCustomerProcessor:
    def test_new_and_returning(self, store):
        data = CustomerProcessor(store, cache=TTLCache()).process(WEEK, NO_FILTERS)

        assert data["total_customers"] == 4
        assert data["new_customers"] == 3
        assert data["returning_customers"] == 1
        assert data["daily"]["2024-03-25"] == {"new": 1, "returning": 1}
        assert data["daily"]["2024-03-26"] == {"new": 0, "returning": 1}
        assert data["daily"]["2024-03-31"] == {"new": 1, "returning": 0}

    def test_customer_details(self, store):
        data = CustomerProcessor(store, cache=TTLCache()).process(WEEK, NO_FILTERS)

        details = data["customer_details"]
        assert list(details) == ["a@example.org", "b@example.org", "c@example.org", "e@example.org"]
        assert details["b@example.org"] == {
            "name": "Bruno Costa",
            "first_order_date": date(2024, 2, 10),
            "last_order_date": date(2024, 3, 30),
            "total_orders": 2,
            "total_value": Decimal("55"),
        }
        assert data["total_customer_value"] == Decimal("235")

    def test_top_limit(self, store):
        data = CustomerProcessor(store, cache=TTLCache(), top_limit=1).process(WEEK, NO_FILTERS)
        assert list(data["customer_details"]) == ["a@example.org"]
        assert data["total_customer_value"] == Decimal("150")

    def test_result_is_cached_and_isolated(self, counting_store):
        processor = CustomerProcessor(counting_store, cache=TTLCache())
        first = processor.process(WEEK, NO_FILTERS)
        calls = counting_store.total_calls()

        first["total_customers"] = 999
        second = processor.process(WEEK, NO_FILTERS)

        assert counting_store.total_calls() == calls
        assert second["total_customers"] == 4


# ────────────────────────────────────────────────────────────────────────────
# Degradação
# ────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "processor_cls, expected",
    [
        (PaymentMethodProcessor, {}),
        (CountryProcessor, {}),
        (DesignationProcessor, {}),
        (UrlPerformanceProcessor, {}),
    ],
)
def test_store_failure_degrades_to_empty_breakdown(processor_cls, expected):
    assert processor_cls(FailingStore()).run(WEEK, NO_FILTERS) == expected


def test_daytime_failure_degrades_to_empty_grid():
    data = DaytimeProcessor(FailingStore()).run(WEEK, NO_FILTERS)
    assert len(data["heatmap"]) == 168
    assert not any(data["heatmap"].values())


def test_frequency_failure_degrades_to_once_bucket():
    data = FrequencyProcessor(FailingStore()).run(WEEK, NO_FILTERS)
    assert list(data) == ["Once"]
