"""
InsightsEngine end to end over the seeded store: standard, optimized and
chunked paths, weekly view, filters, caching and budget aborts.
"""
import itertools
from datetime import date

import pytest

from donor_insights.core.budget import Budget
from donor_insights.core.errors import DataError, ValidationError
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterSet
from donor_insights.domain.models import DailyOrderMetrics
from donor_insights.services.aggregation_service import InsightsEngine
from donor_insights.services.processors import CountryProcessor, CustomerProcessor

from tests.conftest import TODAY, D, build_store

# 2023-03-01 .. 2024-03-31: span de 396 dias, classificado como grande
LARGE_FROM = "2023-03-01"
LARGE_TO = "2024-03-31"


def compute(engine, range_name="last7days", *args, **kwargs):
    kwargs.setdefault("today", TODAY)
    return engine.compute(range_name, *args, **kwargs)


# ────────────────────────────────────────────────────────────────────────────
# Caminho padrão
# ────────────────────────────────────────────────────────────────────────────

class TestStandardPath:
    def test_totals(self, engine):
        result = compute(engine)

        assert result.date_range == DateRange(date(2024, 3, 25), date(2024, 3, 31))
        assert (result.total_count, result.total_amount) == (6, D(235))
        assert (result.installments_count, result.installments_amount) == (2, D(55))
        assert (result.onetime_count, result.onetime_amount) == (4, D(180))
        assert result.new_donors == 3
        assert result.complete

    def test_daily_series_cover_every_day(self, engine):
        result = compute(engine)

        assert result.chart_data == {
            "2024-03-25": D(80),
            "2024-03-26": D(100),
            "2024-03-27": D(20),
            "2024-03-28": D(0),
            "2024-03-29": D(0),
            "2024-03-30": D(25),
            "2024-03-31": D(10),
        }
        assert result.installments_chart["2024-03-25"] == D(30)
        assert result.installments_chart["2024-03-30"] == D(25)
        assert result.onetime_chart["2024-03-30"] == D(0)
        assert list(result.chart_data) == list(result.installments_chart) == list(result.onetime_chart)

    def test_series_add_up_to_totals(self, engine):
        result = compute(engine)

        assert sum(result.chart_data.values()) == result.total_amount
        assert sum(result.installments_chart.values()) == result.installments_amount
        assert sum(result.onetime_chart.values()) == result.onetime_amount
        assert all(v >= 0 for v in result.chart_data.values())

    def test_empty_range_is_a_zero_skeleton(self, engine):
        result = compute(engine, "custom", "2024-01-01", "2024-01-07")

        assert result.total_count == 0
        assert result.total_amount == 0
        assert len(result.chart_data) == 7
        assert not any(result.chart_data.values())

    def test_subscriptions_disabled(self, store, result_cache):
        engine = InsightsEngine(store, cache=result_cache, subscriptions_enabled=False)
        result = compute(engine)

        assert result.installments_count == 0
        assert result.installments_amount == 0
        assert (result.onetime_count, result.onetime_amount) == (6, D(235))

    def test_negative_onetime_is_reported_as_is(self, store, result_cache, monkeypatch):
        monkeypatch.setattr(
            store,
            "subscription_metrics",
            lambda date_range, filters: [
                DailyOrderMetrics(day=date(2024, 3, 25), order_count=10, total_amount=D(1000))
            ],
        )
        result = compute(InsightsEngine(store, cache=result_cache, subscriptions_enabled=True))

        assert result.onetime_amount == D(-765)
        assert result.onetime_count == -4

    def test_rows_outside_the_range_are_ignored(self, store, result_cache, monkeypatch):
        original = store.main_metrics

        def with_stray_row(date_range, filters):
            return original(date_range, filters) + [
                DailyOrderMetrics(day=date(2024, 4, 5), order_count=1, total_amount=D(500))
            ]

        monkeypatch.setattr(store, "main_metrics", with_stray_row)
        result = compute(InsightsEngine(store, cache=result_cache))

        assert result.total_amount == D(235)
        assert "2024-04-05" not in result.chart_data

    def test_to_dict_is_json_ready(self, engine):
        payload = compute(engine).to_dict()

        assert payload["total_amount"] == 235.0
        assert payload["chart_data"]["2024-03-25"] == 80.0
        assert payload["date_range"] == {"start": "2024-03-25", "end": "2024-03-31"}
        assert payload["complete"] is True


# ────────────────────────────────────────────────────────────────────────────
# Visão semanal
# ────────────────────────────────────────────────────────────────────────────

class TestWeeklyView:
    def test_full_week(self, engine):
        result = compute(engine, view_type="weekly")
        assert result.view_type == "weekly"
        assert result.chart_data == {"2024-03-25": D(235)}

    def test_partial_week_keyed_by_first_date(self, engine):
        result = compute(engine, "custom", "2024-03-27", "2024-03-31", view_type="weekly")
        assert result.chart_data == {"2024-03-27": D(55)}
        assert result.installments_chart == {"2024-03-27": D(25)}
        assert result.total_amount == D(55)


# ────────────────────────────────────────────────────────────────────────────
# Filtros
# ────────────────────────────────────────────────────────────────────────────

class TestFilters:
    @pytest.mark.parametrize(
        "filters, count, amount",
        [
            ({"campaign": "10"}, 2, 150),
            ({"designation": "Water"}, 2, 150),
            ({"designation": "Ramadan (Tag)"}, 2, 150),
            ({"designation": "Uncategorized"}, 3, 75),
            ({"source": "newsletter"}, 2, 150),
            ({"frequency": "Once"}, 4, 180),
            ({"frequency": "Monthly"}, 2, 55),
            ({"frequency": "Weekly"}, 1, 25),
        ],
    )
    def test_filtered_totals(self, engine, filters, count, amount):
        result = compute(engine, filter_set=filters)
        assert (result.total_count, result.total_amount) == (count, D(amount))

    def test_order_with_several_matching_items_counts_once(self, engine):
        # pedido 1 tem dois itens da campanha 10
        result = compute(engine, filter_set=FilterSet(campaign=10))
        assert result.chart_data["2024-03-25"] == D(50)

    def test_invalid_filter_value(self, engine):
        with pytest.raises(ValidationError) as exc:
            compute(engine, filter_set={"campaign": "abc"})
        assert exc.value.code == "invalid_filter"


# ────────────────────────────────────────────────────────────────────────────
# Breakdown por aba
# ────────────────────────────────────────────────────────────────────────────

class TestBreakdowns:
    def test_raised_has_no_breakdown(self, engine):
        assert compute(engine).filter_data == {}

    def test_minimal_skips_breakdown(self, engine):
        assert compute(engine, filter_dimension="countries", minimal=True).filter_data == {}

    def test_daytime_tab(self, engine):
        result = engine.compute_tab("last7days", "daytime", today=TODAY)
        assert len(result.filter_data["heatmap"]) == 168
        assert result.view_type == "daily"

    def test_designation_tab_excludes_uncategorized(self, engine):
        result = engine.compute_tab("last7days", "designations", today=TODAY)
        assert list(result.filter_data) == ["Water"]

    def test_processor_failure_keeps_the_totals(self, store, result_cache, monkeypatch):
        def broken(*args, **kwargs):
            raise DataError("Order Store query failed", query="country_rows")

        monkeypatch.setattr(store, "country_rows", broken)
        result = compute(InsightsEngine(store, cache=result_cache), filter_dimension="countries")

        assert result.filter_data == {}
        assert result.total_amount == D(235)

    def test_main_metrics_failure_propagates(self, store, result_cache, monkeypatch):
        def broken(*args, **kwargs):
            raise DataError("Order Store query failed", query="main_metrics")

        monkeypatch.setattr(store, "main_metrics", broken)
        with pytest.raises(DataError):
            compute(InsightsEngine(store, cache=result_cache))

    def test_unknown_range_name(self, engine):
        with pytest.raises(ValidationError) as exc:
            compute(engine, "fortnight")
        assert exc.value.code == "unknown_range"

    def test_unknown_view_type(self, engine):
        with pytest.raises(ValidationError) as exc:
            compute(engine, view_type="monthly")
        assert exc.value.code == "unknown_view"


# ────────────────────────────────────────────────────────────────────────────
# Cache
# ────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def counting_engine(counting_store, result_cache):
    return InsightsEngine(counting_store, cache=result_cache, subscriptions_enabled=True, chunk_days=30)


class TestCaching:
    def test_unfiltered_result_is_served_from_cache(self, counting_engine, counting_store):
        first = compute(counting_engine)
        calls = counting_store.total_calls()

        second = compute(counting_engine)
        assert second is first
        assert counting_store.total_calls() == calls

    def test_views_are_cached_separately(self, counting_engine, counting_store):
        compute(counting_engine)
        calls = counting_store.total_calls()

        weekly = compute(counting_engine, view_type="weekly")
        assert counting_store.total_calls() > calls
        assert weekly.view_type == "weekly"

    def test_filtered_requests_bypass_cache(self, counting_engine, counting_store):
        compute(counting_engine, filter_set={"source": "newsletter"})
        calls = counting_store.total_calls()

        compute(counting_engine, filter_set={"source": "newsletter"})
        assert counting_store.total_calls() > calls

    def test_large_ranges_bypass_cache(self, counting_engine, counting_store):
        compute(counting_engine, "custom", LARGE_FROM, LARGE_TO, budget=Budget.unlimited())
        calls = counting_store.total_calls()

        compute(counting_engine, "custom", LARGE_FROM, LARGE_TO, budget=Budget.unlimited())
        assert counting_store.total_calls() > calls

    def test_invalidate_forces_recompute(self, counting_engine, counting_store):
        compute(counting_engine)
        assert counting_engine.invalidate_cache() == 1
        calls = counting_store.total_calls()

        compute(counting_engine)
        assert counting_store.total_calls() > calls
        assert counting_engine.invalidate_cache() == 1
        assert counting_engine.invalidate_cache() == 0


# ────────────────────────────────────────────────────────────────────────────
# Intervalos grandes
# ────────────────────────────────────────────────────────────────────────────

class TestLargeRanges:
    def test_chunked_equals_single_pass(self, engine):
        chunked = compute(engine, "custom", LARGE_FROM, LARGE_TO,
                          filter_dimension="countries", budget=Budget.unlimited())
        single = compute(engine, "custom", LARGE_FROM, LARGE_TO,
                         filter_dimension="raised", budget=Budget.unlimited())

        assert chunked.complete and single.complete
        assert (chunked.total_count, chunked.total_amount) == (7, D(275))
        assert (chunked.installments_count, chunked.installments_amount) == (3, D(95))
        assert (chunked.onetime_count, chunked.onetime_amount) == (4, D(180))
        assert chunked.new_donors == single.new_donors == 4
        assert chunked.chart_data == single.chart_data
        assert chunked.installments_chart == single.installments_chart
        assert chunked.onetime_chart == single.onetime_chart
        assert len(chunked.chart_data) == DateRange(date(2023, 3, 1), date(2024, 3, 31)).days

    def test_chunked_breakdown_matches_whole_range(self, engine, store):
        chunked = compute(engine, "custom", LARGE_FROM, LARGE_TO,
                          filter_dimension="countries", budget=Budget.unlimited())
        whole = CountryProcessor(store, subscriptions_enabled=True).process(
            DateRange(date(2023, 3, 1), date(2024, 3, 31)), FilterSet()
        )

        assert set(chunked.filter_data) == set(whole)
        for name, entry in whole.items():
            merged = chunked.filter_data[name]
            assert merged["count"] == entry["count"]
            assert merged["total"] == entry["total"]
            assert merged["chart_data"] == entry["chart_data"]
            assert sorted(merged["recurring_median"]) == entry["recurring_median"]
        assert chunked.filter_data["United States (US)"]["count"] == 3

    def test_chunked_customers_count_each_donor_once(self, engine, store):
        chunked = compute(engine, "custom", LARGE_FROM, LARGE_TO,
                          filter_dimension="customers", budget=Budget.unlimited())
        whole = CustomerProcessor(store).process(DateRange(date(2023, 3, 1), date(2024, 3, 31)), FilterSet())

        data = chunked.filter_data
        # b@example.org doa em fevereiro e em março (duas janelas)
        assert data["total_customers"] == whole["total_customers"] == 4
        assert data["new_customers"] == whole["new_customers"] == 4
        assert data["returning_customers"] == whole["returning_customers"] == 0
        assert data["daily"] == whole["daily"]
        assert data["customer_details"] == whole["customer_details"]
        assert data["total_customer_value"] == whole["total_customer_value"]

    def test_donor_active_in_several_windows(self, result_cache):
        orders = [
            {"id": order_id, "created_at": f"2023-{month}-10 10:00:00", "status": "completed",
             "total": "20.00", "customer_email": "f@example.org", "first_name": "Fatima"}
            for order_id, month in ((201, "01"), (202, "06"), (203, "12"))
        ]
        engine = InsightsEngine(build_store(orders=orders), cache=result_cache, chunk_days=30)

        data = compute(engine, "custom", "2023-01-01", "2023-12-31",
                       filter_dimension="customers", budget=Budget.unlimited()).filter_data

        assert (data["total_customers"], data["new_customers"], data["returning_customers"]) == (1, 1, 0)
        assert data["daily"]["2023-01-10"] == {"new": 1, "returning": 0}
        assert data["daily"]["2023-12-10"] == {"new": 0, "returning": 1}
        assert data["customer_details"]["f@example.org"]["total_orders"] == 3
        assert data["customer_details"]["f@example.org"]["total_value"] == D(60)

    def test_year_range_on_optimized_path(self, engine):
        result = compute(engine, "thisyear", filter_dimension="daytime", budget=Budget.unlimited())

        assert result.complete
        assert result.total_amount == D(275)
        assert sum(result.filter_data["heatmap"].values()) == 7

    def test_memory_pressure_returns_partial_result(self, engine):
        pressured = Budget(memory_limit_bytes=1000, threshold=0.8, probe=lambda: 10**6)
        result = compute(engine, "custom", LARGE_FROM, LARGE_TO,
                         filter_dimension="countries", budget=pressured)

        assert not result.complete
        assert result.total_count == 0
        assert len(result.chart_data) == DateRange(date(2023, 3, 1), date(2024, 3, 31)).days
        assert result.filter_data == {}

    def test_optimized_path_continues_under_pressure(self, engine):
        pressured = Budget(memory_limit_bytes=1000, threshold=0.8, probe=lambda: 10**6)
        result = compute(engine, "custom", LARGE_FROM, LARGE_TO,
                         filter_dimension="raised", budget=pressured)

        assert result.complete
        assert result.total_amount == D(275)

    def test_deadline_stops_chunk_loop(self, engine):
        ticks = itertools.count()
        budget = Budget(deadline=2, clock=lambda: next(ticks))
        result = compute(engine, "custom", LARGE_FROM, LARGE_TO,
                         filter_dimension="payment_methods", budget=budget)

        assert not result.complete
        # Só as duas primeiras janelas (março e abril de 2023) foram somadas
        assert result.total_count == 0
        assert result.chart_data["2024-03-25"] == 0

    def test_frequency_breakdown_falls_back_to_empty_on_abort(self, engine):
        pressured = Budget(memory_limit_bytes=1000, threshold=0.8, probe=lambda: 10**6)
        result = compute(engine, "custom", LARGE_FROM, LARGE_TO,
                         filter_dimension="frequencies", budget=pressured)

        assert not result.complete
        assert list(result.filter_data) == ["Once"]
