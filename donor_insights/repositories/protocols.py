"""Order Store contract consumed by the aggregation engine and the processors."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterSet
from donor_insights.domain.models import (
    CountryRow,
    CustomerDay,
    CustomerSummary,
    DailyOrderMetrics,
    DaytimeRow,
    DesignationRow,
    FrequencyAggregateRow,
    OrderAmount,
    OrderRow,
    PaymentAmountRow,
    PaymentMethodRow,
    ProductCounters,
    ProductRow,
)


class OrderStoreProtocol(Protocol):
    """
    Read-only queries over completed/processing orders.

    Every method is scoped to the inclusive DateRange and the FilterSet;
    item-level filters are resolved to a distinct order-id set first, so
    one order never counts more than once.
    """

    # Métricas principais

    def main_metrics(self, date_range: DateRange, filters: FilterSet) -> list[DailyOrderMetrics]: ...

    def subscription_metrics(
        self, date_range: DateRange, filters: FilterSet
    ) -> list[DailyOrderMetrics]: ...

    def new_donor_count(self, date_range: DateRange, filters: FilterSet) -> int: ...

    # Dimensões

    def payment_method_rows(
        self, date_range: DateRange, filters: FilterSet
    ) -> list[PaymentMethodRow]: ...

    def payment_amounts(self, date_range: DateRange, filters: FilterSet) -> list[PaymentAmountRow]: ...

    def country_rows(self, date_range: DateRange, filters: FilterSet) -> list[CountryRow]: ...

    def country_amounts(
        self, date_range: DateRange, country_code: str, filters: FilterSet
    ) -> list[OrderAmount]: ...

    def daytime_rows(self, date_range: DateRange, filters: FilterSet) -> list[DaytimeRow]: ...

    def designation_rows(self, date_range: DateRange, filters: FilterSet) -> list[DesignationRow]: ...

    def product_rows(self, date_range: DateRange, filters: FilterSet) -> list[ProductRow]: ...

    def product_counters(self, product_ids: Sequence[int]) -> dict[int, ProductCounters]: ...

    # Frequências

    def order_rows(
        self, date_range: DateRange, filters: FilterSet, limit: Optional[int] = None
    ) -> list[OrderRow]: ...

    def frequency_aggregates(
        self, date_range: DateRange, filters: FilterSet, sample_size: int = 100
    ) -> list[FrequencyAggregateRow]: ...

    # Clientes

    def customer_summaries(
        self, date_range: DateRange, filters: FilterSet, limit: int = 100
    ) -> list[CustomerSummary]: ...

    def customer_days(self, date_range: DateRange, filters: FilterSet) -> list[CustomerDay]: ...

    def customer_count(self, date_range: DateRange, filters: FilterSet) -> int: ...
