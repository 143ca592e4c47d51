"""
Base dos processadores de dimensão.

Each processor turns Order Store rows for one breakdown axis into a
mapping of ``dimension value -> entry``. Processors never re-filter by
date: the store already scoped the rows to the window and the FilterSet.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from donor_insights.core.config import settings
from donor_insights.core.errors import DataError
from donor_insights.core.logging import engine_logger
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterDimension, FilterSet
from donor_insights.domain.stats import median, safe_average
from donor_insights.repositories.protocols import OrderStoreProtocol

ZERO = Decimal(0)

Breakdown = Dict[str, Dict[str, Any]]


def new_entry(**extra: Any) -> Dict[str, Any]:
    """Entrada vazia no formato comum (count/total/medianas/série)."""
    entry: Dict[str, Any] = {
        "count": 0,
        "total": ZERO,
        "onetime_median": [],
        "recurring_median": [],
        "chart_data": {},
    }
    entry.update(extra)
    return entry


def add_to_chart(chart: Dict[str, Any], day_key: str, amount: Decimal) -> None:
    chart[day_key] = chart.get(day_key, ZERO) + amount


def union_sum(left: Dict[str, Any], right: Dict[str, Any]) -> Dict[str, Any]:
    """Soma duas séries por data (datas ausentes contam como zero)."""
    merged = dict(left)
    for key, value in right.items():
        merged[key] = merged.get(key, 0) + value
    return merged


def merge_entries(left: Dict[str, Any], right: Dict[str, Any]) -> Dict[str, Any]:
    """
    Combine two entries for the same dimension value.

    Counts and totals are summed, chart_data is union-summed by date and
    raw median samples are concatenated; scalar metadata (icon, code,
    url...) comes from the left side.
    """
    merged = {**right, **left}
    merged["count"] = left.get("count", 0) + right.get("count", 0)
    merged["total"] = left.get("total", ZERO) + right.get("total", ZERO)
    merged["chart_data"] = union_sum(left.get("chart_data", {}), right.get("chart_data", {}))
    for key in ("onetime_median", "recurring_median", "median"):
        if key in left or key in right:
            merged[key] = list(left.get(key, [])) + list(right.get(key, []))
    if "average" in merged:
        merged["average"] = safe_average(merged["total"], merged["count"])
    if "median_value" in merged:
        merged["median_value"] = median(
            merged.get("onetime_median", []) + merged.get("recurring_median", [])
        )
    return merged


class FilterProcessor:
    """Base class for dimension processors."""

    dimension: FilterDimension = FilterDimension.RAISED

    def __init__(self, store: OrderStoreProtocol, *, subscriptions_enabled: Optional[bool] = None):
        self.store = store
        self.subscriptions_enabled = (
            settings.SUBSCRIPTIONS_ENABLED if subscriptions_enabled is None else subscriptions_enabled
        )

    def process(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        """Build the breakdown for the window."""
        raise NotImplementedError

    def empty(self, date_range: DateRange) -> Breakdown:
        return {}

    def merge(self, left: Breakdown, right: Breakdown) -> Breakdown:
        """Combine breakdowns of two consecutive windows, key by key."""
        merged = dict(left)
        for key, entry in right.items():
            merged[key] = merge_entries(merged[key], entry) if key in merged else entry
        return merged

    def run(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        """
        ``process`` com degradação: uma falha do Order Store nesta dimensão
        vira um breakdown vazio em vez de derrubar o pedido inteiro.
        """
        try:
            return self.process(date_range, filters)
        except DataError as exc:
            engine_logger.error(
                "Filter processor failed, returning empty breakdown",
                exc=exc,
                dimension=self.dimension.value,
                query=exc.query,
                filters=filters.cache_token(),
                **date_range.to_dict(),
            )
            return self.empty(date_range)

    def finalize(self, date_range: DateRange, filters: FilterSet, merged: Breakdown) -> Breakdown:
        """
        Fix up a merged breakdown once over the whole covered range.
        Only needed where per-window values cannot simply be added up.
        """
        return merged

    def finish(self, date_range: DateRange, filters: FilterSet, merged: Breakdown) -> Breakdown:
        """``finalize`` com degradação: em falha, fica a fusão das janelas."""
        try:
            return self.finalize(date_range, filters, merged)
        except DataError as exc:
            engine_logger.error(
                "Could not finalize merged breakdown, keeping per-window merge",
                exc=exc,
                dimension=self.dimension.value,
                query=exc.query,
                **date_range.to_dict(),
            )
            return merged

    # -------------------------------------------------------------------------
    # Helpers comuns
    # -------------------------------------------------------------------------

    def _split_medians(self, entry: Dict[str, Any], amounts: Iterable) -> None:
        """Distribui os valores entre medianas avulsa/recorrente."""
        for row in amounts:
            if row.amount <= 0:
                continue
            if self.subscriptions_enabled and row.recurring:
                entry["recurring_median"].append(row.amount)
            else:
                entry["onetime_median"].append(row.amount)
        entry["median_value"] = median(entry["onetime_median"] + entry["recurring_median"])
