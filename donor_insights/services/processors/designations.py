"""Breakdown por designação (categoria do produto)."""

from __future__ import annotations

from typing import Optional

from donor_insights.core.config import settings
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import UNCATEGORIZED, FilterDimension, FilterSet
from donor_insights.repositories.protocols import OrderStoreProtocol
from donor_insights.services.processors.base import Breakdown, FilterProcessor, add_to_chart, new_entry


class DesignationProcessor(FilterProcessor):
    """
    Items per category. The store's default category is never a real
    designation: it is dropped by id and by name, and so is any entry
    that ends up with zero items or zero amount.
    """

    dimension = FilterDimension.DESIGNATIONS

    def __init__(
        self,
        store: OrderStoreProtocol,
        *,
        subscriptions_enabled: Optional[bool] = None,
        default_category_id: Optional[int] = None,
    ):
        super().__init__(store, subscriptions_enabled=subscriptions_enabled)
        self.default_category_id = (
            settings.DEFAULT_CATEGORY_ID if default_category_id is None else default_category_id
        )

    def _excluded(self, name: str, term_id: Optional[int]) -> bool:
        if self.default_category_id is not None and term_id == self.default_category_id:
            return True
        return (name or UNCATEGORIZED).strip().lower() == UNCATEGORIZED.lower()

    def process(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        filter_data: Breakdown = {}

        for row in self.store.designation_rows(date_range, filters):
            if self._excluded(row.designation, row.term_id):
                continue
            if row.item_count == 0 or row.total_amount == 0:
                continue

            entry = filter_data.setdefault(row.designation, new_entry())
            entry["count"] += row.item_count
            entry["total"] += row.total_amount
            add_to_chart(entry["chart_data"], row.day.isoformat(), row.total_amount)

        return {
            name: entry
            for name, entry in filter_data.items()
            if entry["count"] > 0 and entry["total"] > 0
        }
