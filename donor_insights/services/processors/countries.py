"""Breakdown por país de cobrança."""

from __future__ import annotations

from donor_insights.core.logging import engine_logger
from donor_insights.domain.countries import country_name
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterDimension, FilterSet
from donor_insights.services.processors.base import Breakdown, FilterProcessor, add_to_chart, new_entry


class CountryProcessor(FilterProcessor):
    dimension = FilterDimension.COUNTRIES

    def process(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        filter_data: Breakdown = {}
        skipped = 0

        for row in self.store.country_rows(date_range, filters):
            code = (row.country_code or "").strip().upper()
            if not code:
                skipped += row.order_count
                continue
            entry = filter_data.setdefault(country_name(code), new_entry(code=code))
            entry["count"] += row.order_count
            entry["total"] += row.total_amount
            add_to_chart(entry["chart_data"], row.day.isoformat(), row.total_amount)

        if skipped:
            engine_logger.debug("Orders without billing country left out", orders=skipped)

        for entry in filter_data.values():
            self._split_medians(
                entry, self.store.country_amounts(date_range, entry["code"], filters)
            )

        return filter_data
