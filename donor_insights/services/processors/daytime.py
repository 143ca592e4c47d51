"""
Heatmap dia da semana x hora.

The output is always dense: 7x24 cells keyed ``"<day>-<hour>"`` with
day 0=Monday .. 6=Sunday. For ranges longer than a week each cell is the
sum over every occurrence of that weekday/hour, not a weekly average.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Dict

from donor_insights.core.logging import engine_logger
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterDimension, FilterSet
from donor_insights.services.processors.base import FilterProcessor

ZERO = Decimal(0)
CELLS = [f"{day}-{hour}" for day in range(7) for hour in range(24)]


def aggregated_weeks(days: int) -> int:
    return math.ceil(days / 7) if days > 7 else 1


def store_day_to_monday_index(day_of_week: int) -> int:
    """1=domingo .. 7=sábado -> 0=segunda .. 6=domingo."""
    return (day_of_week + 5) % 7


class DaytimeProcessor(FilterProcessor):
    dimension = FilterDimension.DAYTIME

    def empty(self, date_range: DateRange) -> Dict[str, Any]:
        return {
            "heatmap": {cell: 0 for cell in CELLS},
            "heatmap_amounts": {cell: ZERO for cell in CELLS},
            "date_range_days": date_range.days,
            "aggregated_weeks": aggregated_weeks(date_range.days),
        }

    def process(self, date_range: DateRange, filters: FilterSet) -> Dict[str, Any]:
        result = self.empty(date_range)
        heatmap = result["heatmap"]
        amounts = result["heatmap_amounts"]

        rows = self.store.daytime_rows(date_range, filters)
        if not rows:
            engine_logger.info("No daytime data for range", **date_range.to_dict())
            return result

        for row in rows:
            if not 1 <= row.day_of_week <= 7 or not 0 <= row.hour <= 23:
                engine_logger.warning(
                    "Discarding daytime cell outside the 7x24 grid",
                    day_of_week=row.day_of_week,
                    hour=row.hour,
                    **date_range.to_dict(),
                )
                continue
            cell = f"{store_day_to_monday_index(row.day_of_week)}-{row.hour}"
            heatmap[cell] += row.order_count
            amounts[cell] += row.total_amount

        return result

    def merge(self, left: Dict[str, Any], right: Dict[str, Any]) -> Dict[str, Any]:
        if not left:
            return right
        if not right:
            return left
        days = left.get("date_range_days", 0) + right.get("date_range_days", 0)
        return {
            "heatmap": {c: left["heatmap"].get(c, 0) + right["heatmap"].get(c, 0) for c in CELLS},
            "heatmap_amounts": {
                c: left["heatmap_amounts"].get(c, ZERO) + right["heatmap_amounts"].get(c, ZERO)
                for c in CELLS
            },
            "date_range_days": days,
            "aggregated_weeks": aggregated_weeks(days),
        }
