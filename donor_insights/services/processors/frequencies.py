"""
Breakdown por frequência de doação (avulsa x cadência da assinatura).

Windows of up to a week are classified order by order; longer windows
use the store's per-day aggregate, whose median sample is capped per
bucket.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from donor_insights.core.config import settings
from donor_insights.core.logging import engine_logger
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterDimension, FilterSet
from donor_insights.domain.frequency import ONCE, frequency_label
from donor_insights.domain.models import OrderRow
from donor_insights.domain.stats import safe_average
from donor_insights.repositories.protocols import OrderStoreProtocol
from donor_insights.services.processors.base import (
    ZERO,
    Breakdown,
    FilterProcessor,
    add_to_chart,
    merge_entries,
)

BATCH_AFTER_DAYS = 7

_RELATION_ORDER = {"parent": 0, "renewal": 1, None: 2}


def new_bucket() -> Dict[str, Any]:
    return {"count": 0, "total": ZERO, "average": 0, "median": [], "chart_data": {}}


class FrequencyProcessor(FilterProcessor):
    dimension = FilterDimension.FREQUENCIES

    def __init__(
        self,
        store: OrderStoreProtocol,
        *,
        subscriptions_enabled: Optional[bool] = None,
        sample_size: Optional[int] = None,
        scan_limit: Optional[int] = None,
    ):
        super().__init__(store, subscriptions_enabled=subscriptions_enabled)
        self.sample_size = settings.FREQUENCY_MEDIAN_SAMPLE if sample_size is None else sample_size
        self.scan_limit = settings.ORDER_SCAN_LIMIT if scan_limit is None else scan_limit

    def empty(self, date_range: DateRange) -> Breakdown:
        return {ONCE: new_bucket()}

    def _label(self, billing_period: Optional[str], billing_interval: Optional[int]) -> str:
        if not billing_period:
            return ONCE
        return frequency_label(
            billing_period, billing_interval, subscriptions_enabled=self.subscriptions_enabled
        )

    def process(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        if date_range.span_days > BATCH_AFTER_DAYS:
            filter_data = self._process_batch(date_range, filters)
        else:
            filter_data = self._process_orders(date_range, filters)

        if filters.frequency is not None:
            filter_data = {
                label: bucket
                for label, bucket in filter_data.items()
                if label in (ONCE, filters.frequency)
            }

        for label, bucket in filter_data.items():
            engine_logger.debug(
                "Frequency bucket", frequency=label, orders=bucket["count"], total=bucket["total"]
            )
        return filter_data

    # -------------------------------------------------------------------------
    # 1) Pedido a pedido (janelas curtas)
    # -------------------------------------------------------------------------

    def _process_orders(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        filter_data: Breakdown = self.empty(date_range)
        rows = self.store.order_rows(date_range, filters, limit=self.scan_limit)

        links_by_order: Dict[int, list[OrderRow]] = {}
        for row in rows:
            links_by_order.setdefault(row.order_id, []).append(row)
        if self.scan_limit and len(links_by_order) >= self.scan_limit:
            engine_logger.warning(
                "Order scan limit reached, frequency breakdown is truncated",
                limit=self.scan_limit,
                **date_range.to_dict(),
            )

        # Pais antes de renovações, avulsos por último; cada pedido conta uma vez
        ordered = sorted(rows, key=lambda r: (_RELATION_ORDER.get(r.relation, 2), r.order_id))
        processed: set[int] = set()

        for row in ordered:
            if row.order_id in processed:
                continue
            processed.add(row.order_id)

            label = self._label(row.billing_period, row.billing_interval) if row.relation else ONCE
            if filters.frequency is not None and filters.frequency != ONCE:
                # Pedido ligado a várias assinaturas: vale a que bate com o filtro
                if any(
                    self._label(link.billing_period, link.billing_interval) == filters.frequency
                    for link in links_by_order[row.order_id]
                    if link.relation
                ):
                    label = filters.frequency

            bucket = filter_data.setdefault(label, new_bucket())
            bucket["count"] += 1
            bucket["total"] += row.total
            bucket["median"].append(row.total)
            add_to_chart(bucket["chart_data"], row.day.isoformat(), row.total)

        for bucket in filter_data.values():
            bucket["average"] = safe_average(bucket["total"], bucket["count"])
        return filter_data

    # -------------------------------------------------------------------------
    # 2) Agregado do store (janelas longas)
    # -------------------------------------------------------------------------

    def _process_batch(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        filter_data: Breakdown = self.empty(date_range)

        for row in self.store.frequency_aggregates(date_range, filters, sample_size=self.sample_size):
            label = self._label(row.billing_period, row.billing_interval)
            bucket = filter_data.setdefault(label, new_bucket())
            bucket["count"] += row.order_count
            bucket["total"] += row.total_amount
            add_to_chart(bucket["chart_data"], row.day.isoformat(), row.total_amount)
            room = self.sample_size - len(bucket["median"])
            if room > 0:
                bucket["median"].extend(row.amounts[:room])

        for bucket in filter_data.values():
            bucket["average"] = safe_average(bucket["total"], bucket["count"])
            if not bucket["median"] and bucket["count"] > 0:
                bucket["median"] = [bucket["average"]]
        return filter_data

    def merge(self, left: Breakdown, right: Breakdown) -> Breakdown:
        merged = dict(left)
        for label, bucket in right.items():
            if label not in merged:
                merged[label] = bucket
                continue
            combined = merge_entries(merged[label], bucket)
            combined["median"] = combined["median"][: self.sample_size]
            merged[label] = combined
        return merged
