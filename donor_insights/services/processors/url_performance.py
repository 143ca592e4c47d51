"""
Desempenho por página de campanha (URL do produto).

Visitor and checkout counters come from the product record when it has
them. Otherwise they are estimated from completed donations with a
per-product conversion rate of 2-5% and a 3-4x checkout multiplier,
and the entry is flagged ``is_estimated``.
"""

from __future__ import annotations

import random
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from donor_insights.core.logging import engine_logger
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterDimension, FilterSet
from donor_insights.domain.models import ProductCounters
from donor_insights.services.processors.base import ZERO, Breakdown, FilterProcessor, add_to_chart, union_sum


def display_url(permalink: Optional[str]) -> Optional[str]:
    """Host + path of the permalink, without scheme or query string."""
    if not permalink:
        return None
    parts = urlsplit(permalink)
    if parts.netloc and parts.path:
        return parts.netloc + parts.path
    return permalink


def estimate_counters(product_id: int, donations: int) -> tuple[int, int]:
    """(visitantes, checkouts) estimados; mesma semente por produto."""
    rng = random.Random(product_id)
    conversion_rate = rng.randint(20, 50) / 10
    checkout_multiplier = rng.randint(3, 4)
    return round(donations * (100 / conversion_rate)), donations * checkout_multiplier


class UrlPerformanceProcessor(FilterProcessor):
    dimension = FilterDimension.URL

    def process(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        by_product: Dict[int, Dict[str, Any]] = {}
        skipped: set[int] = set()

        for row in self.store.product_rows(date_range, filters):
            if row.product_id <= 0 or row.product_id in skipped:
                continue
            entry = by_product.get(row.product_id)
            if entry is None:
                url = display_url(row.permalink)
                if url is None:
                    skipped.add(row.product_id)
                    continue
                entry = by_product[row.product_id] = {
                    "url": url,
                    "product_id": row.product_id,
                    "product_name": row.product_name,
                    "visitors": 0,
                    "checkout_opened": 0,
                    "donations": 0,
                    "total": ZERO,
                    "chart_data": {},
                    "is_estimated": False,
                }
            entry["donations"] += row.item_count
            entry["total"] += row.total_amount
            add_to_chart(entry["chart_data"], row.day.isoformat(), row.total_amount)

        if skipped:
            engine_logger.debug("Products without permalink left out", products=len(skipped))

        counters = self.store.product_counters(list(by_product)) if by_product else {}
        for product_id, entry in by_product.items():
            self._apply_counters(entry, counters.get(product_id))

        return {entry["url"]: entry for entry in by_product.values()}

    @staticmethod
    def _apply_counters(entry: Dict[str, Any], counters: Optional[ProductCounters]) -> None:
        est_visitors, est_checkouts = estimate_counters(entry["product_id"], entry["donations"])
        view_count = counters.view_count if counters else None
        checkout_count = counters.checkout_count if counters else None

        entry["visitors"] = int(view_count) if view_count else est_visitors
        entry["checkout_opened"] = int(checkout_count) if checkout_count else est_checkouts
        entry["visitors_estimated"] = not view_count
        entry["checkout_estimated"] = not checkout_count
        entry["is_estimated"] = entry["visitors_estimated"] or entry["checkout_estimated"]

        # Checkout aberto nunca é menor que doações concluídas
        if entry["checkout_opened"] < entry["donations"]:
            entry["checkout_opened"] = entry["donations"]

    def merge(self, left: Breakdown, right: Breakdown) -> Breakdown:
        """
        Donations and totals add up across windows. Real counters are
        lifetime values and are kept once; estimates are recomputed from
        the combined donations.
        """
        merged = dict(left)
        for url, entry in right.items():
            if url not in merged:
                merged[url] = entry
                continue
            base = merged[url]
            combined = {
                **base,
                "donations": base["donations"] + entry["donations"],
                "total": base["total"] + entry["total"],
                "chart_data": union_sum(base["chart_data"], entry["chart_data"]),
            }
            counters = ProductCounters(
                product_id=base["product_id"],
                view_count=None if base.get("visitors_estimated", True) else base["visitors"],
                checkout_count=None if base.get("checkout_estimated", True) else base["checkout_opened"],
            )
            self._apply_counters(combined, counters)
            merged[url] = combined
        return merged
