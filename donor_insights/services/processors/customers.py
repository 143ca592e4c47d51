"""
Breakdown de doadores: novos x recorrentes e ranking por valor.

The computation is the most expensive of the tabs, so its result is
kept in a short-lived cache of its own, independent of the result cache.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional

from donor_insights.core.cache import TTLCache, dumps_deterministic, make_etag_from_bytes
from donor_insights.core.config import settings
from donor_insights.core.logging import engine_logger
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterDimension, FilterSet
from donor_insights.repositories.protocols import OrderStoreProtocol
from donor_insights.services.processors.base import ZERO, FilterProcessor, union_sum

CACHE_PREFIX = "customers:"


class CustomerProcessor(FilterProcessor):
    dimension = FilterDimension.CUSTOMERS

    def __init__(
        self,
        store: OrderStoreProtocol,
        *,
        subscriptions_enabled: Optional[bool] = None,
        cache: Optional[TTLCache] = None,
        ttl_seconds: Optional[int] = None,
        top_limit: Optional[int] = None,
    ):
        super().__init__(store, subscriptions_enabled=subscriptions_enabled)
        self.cache = cache if cache is not None else TTLCache(max_entries=64)
        self.ttl_seconds = settings.CUSTOMER_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.top_limit = settings.CUSTOMER_TOP_LIMIT if top_limit is None else top_limit

    def empty(self, date_range: DateRange) -> Dict[str, Any]:
        return {
            "total_customers": 0,
            "new_customers": 0,
            "returning_customers": 0,
            "total_customer_value": ZERO,
            "daily": {},
            "customer_details": {},
        }

    def cache_key(self, date_range: DateRange, filters: FilterSet) -> str:
        payload = [date_range.to_dict(), filters.to_dict(), self.top_limit]
        return CACHE_PREFIX + make_etag_from_bytes(dumps_deterministic(payload))

    def process(self, date_range: DateRange, filters: FilterSet) -> Dict[str, Any]:
        key = self.cache_key(date_range, filters)
        cached = self.cache.get(key)
        if cached is not None:
            engine_logger.debug("Customer breakdown served from cache", **date_range.to_dict())
            return copy.deepcopy(cached)

        result = self._compute(date_range, filters)
        self.cache.set(key, copy.deepcopy(result), ttl=self.ttl_seconds)
        return result

    def _compute(self, date_range: DateRange, filters: FilterSet) -> Dict[str, Any]:
        result = self.empty(date_range)
        result["total_customers"] = self.store.customer_count(date_range, filters)

        # ----- 1) Série diária novo x recorrente
        seen: set[str] = set()
        for row in self.store.customer_days(date_range, filters):
            if not row.email:
                continue
            day = result["daily"].setdefault(row.day.isoformat(), {"new": 0, "returning": 0})
            first = row.first_order_date
            if first is not None and first >= date_range.start and row.email not in seen:
                day["new"] += 1
                result["new_customers"] += 1
                seen.add(row.email)
            else:
                day["returning"] += 1

        result["returning_customers"] = result["total_customers"] - result["new_customers"]

        # ----- 2) Ranking dos maiores doadores
        result["customer_details"], result["total_customer_value"] = self._ranking(date_range, filters)
        return result

    def _ranking(self, date_range: DateRange, filters: FilterSet) -> tuple[Dict[str, Any], Any]:
        details: Dict[str, Any] = {}
        total_value = ZERO
        for customer in self.store.customer_summaries(date_range, filters, limit=self.top_limit):
            if not customer.email:
                continue
            details[customer.email] = {
                "name": customer.display_name,
                "first_order_date": customer.first_order_date,
                "last_order_date": customer.last_order_date,
                "total_orders": customer.order_count,
                "total_value": customer.total_value,
            }
            total_value += customer.total_value
        return details, total_value

    def finalize(self, date_range: DateRange, filters: FilterSet, merged: Dict[str, Any]) -> Dict[str, Any]:
        """
        New donors and the daily series add up exactly across windows (a
        donor's first order falls in one window only). Distinct donors and
        the top-N ranking do not, so both are recomputed over the range.
        """
        if not merged:
            return merged
        result = dict(merged)
        result["total_customers"] = self.store.customer_count(date_range, filters)
        result["returning_customers"] = result["total_customers"] - result["new_customers"]
        result["customer_details"], result["total_customer_value"] = self._ranking(date_range, filters)
        return result

    def merge(self, left: Dict[str, Any], right: Dict[str, Any]) -> Dict[str, Any]:
        """
        Combine two windows. Customer counts are summed per window and
        details re-ranked per email; ``finalize`` replaces both with values
        computed over the whole range.
        """
        if not left:
            return right
        if not right:
            return left

        daily = dict(left["daily"])
        for day, counts in right["daily"].items():
            daily[day] = union_sum(daily.get(day, {}), counts)

        details = {email: dict(d) for email, d in left["customer_details"].items()}
        for email, detail in right["customer_details"].items():
            if email not in details:
                details[email] = dict(detail)
                continue
            base = details[email]
            base["total_orders"] += detail["total_orders"]
            base["total_value"] += detail["total_value"]
            base["first_order_date"] = min(
                (d for d in (base["first_order_date"], detail["first_order_date"]) if d), default=None
            )
            base["last_order_date"] = max(
                (d for d in (base["last_order_date"], detail["last_order_date"]) if d), default=None
            )
            base["name"] = base["name"] or detail["name"]

        ranked = sorted(details.items(), key=lambda item: (-item[1]["total_value"], item[0]))
        details = dict(ranked[: self.top_limit])

        new_customers = left["new_customers"] + right["new_customers"]
        total_customers = left["total_customers"] + right["total_customers"]
        return {
            "total_customers": total_customers,
            "new_customers": new_customers,
            "returning_customers": total_customers - new_customers,
            "total_customer_value": sum((d["total_value"] for d in details.values()), ZERO),
            "daily": daily,
            "customer_details": details,
        }
