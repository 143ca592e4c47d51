"""
Order Store em memória sobre DataFrames do pandas.

Mesmo contrato do SqlOrderStore, usado em testes e em análises offline
sobre exportações (CSV/Parquet) das tabelas de pedidos.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

import pandas as pd

from donor_insights.core.logging import store_logger
from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import UNCATEGORIZED, FilterSet
from donor_insights.domain.frequency import parse_frequency_label
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
from donor_insights.domain.stats import to_decimal

PAID_STATUSES = ("completed", "processing")

ORDER_COLUMNS = [
    "id",
    "created_at",
    "status",
    "total",
    "customer_email",
    "first_name",
    "last_name",
    "billing_country",
    "payment_method",
    "payment_method_title",
    "utm_source",
]
ITEM_COLUMNS = ["id", "order_id", "product_id", "line_total"]
PRODUCT_COLUMNS = ["id", "name", "parent_id", "permalink", "view_count", "checkout_count"]
TERM_COLUMNS = ["id", "name", "taxonomy"]
PRODUCT_TERM_COLUMNS = ["product_id", "term_id"]
SUBSCRIPTION_COLUMNS = ["id", "parent_order_id", "billing_period", "billing_interval"]
RENEWAL_COLUMNS = ["order_id", "subscription_id"]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _frame(data: Any, columns: list[str]) -> pd.DataFrame:
    frame = pd.DataFrame(columns=columns) if data is None else pd.DataFrame(data).copy()
    for column in columns:
        if column not in frame.columns:
            frame[column] = None
    return frame


def _ints(frame: pd.DataFrame, *columns: str) -> pd.DataFrame:
    for column in columns:
        frame[column] = frame[column].astype("int64")
    return frame


def _to_cents(value: Any) -> int:
    return int((to_decimal(value) * 100).quantize(Decimal(1)))


def _from_cents(cents: Any) -> Decimal:
    return Decimal(int(cents)) / 100


def _optional(value: Any) -> Any:
    return None if value is None or pd.isna(value) else value


def _optional_int(value: Any) -> Optional[int]:
    value = _optional(value)
    return None if value is None else int(value)


def _as_date(value: Any) -> Optional[date]:
    value = _optional(value)
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        return value.date()
    return value


class FrameOrderStore:
    """
    Order Store backed by one DataFrame per table.

    Amounts are kept as integer cents internally and returned as Decimal,
    so sums never drift.
    """

    def __init__(
        self,
        orders: Any,
        order_items: Any = None,
        products: Any = None,
        terms: Any = None,
        product_terms: Any = None,
        subscriptions: Any = None,
        subscription_renewals: Any = None,
    ):
        # ----- 1) Pedidos
        self.orders = _ints(_frame(orders, ORDER_COLUMNS), "id")
        self.orders["created_at"] = pd.to_datetime(self.orders["created_at"])
        self.orders["day"] = self.orders["created_at"].dt.date
        self.orders["cents"] = self.orders["total"].map(_to_cents).astype("int64")
        for column in (
            "customer_email",
            "first_name",
            "last_name",
            "billing_country",
            "payment_method",
            "payment_method_title",
        ):
            self.orders[column] = self.orders[column].fillna("").astype(str)

        # ----- 2) Itens, produtos e taxonomia
        self.order_items = _ints(_frame(order_items, ITEM_COLUMNS), "id", "order_id", "product_id")
        self.order_items["cents"] = self.order_items["line_total"].map(_to_cents).astype("int64")
        self.products = _ints(_frame(products, PRODUCT_COLUMNS), "id")
        self.terms = _ints(_frame(terms, TERM_COLUMNS), "id")
        self.product_terms = _ints(_frame(product_terms, PRODUCT_TERM_COLUMNS), "product_id", "term_id")

        # ----- 3) Assinaturas (uma linha por ligação pedido -> assinatura)
        subs = _frame(subscriptions, SUBSCRIPTION_COLUMNS)
        renewals = _ints(_frame(subscription_renewals, RENEWAL_COLUMNS), "order_id", "subscription_id")
        parents = subs[subs["parent_order_id"].notna()].assign(relation="parent")
        parents = parents.rename(columns={"parent_order_id": "order_id"})
        renewal_links = renewals.merge(
            _ints(subs.copy(), "id"), left_on="subscription_id", right_on="id", how="inner"
        ).assign(relation="renewal")
        link_columns = ["order_id", "billing_period", "billing_interval", "relation"]
        self.links = _ints(
            pd.concat([parents[link_columns], renewal_links[link_columns]], ignore_index=True),
            "order_id",
        )

        store_logger.debug(
            "Frame store loaded",
            orders=len(self.orders),
            order_items=len(self.order_items),
            subscription_links=len(self.links),
        )

    @classmethod
    def from_records(
        cls,
        orders: Iterable[dict],
        *,
        order_items: Iterable[dict] = (),
        products: Iterable[dict] = (),
        terms: Iterable[dict] = (),
        product_terms: Iterable[dict] = (),
        subscriptions: Iterable[dict] = (),
        subscription_renewals: Iterable[dict] = (),
    ) -> "FrameOrderStore":
        def rows(records: Iterable[dict]) -> Optional[list[dict]]:
            records = list(records)
            return records or None

        return cls(
            rows(orders),
            order_items=rows(order_items),
            products=rows(products),
            terms=rows(terms),
            product_terms=rows(product_terms),
            subscriptions=rows(subscriptions),
            subscription_renewals=rows(subscription_renewals),
        )

    # -------------------------------------------------------------------------
    # Escopo (status, datas e filtros)
    # -------------------------------------------------------------------------

    def _term_products(self, taxonomy: str, name: Optional[str] = None) -> pd.Series:
        terms = self.terms[self.terms["taxonomy"] == taxonomy]
        if name is not None:
            terms = terms[terms["name"] == name]
        return self.product_terms[self.product_terms["term_id"].isin(terms["id"])]["product_id"]

    def _item_order_ids(self, filters: FilterSet) -> set[int]:
        items = self.order_items
        if filters.campaign is not None:
            items = items[items["product_id"] == filters.campaign]
        if filters.designation == UNCATEGORIZED:
            items = items[~items["product_id"].isin(self._term_products("product_cat"))]
        elif filters.designation is not None:
            taxonomy, name = filters.designation_term()
            items = items[items["product_id"].isin(self._term_products(taxonomy, name))]
        return set(items["order_id"])

    def _matching_orders(self, date_range: DateRange, filters: FilterSet) -> pd.DataFrame:
        """Paid orders in the range that satisfy every filter, one row per order."""
        o = self.orders
        mask = (
            o["status"].isin(PAID_STATUSES)
            & (o["created_at"] >= date_range.start_datetime)
            & (o["created_at"] <= date_range.end_datetime)
        )
        if filters.has_item_filter:
            mask &= o["id"].isin(self._item_order_ids(filters))
        if filters.source is not None:
            mask &= o["utm_source"] == filters.source
        if filters.frequency is not None:
            cadence = parse_frequency_label(filters.frequency)
            if cadence is None:
                mask &= ~o["id"].isin(self.links["order_id"])
            else:
                period, interval = cadence
                linked = self.links[
                    (self.links["billing_period"] == period)
                    & (self.links["billing_interval"].astype(float) == interval)
                ]
                mask &= o["id"].isin(linked["order_id"])
        return o[mask]

    def _linked(self, orders: pd.DataFrame) -> pd.Series:
        return orders["id"].isin(self.links["order_id"])

    def _customer_history(self) -> pd.DataFrame:
        paid = self.orders[self.orders["status"].isin(PAID_STATUSES) & (self.orders["customer_email"] != "")]
        return paid.groupby("customer_email").agg(
            first_order=("created_at", "min"), last_order=("created_at", "max")
        )

    @staticmethod
    def _daily(orders: pd.DataFrame) -> list[DailyOrderMetrics]:
        if orders.empty:
            return []
        grouped = (
            orders.groupby("day")
            .agg(order_count=("id", "nunique"), cents=("cents", "sum"))
            .reset_index()
            .sort_values("day")
        )
        return [
            DailyOrderMetrics(day=row.day, order_count=int(row.order_count), total_amount=_from_cents(row.cents))
            for row in grouped.itertuples(index=False)
        ]

    # -------------------------------------------------------------------------
    # Métricas principais
    # -------------------------------------------------------------------------

    def main_metrics(self, date_range: DateRange, filters: FilterSet) -> list[DailyOrderMetrics]:
        return self._daily(self._matching_orders(date_range, filters))

    def subscription_metrics(self, date_range: DateRange, filters: FilterSet) -> list[DailyOrderMetrics]:
        orders = self._matching_orders(date_range, filters)
        return self._daily(orders[self._linked(orders)])

    def new_donor_count(self, date_range: DateRange, filters: FilterSet) -> int:
        orders = self._matching_orders(date_range, filters)
        emails = set(orders.loc[orders["customer_email"] != "", "customer_email"])
        if not emails:
            return 0
        firsts = self._customer_history()["first_order"]
        firsts = firsts[firsts.index.isin(emails)]
        in_range = (firsts >= date_range.start_datetime) & (firsts <= date_range.end_datetime)
        return int(in_range.sum())

    # -------------------------------------------------------------------------
    # Formas de pagamento e países
    # -------------------------------------------------------------------------

    def payment_method_rows(self, date_range: DateRange, filters: FilterSet) -> list[PaymentMethodRow]:
        orders = self._matching_orders(date_range, filters)
        if orders.empty:
            return []
        grouped = (
            orders.groupby(["payment_method", "payment_method_title", "day"])
            .agg(order_count=("id", "nunique"), cents=("cents", "sum"))
            .reset_index()
            .sort_values("day")
        )
        return [
            PaymentMethodRow(
                payment_method=row.payment_method,
                payment_title=row.payment_method_title,
                day=row.day,
                order_count=int(row.order_count),
                total_amount=_from_cents(row.cents),
            )
            for row in grouped.itertuples(index=False)
        ]

    def payment_amounts(self, date_range: DateRange, filters: FilterSet) -> list[PaymentAmountRow]:
        orders = self._matching_orders(date_range, filters)
        orders = orders[orders["cents"] > 0].assign(recurring=self._linked(orders)).sort_values("cents")
        return [
            PaymentAmountRow(
                payment_method=row.payment_method,
                payment_title=row.payment_method_title,
                amount=_from_cents(row.cents),
                recurring=bool(row.recurring),
            )
            for row in orders.itertuples(index=False)
        ]

    def country_rows(self, date_range: DateRange, filters: FilterSet) -> list[CountryRow]:
        orders = self._matching_orders(date_range, filters)
        if orders.empty:
            return []
        grouped = (
            orders.groupby(["billing_country", "day"])
            .agg(order_count=("id", "nunique"), cents=("cents", "sum"))
            .reset_index()
            .sort_values("day")
        )
        return [
            CountryRow(
                country_code=row.billing_country,
                day=row.day,
                order_count=int(row.order_count),
                total_amount=_from_cents(row.cents),
            )
            for row in grouped.itertuples(index=False)
        ]

    def country_amounts(self, date_range: DateRange, country_code: str, filters: FilterSet) -> list[OrderAmount]:
        orders = self._matching_orders(date_range, filters)
        orders = orders[(orders["billing_country"] == country_code) & (orders["cents"] > 0)]
        orders = orders.assign(recurring=self._linked(orders)).sort_values("cents")
        return [
            OrderAmount(amount=_from_cents(row.cents), recurring=bool(row.recurring))
            for row in orders.itertuples(index=False)
        ]

    # -------------------------------------------------------------------------
    # Dia/hora
    # -------------------------------------------------------------------------

    def daytime_rows(self, date_range: DateRange, filters: FilterSet) -> list[DaytimeRow]:
        orders = self._matching_orders(date_range, filters)
        if orders.empty:
            return []
        # weekday() 0=segunda -> 1=domingo .. 7=sábado
        orders = orders.assign(
            day_of_week=(orders["created_at"].dt.weekday + 1) % 7 + 1,
            hour=orders["created_at"].dt.hour,
        )
        grouped = (
            orders.groupby(["day_of_week", "hour"])
            .agg(order_count=("id", "nunique"), cents=("cents", "sum"))
            .reset_index()
        )
        return [
            DaytimeRow(
                day_of_week=int(row.day_of_week),
                hour=int(row.hour),
                order_count=int(row.order_count),
                total_amount=_from_cents(row.cents),
            )
            for row in grouped.itertuples(index=False)
        ]

    # -------------------------------------------------------------------------
    # Categorias e produtos
    # -------------------------------------------------------------------------

    def _items_of(self, orders: pd.DataFrame) -> pd.DataFrame:
        items = self.order_items[self.order_items["order_id"].isin(orders["id"])]
        items = items.rename(columns={"id": "item_id"})
        return items.merge(
            orders[["id", "day"]].rename(columns={"id": "order_id"}), on="order_id", how="inner"
        )

    def designation_rows(self, date_range: DateRange, filters: FilterSet) -> list[DesignationRow]:
        orders = self._matching_orders(date_range, filters)
        items = self._items_of(orders)
        if filters.campaign is not None:
            items = items[items["product_id"] == filters.campaign]
        if items.empty:
            return []

        categories = self.terms[self.terms["taxonomy"] == "product_cat"].rename(columns={"id": "term_id"})
        categories = self.product_terms.merge(categories[["term_id", "name"]], on="term_id", how="inner")
        joined = items.merge(categories, on="product_id", how="inner")
        if joined.empty:
            return []

        grouped = (
            joined.groupby(["name", "term_id", "day"])
            .agg(item_count=("item_id", "nunique"), cents=("cents", "sum"))
            .reset_index()
            .sort_values("day")
        )
        return [
            DesignationRow(
                designation=str(_optional(row.name) or ""),
                term_id=int(row.term_id),
                day=row.day,
                item_count=int(row.item_count),
                total_amount=_from_cents(row.cents),
            )
            for row in grouped.itertuples(index=False)
        ]

    def product_rows(self, date_range: DateRange, filters: FilterSet) -> list[ProductRow]:
        items = self._items_of(self._matching_orders(date_range, filters))
        if items.empty:
            return []
        products = self.products[["id", "name", "permalink"]].rename(
            columns={"id": "product_id", "name": "product_name"}
        )
        joined = items.merge(products, on="product_id", how="left")
        joined["product_name"] = joined["product_name"].fillna("")
        joined["permalink"] = joined["permalink"].fillna("")
        grouped = (
            joined.groupby(["product_id", "product_name", "permalink", "day"])
            .agg(item_count=("item_id", "nunique"), cents=("cents", "sum"))
            .reset_index()
            .sort_values("day")
        )
        return [
            ProductRow(
                product_id=int(row.product_id),
                product_name=row.product_name,
                permalink=row.permalink or None,
                day=row.day,
                item_count=int(row.item_count),
                total_amount=_from_cents(row.cents),
            )
            for row in grouped.itertuples(index=False)
        ]

    def product_counters(self, product_ids: Sequence[int]) -> dict[int, ProductCounters]:
        found = self.products[self.products["id"].isin(list(product_ids))]
        return {
            int(row.id): ProductCounters(
                product_id=int(row.id),
                view_count=_optional_int(row.view_count),
                checkout_count=_optional_int(row.checkout_count),
            )
            for row in found.itertuples(index=False)
        }

    # -------------------------------------------------------------------------
    # Frequências
    # -------------------------------------------------------------------------

    def order_rows(
        self, date_range: DateRange, filters: FilterSet, limit: Optional[int] = None
    ) -> list[OrderRow]:
        orders = self._matching_orders(date_range, filters).sort_values("id")
        if limit is not None:
            orders = orders.head(limit)
        merged = orders[["id", "day", "cents"]].merge(
            self.links, left_on="id", right_on="order_id", how="left"
        )
        merged = merged.sort_values(["id", "relation"], na_position="last")
        return [
            OrderRow(
                order_id=int(row.id),
                day=row.day,
                total=_from_cents(row.cents),
                billing_period=_optional(row.billing_period),
                billing_interval=_optional_int(row.billing_interval),
                relation=_optional(row.relation),
            )
            for row in merged.itertuples(index=False)
        ]

    def frequency_aggregates(
        self, date_range: DateRange, filters: FilterSet, sample_size: int = 100
    ) -> list[FrequencyAggregateRow]:
        orders = self._matching_orders(date_range, filters)
        if orders.empty:
            return []
        # Uma ligação por pedido: a que bate com o filtro, depois "parent" antes de "renewal"
        links = self.links.assign(matches=False)
        cadence = parse_frequency_label(filters.frequency) if filters.frequency is not None else None
        if cadence is not None:
            period, interval = cadence
            links["matches"] = (links["billing_period"] == period) & (
                links["billing_interval"].astype(float) == interval
            )
        first_link = links.sort_values(
            ["order_id", "matches", "relation"], ascending=[True, False, True]
        ).drop_duplicates("order_id")
        merged = orders[["id", "day", "cents"]].merge(
            first_link, left_on="id", right_on="order_id", how="left"
        )
        merged = merged.sort_values("id")
        merged["billing_period"] = merged["billing_period"].fillna("")
        merged["billing_interval"] = merged["billing_interval"].fillna(0).astype(float).astype("int64")
        keys = ["billing_period", "billing_interval", "day"]
        samples = {
            key: tuple(int(c) for c in cents.head(sample_size))
            for key, cents in merged.groupby(keys)["cents"]
        }
        grouped = (
            merged.groupby(keys)
            .agg(order_count=("id", "count"), cents=("cents", "sum"))
            .reset_index()
            .sort_values("day")
        )
        return [
            FrequencyAggregateRow(
                billing_period=row.billing_period or None,
                billing_interval=int(row.billing_interval) or None,
                day=row.day,
                order_count=int(row.order_count),
                total_amount=_from_cents(row.cents),
                amounts=tuple(
                    _from_cents(c)
                    for c in samples.get((row.billing_period, row.billing_interval, row.day), ())
                ),
            )
            for row in grouped.itertuples(index=False)
        ]

    # -------------------------------------------------------------------------
    # Clientes
    # -------------------------------------------------------------------------

    def customer_summaries(
        self, date_range: DateRange, filters: FilterSet, limit: int = 100
    ) -> list[CustomerSummary]:
        orders = self._matching_orders(date_range, filters)
        orders = orders[orders["customer_email"] != ""]
        if orders.empty:
            return []
        grouped = (
            orders.groupby("customer_email")
            .agg(
                order_count=("id", "nunique"),
                cents=("cents", "sum"),
                first_name=("first_name", "max"),
                last_name=("last_name", "max"),
            )
            .reset_index()
            .sort_values(["cents", "customer_email"], ascending=[False, True])
            .head(limit)
        )
        history = self._customer_history()
        return [
            CustomerSummary(
                email=row.customer_email,
                first_name=row.first_name,
                last_name=row.last_name,
                order_count=int(row.order_count),
                total_value=_from_cents(row.cents),
                first_order_date=_as_date(history["first_order"].get(row.customer_email)),
                last_order_date=_as_date(history["last_order"].get(row.customer_email)),
            )
            for row in grouped.itertuples(index=False)
        ]

    def customer_days(self, date_range: DateRange, filters: FilterSet) -> list[CustomerDay]:
        orders = self._matching_orders(date_range, filters)
        orders = orders[orders["customer_email"] != ""]
        pairs = orders[["day", "customer_email"]].drop_duplicates().sort_values(["day", "customer_email"])
        firsts = self._customer_history()["first_order"]
        return [
            CustomerDay(
                day=row.day,
                email=row.customer_email,
                first_order_date=_as_date(firsts.get(row.customer_email)),
            )
            for row in pairs.itertuples(index=False)
        ]

    def customer_count(self, date_range: DateRange, filters: FilterSet) -> int:
        orders = self._matching_orders(date_range, filters)
        return int(orders.loc[orders["customer_email"] != "", "customer_email"].nunique())
