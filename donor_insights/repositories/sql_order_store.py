"""
Order Store sobre PostgreSQL.
Centraliza todo o SQL usado pelo motor de agregação.
"""

from __future__ import annotations

from datetime import date, datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from donor_insights.core.errors import DataError, InsightsError
from donor_insights.core.logging import store_logger
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
from donor_insights.domain.stats import to_decimal
from donor_insights.infra import db

PAID_STATUSES = "('completed', 'processing')"

# Pedido ligado a uma assinatura (como pedido pai ou como renovação)
RECURRING_CONDITION = (
    "(EXISTS (SELECT 1 FROM subscriptions s WHERE s.parent_order_id = o.id)"
    " OR EXISTS (SELECT 1 FROM subscription_renewals r WHERE r.order_id = o.id))"
)

SUBSCRIPTION_LINKS = """
    SELECT s.parent_order_id AS order_id, s.billing_period, s.billing_interval, 'parent' AS relation
    FROM subscriptions s
    WHERE s.parent_order_id IS NOT NULL
    UNION ALL
    SELECT r.order_id, s.billing_period, s.billing_interval, 'renewal' AS relation
    FROM subscription_renewals r
    JOIN subscriptions s ON s.id = r.subscription_id
"""


def _as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _day(value: Any) -> date:
    """Dia obrigatório da linha (agrupamentos por dia nunca vêm nulos)."""
    day = _as_date(value)
    if day is None:
        raise ValueError("row without day")
    return day


def _checked_rows(dimension: Optional[str] = None) -> Callable:
    """
    Linhas fora do formato esperado viram DataError com o nome da consulta,
    em vez de estourar mais adiante na montagem do resultado.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
                store_logger.error(
                    "Order Store returned malformed rows",
                    exc=exc,
                    query=func.__name__,
                    dimension=dimension,
                )
                raise DataError(
                    "Order Store returned malformed rows", query=func.__name__, dimension=dimension
                ) from exc

        return wrapper

    return decorator


class SqlOrderStore:
    """
    Order Store para o schema relacional de pedidos.
    Cada consulta é limitada a pedidos pagos entre ``start 00:00:00`` e ``end 23:59:59``.
    """

    def __init__(self, timeout_ms: int = 30000):
        self.timeout_ms = timeout_ms

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _scope(date_range: DateRange, filters: FilterSet, alias: str = "o") -> tuple[str, Dict[str, Any]]:
        """
        Monta o WHERE comum: status pago, janela de datas e filtros dimensionais.

        Returns:
            Tupla com a cláusula (sem ``WHERE``) e os parâmetros
        """
        conditions = [
            f"{alias}.status IN {PAID_STATUSES}",
            f"{alias}.created_at >= :start",
            f"{alias}.created_at <= :end",
        ]
        extra, params = filters.to_sql_conditions(alias)
        conditions.extend(extra)
        params["start"] = date_range.start_datetime
        params["end"] = date_range.end_datetime
        return " AND ".join(conditions), params

    def _fetch(self, name: str, sql: str, params: Dict[str, Any], dimension: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            return db.fetch_all(sql, params, timeout_ms=self.timeout_ms)
        except (SQLAlchemyError, InsightsError) as exc:
            store_logger.error(
                "Order Store query failed",
                exc=exc,
                query=name,
                dimension=dimension,
                start=params.get("start"),
                end=params.get("end"),
            )
            raise DataError("Order Store query failed", query=name, dimension=dimension) from exc

    @staticmethod
    def _daily(rows: List[Dict[str, Any]]) -> list[DailyOrderMetrics]:
        return [
            DailyOrderMetrics(
                day=_day(row["day"]),
                order_count=int(row["order_count"] or 0),
                total_amount=to_decimal(row["total_amount"]),
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Métricas principais
    # -------------------------------------------------------------------------

    @_checked_rows()
    def main_metrics(self, date_range: DateRange, filters: FilterSet) -> list[DailyOrderMetrics]:
        """
        Obtém pedidos únicos e valor por dia.

        Args:
            date_range: Intervalo inclusivo
            filters: Filtros dimensionais

        Returns:
            Lista de métricas diárias (somente dias com pedidos)
        """
        where, params = self._scope(date_range, filters)
        sql = f"""
            SELECT
                o.created_at::date AS day,
                COUNT(DISTINCT o.id) AS order_count,
                COALESCE(SUM(o.total), 0) AS total_amount
            FROM orders o
            WHERE {where}
            GROUP BY day
            ORDER BY day
        """
        return self._daily(self._fetch("main_metrics", sql, params))

    @_checked_rows()
    def subscription_metrics(self, date_range: DateRange, filters: FilterSet) -> list[DailyOrderMetrics]:
        """Mesmo formato de ``main_metrics``, só pedidos ligados a assinaturas."""
        where, params = self._scope(date_range, filters)
        sql = f"""
            SELECT
                o.created_at::date AS day,
                COUNT(DISTINCT o.id) AS order_count,
                COALESCE(SUM(o.total), 0) AS total_amount
            FROM orders o
            WHERE {where}
              AND {RECURRING_CONDITION}
            GROUP BY day
            ORDER BY day
        """
        return self._daily(self._fetch("subscription_metrics", sql, params))

    @_checked_rows()
    def new_donor_count(self, date_range: DateRange, filters: FilterSet) -> int:
        """Clientes do intervalo cujo primeiro pedido de toda a história cai no intervalo."""
        where, params = self._scope(date_range, filters)
        sql = f"""
            WITH in_range AS (
                SELECT DISTINCT o.customer_email
                FROM orders o
                WHERE {where}
                  AND COALESCE(o.customer_email, '') <> ''
            )
            SELECT COUNT(*) AS new_donors
            FROM (
                SELECT h.customer_email, MIN(h.created_at) AS first_order
                FROM orders h
                JOIN in_range ir ON ir.customer_email = h.customer_email
                WHERE h.status IN {PAID_STATUSES}
                GROUP BY h.customer_email
            ) firsts
            WHERE firsts.first_order >= :start
              AND firsts.first_order <= :end
        """
        rows = self._fetch("new_donor_count", sql, params)
        return int(rows[0]["new_donors"] or 0) if rows else 0

    # -------------------------------------------------------------------------
    # Formas de pagamento e países
    # -------------------------------------------------------------------------

    @_checked_rows("payment_methods")
    def payment_method_rows(self, date_range: DateRange, filters: FilterSet) -> list[PaymentMethodRow]:
        where, params = self._scope(date_range, filters)
        sql = f"""
            SELECT
                COALESCE(o.payment_method, '') AS payment_method,
                COALESCE(o.payment_method_title, '') AS payment_title,
                o.created_at::date AS day,
                COUNT(DISTINCT o.id) AS order_count,
                COALESCE(SUM(o.total), 0) AS total_amount
            FROM orders o
            WHERE {where}
            GROUP BY 1, 2, 3
            ORDER BY 3
        """
        rows = self._fetch("payment_method_rows", sql, params, dimension="payment_methods")
        return [
            PaymentMethodRow(
                payment_method=row["payment_method"],
                payment_title=row["payment_title"],
                day=_day(row["day"]),
                order_count=int(row["order_count"] or 0),
                total_amount=to_decimal(row["total_amount"]),
            )
            for row in rows
        ]

    @_checked_rows("payment_methods")
    def payment_amounts(self, date_range: DateRange, filters: FilterSet) -> list[PaymentAmountRow]:
        where, params = self._scope(date_range, filters)
        sql = f"""
            SELECT
                COALESCE(o.payment_method, '') AS payment_method,
                COALESCE(o.payment_method_title, '') AS payment_title,
                o.total AS amount,
                {RECURRING_CONDITION} AS recurring
            FROM orders o
            WHERE {where}
              AND o.total > 0
            ORDER BY o.total
        """
        rows = self._fetch("payment_amounts", sql, params, dimension="payment_methods")
        return [
            PaymentAmountRow(
                payment_method=row["payment_method"],
                payment_title=row["payment_title"],
                amount=to_decimal(row["amount"]),
                recurring=bool(row["recurring"]),
            )
            for row in rows
        ]

    @_checked_rows("countries")
    def country_rows(self, date_range: DateRange, filters: FilterSet) -> list[CountryRow]:
        where, params = self._scope(date_range, filters)
        sql = f"""
            SELECT
                COALESCE(o.billing_country, '') AS country_code,
                o.created_at::date AS day,
                COUNT(DISTINCT o.id) AS order_count,
                COALESCE(SUM(o.total), 0) AS total_amount
            FROM orders o
            WHERE {where}
            GROUP BY 1, 2
            ORDER BY 2
        """
        rows = self._fetch("country_rows", sql, params, dimension="countries")
        return [
            CountryRow(
                country_code=row["country_code"],
                day=_day(row["day"]),
                order_count=int(row["order_count"] or 0),
                total_amount=to_decimal(row["total_amount"]),
            )
            for row in rows
        ]

    @_checked_rows("countries")
    def country_amounts(self, date_range: DateRange, country_code: str, filters: FilterSet) -> list[OrderAmount]:
        where, params = self._scope(date_range, filters)
        params["country_code"] = country_code
        sql = f"""
            SELECT o.total AS amount, {RECURRING_CONDITION} AS recurring
            FROM orders o
            WHERE {where}
              AND o.billing_country = :country_code
              AND o.total > 0
            ORDER BY o.total
        """
        rows = self._fetch("country_amounts", sql, params, dimension="countries")
        return [OrderAmount(amount=to_decimal(row["amount"]), recurring=bool(row["recurring"])) for row in rows]

    # -------------------------------------------------------------------------
    # Dia/hora
    # -------------------------------------------------------------------------

    @_checked_rows("daytime")
    def daytime_rows(self, date_range: DateRange, filters: FilterSet) -> list[DaytimeRow]:
        """Agregado por dia da semana (1=domingo .. 7=sábado) e hora."""
        where, params = self._scope(date_range, filters)
        sql = f"""
            SELECT
                EXTRACT(DOW FROM o.created_at)::int + 1 AS day_of_week,
                EXTRACT(HOUR FROM o.created_at)::int AS hour,
                COUNT(DISTINCT o.id) AS order_count,
                COALESCE(SUM(o.total), 0) AS total_amount
            FROM orders o
            WHERE {where}
            GROUP BY 1, 2
            ORDER BY 1, 2
        """
        rows = self._fetch("daytime_rows", sql, params, dimension="daytime")
        return [
            DaytimeRow(
                day_of_week=int(row["day_of_week"]),
                hour=int(row["hour"]),
                order_count=int(row["order_count"] or 0),
                total_amount=to_decimal(row["total_amount"]),
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Categorias e produtos
    # -------------------------------------------------------------------------

    @_checked_rows("designations")
    def designation_rows(self, date_range: DateRange, filters: FilterSet) -> list[DesignationRow]:
        """Itens por categoria e dia; com campanha, só os itens daquele produto."""
        where, params = self._scope(date_range, filters)
        item_clause = " AND oi.product_id = :f_campaign" if filters.campaign is not None else ""
        sql = f"""
            SELECT
                COALESCE(t.name, '') AS designation,
                t.id AS term_id,
                o.created_at::date AS day,
                COUNT(DISTINCT oi.id) AS item_count,
                COALESCE(SUM(oi.line_total), 0) AS total_amount
            FROM orders o
            JOIN order_items oi ON oi.order_id = o.id
            JOIN product_terms pt ON pt.product_id = oi.product_id
            JOIN terms t ON t.id = pt.term_id AND t.taxonomy = 'product_cat'
            WHERE {where}{item_clause}
            GROUP BY t.name, t.id, day
            ORDER BY day
        """
        rows = self._fetch("designation_rows", sql, params, dimension="designations")
        return [
            DesignationRow(
                designation=row["designation"],
                term_id=row["term_id"],
                day=_day(row["day"]),
                item_count=int(row["item_count"] or 0),
                total_amount=to_decimal(row["total_amount"]),
            )
            for row in rows
        ]

    @_checked_rows("url")
    def product_rows(self, date_range: DateRange, filters: FilterSet) -> list[ProductRow]:
        where, params = self._scope(date_range, filters)
        sql = f"""
            SELECT
                oi.product_id,
                COALESCE(p.name, '') AS product_name,
                p.permalink,
                o.created_at::date AS day,
                COUNT(DISTINCT oi.id) AS item_count,
                COALESCE(SUM(oi.line_total), 0) AS total_amount
            FROM orders o
            JOIN order_items oi ON oi.order_id = o.id
            LEFT JOIN products p ON p.id = oi.product_id
            WHERE {where}
            GROUP BY oi.product_id, p.name, p.permalink, day
            ORDER BY day
        """
        rows = self._fetch("product_rows", sql, params, dimension="url")
        return [
            ProductRow(
                product_id=int(row["product_id"] or 0),
                product_name=row["product_name"],
                permalink=row["permalink"],
                day=_day(row["day"]),
                item_count=int(row["item_count"] or 0),
                total_amount=to_decimal(row["total_amount"]),
            )
            for row in rows
        ]

    @_checked_rows("url")
    def product_counters(self, product_ids: Sequence[int]) -> dict[int, ProductCounters]:
        if not product_ids:
            return {}
        sql = """
            SELECT id AS product_id, view_count, checkout_count
            FROM products
            WHERE id = ANY(:ids)
        """
        rows = self._fetch("product_counters", sql, {"ids": list(product_ids)}, dimension="url")
        return {
            int(row["product_id"]): ProductCounters(
                product_id=int(row["product_id"]),
                view_count=row["view_count"],
                checkout_count=row["checkout_count"],
            )
            for row in rows
        }

    # -------------------------------------------------------------------------
    # Frequências
    # -------------------------------------------------------------------------

    @_checked_rows("frequencies")
    def order_rows(
        self, date_range: DateRange, filters: FilterSet, limit: Optional[int] = None
    ) -> list[OrderRow]:
        """Pedidos com suas ligações de assinatura; pais antes de renovações."""
        where, params = self._scope(date_range, filters)
        params["limit"] = limit
        sql = f"""
            WITH scoped AS (
                SELECT o.id, o.created_at::date AS day, o.total
                FROM orders o
                WHERE {where}
                ORDER BY o.id
                LIMIT :limit
            ),
            links AS ({SUBSCRIPTION_LINKS})
            SELECT
                sc.id AS order_id,
                sc.day,
                sc.total,
                l.billing_period,
                l.billing_interval,
                l.relation
            FROM scoped sc
            LEFT JOIN links l ON l.order_id = sc.id
            ORDER BY sc.id, l.relation
        """
        rows = self._fetch("order_rows", sql, params, dimension="frequencies")
        return [
            OrderRow(
                order_id=int(row["order_id"]),
                day=_day(row["day"]),
                total=to_decimal(row["total"]),
                billing_period=row["billing_period"],
                billing_interval=row["billing_interval"],
                relation=row["relation"],
            )
            for row in rows
        ]

    @_checked_rows("frequencies")
    def frequency_aggregates(
        self, date_range: DateRange, filters: FilterSet, sample_size: int = 100
    ) -> list[FrequencyAggregateRow]:
        """
        Agregado diário por cadência, cada pedido atribuído a uma única
        assinatura (pai tem prioridade sobre renovação).

        With a recurring frequency filter, the link whose cadence matches
        the filter wins, so the order lands in the filtered bucket.
        """
        where, params = self._scope(date_range, filters)
        params["sample_size"] = int(sample_size)
        preference = ""
        if "f_period" in params:
            preference = "(l.billing_period = :f_period AND l.billing_interval = :f_interval) DESC, "
        sql = f"""
            WITH scoped AS (
                SELECT o.id, o.created_at::date AS day, o.total
                FROM orders o
                WHERE {where}
            ),
            links AS ({SUBSCRIPTION_LINKS}),
            first_link AS (
                SELECT DISTINCT ON (l.order_id) l.order_id, l.billing_period, l.billing_interval
                FROM links l
                JOIN scoped sc ON sc.id = l.order_id
                ORDER BY l.order_id, {preference}l.relation
            )
            SELECT
                fl.billing_period,
                fl.billing_interval,
                sc.day,
                COUNT(*) AS order_count,
                COALESCE(SUM(sc.total), 0) AS total_amount,
                (ARRAY_AGG(sc.total ORDER BY sc.id))[1:CAST(:sample_size AS int)] AS amounts
            FROM scoped sc
            LEFT JOIN first_link fl ON fl.order_id = sc.id
            GROUP BY fl.billing_period, fl.billing_interval, sc.day
            ORDER BY sc.day
        """
        rows = self._fetch("frequency_aggregates", sql, params, dimension="frequencies")
        return [
            FrequencyAggregateRow(
                billing_period=row["billing_period"],
                billing_interval=row["billing_interval"],
                day=_day(row["day"]),
                order_count=int(row["order_count"] or 0),
                total_amount=to_decimal(row["total_amount"]),
                amounts=tuple(to_decimal(v) for v in (row["amounts"] or ())),
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Clientes
    # -------------------------------------------------------------------------

    @_checked_rows("customers")
    def customer_summaries(
        self, date_range: DateRange, filters: FilterSet, limit: int = 100
    ) -> list[CustomerSummary]:
        """Maiores doadores do intervalo, com primeira/última compra de toda a história."""
        where, params = self._scope(date_range, filters)
        params["limit"] = int(limit)
        sql = f"""
            WITH top AS (
                SELECT
                    o.customer_email,
                    COUNT(DISTINCT o.id) AS order_count,
                    COALESCE(SUM(o.total), 0) AS total_value,
                    MAX(o.first_name) AS first_name,
                    MAX(o.last_name) AS last_name
                FROM orders o
                WHERE {where}
                  AND COALESCE(o.customer_email, '') <> ''
                GROUP BY o.customer_email
                ORDER BY total_value DESC, o.customer_email
                LIMIT :limit
            ),
            history AS (
                SELECT
                    h.customer_email,
                    MIN(h.created_at)::date AS first_order_date,
                    MAX(h.created_at)::date AS last_order_date
                FROM orders h
                WHERE h.status IN {PAID_STATUSES}
                  AND h.customer_email IN (SELECT customer_email FROM top)
                GROUP BY h.customer_email
            )
            SELECT top.*, history.first_order_date, history.last_order_date
            FROM top
            LEFT JOIN history ON history.customer_email = top.customer_email
            ORDER BY top.total_value DESC, top.customer_email
        """
        rows = self._fetch("customer_summaries", sql, params, dimension="customers")
        return [
            CustomerSummary(
                email=row["customer_email"],
                first_name=row["first_name"] or "",
                last_name=row["last_name"] or "",
                order_count=int(row["order_count"] or 0),
                total_value=to_decimal(row["total_value"]),
                first_order_date=_as_date(row["first_order_date"]),
                last_order_date=_as_date(row["last_order_date"]),
            )
            for row in rows
        ]

    @_checked_rows("customers")
    def customer_days(self, date_range: DateRange, filters: FilterSet) -> list[CustomerDay]:
        where, params = self._scope(date_range, filters)
        sql = f"""
            WITH days AS (
                SELECT DISTINCT o.created_at::date AS day, o.customer_email
                FROM orders o
                WHERE {where}
                  AND COALESCE(o.customer_email, '') <> ''
            ),
            firsts AS (
                SELECT h.customer_email, MIN(h.created_at)::date AS first_order_date
                FROM orders h
                WHERE h.status IN {PAID_STATUSES}
                  AND h.customer_email IN (SELECT customer_email FROM days)
                GROUP BY h.customer_email
            )
            SELECT days.day, days.customer_email AS email, firsts.first_order_date
            FROM days
            LEFT JOIN firsts ON firsts.customer_email = days.customer_email
            ORDER BY days.day, days.customer_email
        """
        rows = self._fetch("customer_days", sql, params, dimension="customers")
        return [
            CustomerDay(
                day=_day(row["day"]),
                email=row["email"],
                first_order_date=_as_date(row["first_order_date"]),
            )
            for row in rows
        ]

    @_checked_rows("customers")
    def customer_count(self, date_range: DateRange, filters: FilterSet) -> int:
        where, params = self._scope(date_range, filters)
        sql = f"""
            SELECT COUNT(DISTINCT o.customer_email) AS customers
            FROM orders o
            WHERE {where}
              AND COALESCE(o.customer_email, '') <> ''
        """
        rows = self._fetch("customer_count", sql, params, dimension="customers")
        return int(rows[0]["customers"] or 0) if rows else 0
