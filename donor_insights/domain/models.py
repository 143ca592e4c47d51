"""
Modelos de domínio e DTOs.
Representam os conceitos de negócio independentes da infraestrutura.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from donor_insights.core.errors import CalendarError
from donor_insights.core.logging import engine_logger
from donor_insights.domain.dates import DateRange, day_keys, to_weekly

ZERO = Decimal(0)


# -----------------------------------------------------------------------------
# Linhas devolvidas pelo Order Store
# -----------------------------------------------------------------------------


@dataclass
class DailyOrderMetrics:
    """Pedidos únicos e valor por dia."""

    day: date
    order_count: int
    total_amount: Decimal

    @property
    def day_iso(self) -> str:
        return self.day.isoformat()


@dataclass
class PaymentMethodRow:
    payment_method: str
    payment_title: str
    day: date
    order_count: int
    total_amount: Decimal


@dataclass
class PaymentAmountRow:
    """Valor de um pedido com o gateway que o recebeu."""

    payment_method: str
    payment_title: str
    amount: Decimal
    recurring: bool = False


@dataclass
class CountryRow:
    country_code: str
    day: date
    order_count: int
    total_amount: Decimal


@dataclass
class OrderAmount:
    amount: Decimal
    recurring: bool = False


@dataclass
class DaytimeRow:
    """Pedidos por dia da semana e hora; ``day_of_week`` usa 1=domingo .. 7=sábado."""

    day_of_week: int
    hour: int
    order_count: int
    total_amount: Decimal


@dataclass
class DesignationRow:
    designation: str
    term_id: Optional[int]
    day: date
    item_count: int
    total_amount: Decimal


@dataclass
class ProductRow:
    product_id: int
    product_name: str
    permalink: Optional[str]
    day: date
    item_count: int
    total_amount: Decimal


@dataclass
class ProductCounters:
    """Contadores reais de visitas/checkout; ``None`` quando não há registro."""

    product_id: int
    view_count: Optional[int] = None
    checkout_count: Optional[int] = None


@dataclass
class OrderRow:
    """
    Pedido para classificação de frequência.

    ``relation`` is ``"parent"`` or ``"renewal"`` when the order is linked
    to a subscription, ``None`` otherwise. An order linked several ways
    appears once per link.
    """

    order_id: int
    day: date
    total: Decimal
    billing_period: Optional[str] = None
    billing_interval: Optional[int] = None
    relation: Optional[str] = None


@dataclass
class FrequencyAggregateRow:
    """Agregado diário por cadência; período ``None`` significa pedido avulso."""

    billing_period: Optional[str]
    billing_interval: Optional[int]
    day: date
    order_count: int
    total_amount: Decimal
    amounts: Tuple[Decimal, ...] = ()


@dataclass
class CustomerSummary:
    email: str
    first_name: str
    last_name: str
    order_count: int
    total_value: Decimal
    first_order_date: Optional[date]
    last_order_date: Optional[date]

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass
class CustomerDay:
    """Cliente que comprou num dia, com a data do primeiro pedido de toda a história."""

    day: date
    email: str
    first_order_date: Optional[date]


# -----------------------------------------------------------------------------
# Resultado agregado (imutável; cada passo devolve uma nova instância)
# -----------------------------------------------------------------------------


def _zero_series(keys: Iterable[str]) -> Dict[str, Decimal]:
    return {k: ZERO for k in keys}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


FilterMerge = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class AggregateResult:
    """Totais, séries diárias e breakdown de uma janela de datas."""

    date_range: DateRange
    total_amount: Decimal = ZERO
    total_count: int = 0
    installments_amount: Decimal = ZERO
    installments_count: int = 0
    onetime_amount: Decimal = ZERO
    onetime_count: int = 0
    chart_data: Dict[str, Decimal] = field(default_factory=dict)
    installments_chart: Dict[str, Decimal] = field(default_factory=dict)
    onetime_chart: Dict[str, Decimal] = field(default_factory=dict)
    new_donors: int = 0
    filter_data: Dict[str, Any] = field(default_factory=dict)
    view_type: str = "daily"
    complete: bool = True

    @classmethod
    def skeleton(cls, date_range: DateRange) -> "AggregateResult":
        """Zeroed result with one entry per calendar day in the range."""
        try:
            keys = day_keys(date_range)
        except CalendarError as exc:
            engine_logger.error(
                "Could not build daily skeleton, returning empty charts",
                exc=exc,
                start=date_range.start.isoformat(),
                end=date_range.end.isoformat(),
            )
            return cls(date_range=date_range)

        return cls(
            date_range=date_range,
            chart_data=_zero_series(keys),
            installments_chart=_zero_series(keys),
            onetime_chart=_zero_series(keys),
        )

    # -------------------------------------------------------------------------
    # Passos de preenchimento
    # -------------------------------------------------------------------------

    def _overlay(self, series: Dict[str, Decimal], rows: Iterable[DailyOrderMetrics], label: str):
        chart = dict(series)
        amount = ZERO
        count = 0
        for row in rows:
            if not self.date_range.contains(row.day):
                engine_logger.warning(
                    "Ignoring row outside the requested range",
                    series=label,
                    day=row.day.isoformat(),
                    **self.date_range.to_dict(),
                )
                continue
            key = row.day_iso
            chart[key] = chart.get(key, ZERO) + row.total_amount
            amount += row.total_amount
            count += row.order_count
        return chart, amount, count

    def with_main_metrics(self, rows: Iterable[DailyOrderMetrics]) -> "AggregateResult":
        chart, amount, count = self._overlay(self.chart_data, rows, "chart_data")
        return replace(self, chart_data=chart, total_amount=amount, total_count=count)

    def with_installments(self, rows: Iterable[DailyOrderMetrics]) -> "AggregateResult":
        chart, amount, count = self._overlay(self.installments_chart, rows, "installments_chart")
        return replace(
            self, installments_chart=chart, installments_amount=amount, installments_count=count
        )

    def with_onetime(self) -> "AggregateResult":
        """Derive one-time figures as total minus installments, overall and per day."""
        onetime_amount = self.total_amount - self.installments_amount
        onetime_count = self.total_count - self.installments_count
        if onetime_amount < 0 or onetime_count < 0:
            engine_logger.warning(
                "Installments exceed totals; leaving negative one-time figures as reported",
                total_amount=self.total_amount,
                installments_amount=self.installments_amount,
                total_count=self.total_count,
                installments_count=self.installments_count,
                **self.date_range.to_dict(),
            )

        chart = {
            key: total - self.installments_chart.get(key, ZERO)
            for key, total in self.chart_data.items()
        }
        return replace(
            self, onetime_amount=onetime_amount, onetime_count=onetime_count, onetime_chart=chart
        )

    def with_new_donors(self, count: int) -> "AggregateResult":
        return replace(self, new_donors=int(count))

    def with_filter_data(self, data: Dict[str, Any]) -> "AggregateResult":
        return replace(self, filter_data=dict(data))

    def incomplete(self) -> "AggregateResult":
        return replace(self, complete=False)

    def to_weekly(self) -> "AggregateResult":
        if self.view_type == "weekly":
            return self
        return replace(
            self,
            chart_data=to_weekly(self.chart_data),
            installments_chart=to_weekly(self.installments_chart),
            onetime_chart=to_weekly(self.onetime_chart),
            view_type="weekly",
        )

    # -------------------------------------------------------------------------
    # Merge (janelas consecutivas de um intervalo grande)
    # -------------------------------------------------------------------------

    def merge(self, other: "AggregateResult", merge_filter_data: Optional[FilterMerge] = None) -> "AggregateResult":
        """
        Combine two results over disjoint windows.

        Scalars are summed. Series are unioned by date with the right-hand
        side winning, which is exact because a date belongs to one window
        only. ``filter_data`` is combined with ``merge_filter_data`` (right
        wins when none is given). The bounds of ``self`` are kept, so fold
        chunks into a skeleton of the whole range.
        """
        if merge_filter_data is None:
            filter_data = {**self.filter_data, **other.filter_data}
        else:
            filter_data = merge_filter_data(self.filter_data, other.filter_data)

        return replace(
            self,
            total_amount=self.total_amount + other.total_amount,
            total_count=self.total_count + other.total_count,
            installments_amount=self.installments_amount + other.installments_amount,
            installments_count=self.installments_count + other.installments_count,
            onetime_amount=self.onetime_amount + other.onetime_amount,
            onetime_count=self.onetime_count + other.onetime_count,
            new_donors=self.new_donors + other.new_donors,
            chart_data={**self.chart_data, **other.chart_data},
            installments_chart={**self.installments_chart, **other.installments_chart},
            onetime_chart={**self.onetime_chart, **other.onetime_chart},
            filter_data=filter_data,
            complete=self.complete and other.complete,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Payload JSON-ready: decimals become numbers, dates ISO strings."""
        return {
            "date_range": self.date_range.to_dict(),
            "total_amount": float(self.total_amount),
            "total_count": self.total_count,
            "installments_amount": float(self.installments_amount),
            "installments_count": self.installments_count,
            "onetime_amount": float(self.onetime_amount),
            "onetime_count": self.onetime_count,
            "chart_data": _jsonable(self.chart_data),
            "installments_chart": _jsonable(self.installments_chart),
            "onetime_chart": _jsonable(self.onetime_chart),
            "new_donors": self.new_donors,
            "filter_data": _jsonable(self.filter_data),
            "view_type": self.view_type,
            "complete": self.complete,
        }
