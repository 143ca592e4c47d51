"""
Filtros de dados reutilizáveis.

FilterSet is the per-request set of dimensional constraints. It never
holds empty values (absence means "no constraint") and it knows how to
express itself as SQL conditions over the orders table so every Order
Store query applies the same rules.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from donor_insights.core.errors import ValidationError
from donor_insights.domain.frequency import parse_frequency_label

TAG_SUFFIX = " (Tag)"
UNCATEGORIZED = "Uncategorized"

FILTER_KEYS = ("campaign", "designation", "source", "frequency")


class FilterDimension(str, Enum):
    """Breakdown axis requested by the dashboard tab."""

    RAISED = "raised"
    PAYMENT_METHODS = "payment_methods"
    COUNTRIES = "countries"
    DAYTIME = "daytime"
    DESIGNATIONS = "designations"
    URL = "url"
    FREQUENCIES = "frequencies"
    CUSTOMERS = "customers"

    @classmethod
    def parse(cls, value) -> "FilterDimension":
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip())
        except ValueError as exc:
            raise ValidationError("unknown_filter", f"Unknown filter tab: {value!r}.") from exc


class ViewType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"

    @classmethod
    def parse(cls, value) -> "ViewType":
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip())
        except ValueError as exc:
            raise ValidationError("unknown_view", f"Unknown view type: {value!r}.") from exc


@dataclass(frozen=True)
class FilterSet:
    """Active constraints; ``None`` means the dimension is unconstrained."""

    campaign: Optional[int] = None
    designation: Optional[str] = None
    source: Optional[str] = None
    frequency: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "FilterSet":
        """
        Build a FilterSet from user input.

        Unknown keys are ignored, blank values are dropped, the campaign
        must be a numeric product id and the frequency a known cadence.
        """
        raw = raw or {}
        values: dict[str, Any] = {}
        for key in FILTER_KEYS:
            value = raw.get(key)
            if value is None:
                continue
            value = str(value).strip()
            if value:
                values[key] = value

        if "campaign" in values:
            if not values["campaign"].isdigit():
                raise ValidationError(
                    "invalid_filter",
                    f"Campaign must be a numeric product id, got {values['campaign']!r}.",
                )
            values["campaign"] = int(values["campaign"])

        if "frequency" in values:
            try:
                parse_frequency_label(values["frequency"])
            except ValueError as exc:
                raise ValidationError(
                    "invalid_filter", f"Unknown frequency: {values['frequency']!r}."
                ) from exc

        return cls(**values)

    @property
    def is_empty(self) -> bool:
        return not self.to_dict()

    @property
    def has_item_filter(self) -> bool:
        """True when matching requires a join against line items / taxonomy."""
        return self.campaign is not None or self.designation is not None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def cache_token(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    def designation_term(self) -> Optional[tuple[str, str]]:
        """``(taxonomy, name)`` for the designation filter, or None."""
        if self.designation is None:
            return None
        if self.designation.endswith(TAG_SUFFIX):
            return "product_tag", self.designation[: -len(TAG_SUFFIX)]
        return "product_cat", self.designation

    # -------------------------------------------------------------------------
    # SQL
    # -------------------------------------------------------------------------

    def to_sql_conditions(self, alias: str = "o") -> tuple[list[str], dict]:
        """
        Converte os filtros em condições SQL e parâmetros.

        Item-level filters are expressed as ``IN (SELECT order_id ...)``
        so an order with several matching line items still counts once.

        Returns:
            Tupla contendo lista de condições WHERE e dicionário de parâmetros
        """
        conditions: list[str] = []
        params: dict[str, Any] = {}

        if self.has_item_filter:
            item_where: list[str] = []
            item_joins = ""
            if self.campaign is not None:
                item_where.append("oi.product_id = :f_campaign")
                params["f_campaign"] = self.campaign
            if self.designation == UNCATEGORIZED:
                item_where.append(
                    "NOT EXISTS (SELECT 1 FROM product_terms pt JOIN terms t ON t.id = pt.term_id "
                    "WHERE pt.product_id = oi.product_id AND t.taxonomy = 'product_cat')"
                )
            elif self.designation is not None:
                taxonomy, name = self.designation_term()
                item_joins = (
                    " JOIN product_terms pt ON pt.product_id = oi.product_id"
                    " JOIN terms t ON t.id = pt.term_id"
                )
                item_where.append("t.taxonomy = :f_taxonomy AND t.name = :f_term")
                params["f_taxonomy"] = taxonomy
                params["f_term"] = name
            conditions.append(
                f"{alias}.id IN (SELECT DISTINCT oi.order_id FROM order_items oi{item_joins}"
                f" WHERE {' AND '.join(item_where)})"
            )

        if self.source is not None:
            conditions.append(f"{alias}.utm_source = :f_source")
            params["f_source"] = self.source

        if self.frequency is not None:
            cadence = parse_frequency_label(self.frequency)
            linked = (
                "SELECT 1 FROM subscriptions s"
                " LEFT JOIN subscription_renewals r ON r.subscription_id = s.id"
                f" WHERE (s.parent_order_id = {alias}.id OR r.order_id = {alias}.id)"
            )
            if cadence is None:
                conditions.append(f"NOT EXISTS ({linked})")
            else:
                conditions.append(
                    f"EXISTS ({linked} AND s.billing_period = :f_period AND s.billing_interval = :f_interval)"
                )
                params["f_period"], params["f_interval"] = cadence

        return conditions, params
