"""Breakdown por forma de pagamento."""

from __future__ import annotations

from typing import Tuple

from donor_insights.domain.dates import DateRange
from donor_insights.domain.filters import FilterDimension, FilterSet
from donor_insights.services.processors.base import Breakdown, FilterProcessor, add_to_chart, new_entry

OTHER = "Other"


def normalize_payment_method(method: str, title: str) -> Tuple[str, str]:
    """
    Map a raw gateway id and its title onto ``(label, icon)``.

    Labels: Credit Card, PayPal, Apple Pay, Google Pay, Bank Transfer,
    Cash on Delivery, Check, Digital Wallet. Unknown gateways keep their
    own title, or become Other when they have none.
    """
    method = (method or "").lower()
    title = (title or "").strip()
    lowered = title.lower()

    if "stripe" in method:
        # Carteiras processadas pela Stripe chegam com o título da carteira
        if "apple" in lowered:
            return "Apple Pay", "apple-pay"
        if "google" in lowered:
            return "Google Pay", "google-pay"
        return "Credit Card", "card"
    if "ppcp" in method or "paypal" in method:
        return "PayPal", "paypal"
    if "cod" in method:
        return "Cash on Delivery", "cash"
    if "bacs" in method:
        return "Bank Transfer", "bank"
    if "cheque" in method:
        return "Check", "check"
    if "apple_pay" in method or "applepay" in method or "apple pay" in lowered:
        return "Apple Pay", "apple-pay"
    if "google_pay" in method or "googlepay" in method or "google pay" in lowered:
        return "Google Pay", "google-pay"
    if "wallet" in method:
        if "apple" in lowered:
            return "Apple Pay", "apple-pay"
        if "google" in lowered:
            return "Google Pay", "google-pay"
        return "Digital Wallet", "wallet"
    if not title:
        return OTHER, "default"
    return title, "default"


class PaymentMethodProcessor(FilterProcessor):
    dimension = FilterDimension.PAYMENT_METHODS

    def process(self, date_range: DateRange, filters: FilterSet) -> Breakdown:
        filter_data: Breakdown = {}

        for row in self.store.payment_method_rows(date_range, filters):
            label, icon = normalize_payment_method(row.payment_method, row.payment_title)
            entry = filter_data.setdefault(label, new_entry(icon=icon))
            entry["count"] += row.order_count
            entry["total"] += row.total_amount
            add_to_chart(entry["chart_data"], row.day.isoformat(), row.total_amount)

        # Mediana geral por forma de pagamento (não por dia)
        amounts_by_label: dict[str, list] = {}
        for amount in self.store.payment_amounts(date_range, filters):
            label, _icon = normalize_payment_method(amount.payment_method, amount.payment_title)
            amounts_by_label.setdefault(label, []).append(amount)

        for label, entry in filter_data.items():
            self._split_medians(entry, amounts_by_label.get(label, ()))

        return filter_data
