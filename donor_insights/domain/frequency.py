"""Recurring cadence labels derived from billing period + interval."""

from __future__ import annotations

import re
from typing import Optional, Tuple

ONCE = "Once"
CUSTOM = "Custom"

_SINGLE_INTERVAL = {
    "day": "Daily",
    "week": "Weekly",
    "month": "Monthly",
    "year": "Annually",
}

_NAMED_MONTHLY = {
    2: "Bimonthly",
    3: "Quarterly",
    6: "Semi-annually",
}

_EVERY_N = re.compile(r"^Every (\d+) (day|week|month|year)s$")


def frequency_label(
    billing_period: Optional[str],
    billing_interval,
    *,
    subscriptions_enabled: bool = True,
) -> str:
    """Human label for a subscription cadence; ``Once`` when subscriptions are off."""
    if not subscriptions_enabled:
        return ONCE

    try:
        interval = int(billing_interval)
    except (TypeError, ValueError):
        interval = 0
    period = (billing_period or "").strip().lower()

    if interval == 1:
        return _SINGLE_INTERVAL.get(period, ONCE)

    if period == "month" and interval in _NAMED_MONTHLY:
        return _NAMED_MONTHLY[interval]
    if period in _SINGLE_INTERVAL:
        return f"Every {interval} {period}s"
    return CUSTOM


def parse_frequency_label(label: str) -> Optional[Tuple[str, int]]:
    """
    Invert :func:`frequency_label`.

    Returns ``(period, interval)`` for recurring labels, ``None`` for
    ``Once``. Raises ``ValueError`` for labels that do not name a single
    cadence (``Custom`` or free text).
    """
    label = (label or "").strip()
    if label == ONCE:
        return None
    for period, name in _SINGLE_INTERVAL.items():
        if label == name:
            return period, 1
    for interval, name in _NAMED_MONTHLY.items():
        if label == name:
            return "month", interval
    match = _EVERY_N.match(label)
    if match:
        return match.group(2), int(match.group(1))
    raise ValueError(f"Unknown frequency label: {label!r}")
