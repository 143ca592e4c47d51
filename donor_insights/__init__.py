"""Donation insights: date-range aggregation over an order store."""

__version__ = "1.0.0"
