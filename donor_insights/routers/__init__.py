"""API routers module."""

from . import health, insights

__all__ = [
    "health",
    "insights",
]
