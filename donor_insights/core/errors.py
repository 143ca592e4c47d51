"""Error taxonomy shared by the resolver, the engine and the Order Store."""

from __future__ import annotations

from typing import Any, Dict, Optional


class InsightsError(RuntimeError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(InsightsError):
    """Malformed or out-of-policy request input. Always shown verbatim to the caller."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = code


class DataError(InsightsError):
    """An Order Store read failed or returned rows that cannot be used."""

    def __init__(
        self,
        message: str,
        *,
        query: Optional[str] = None,
        dimension: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.query = query
        self.dimension = dimension

    def __str__(self) -> str:
        context = ", ".join(
            f"{k}={v}" for k, v in (("query", self.query), ("dimension", self.dimension)) if v
        )
        return f"{self.message} ({context})" if context else self.message


class CalendarError(InsightsError):
    """A day-by-day period could not be built from the given bounds."""
