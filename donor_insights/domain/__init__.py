"""
Modelos de domínio e DTOs para a aplicação.
Camada de domínio independente de infraestrutura.
"""

from .dates import DateRange, RangeClass, RangeName, resolve_date_range
from .filters import FilterDimension, FilterSet, ViewType
from .models import AggregateResult

__all__ = [
    "AggregateResult",
    "DateRange",
    "FilterDimension",
    "FilterSet",
    "RangeClass",
    "RangeName",
    "ViewType",
    "resolve_date_range",
]
