"""Processadores de dimensão (um por aba do dashboard)."""

from .base import FilterProcessor
from .countries import CountryProcessor
from .customers import CustomerProcessor
from .daytime import DaytimeProcessor
from .designations import DesignationProcessor
from .frequencies import FrequencyProcessor
from .payment_methods import PaymentMethodProcessor, normalize_payment_method
from .registry import PROCESSOR_CLASSES, build_processors
from .url_performance import UrlPerformanceProcessor

__all__ = [
    "build_processors",
    "CountryProcessor",
    "CustomerProcessor",
    "DaytimeProcessor",
    "DesignationProcessor",
    "FilterProcessor",
    "FrequencyProcessor",
    "normalize_payment_method",
    "PaymentMethodProcessor",
    "PROCESSOR_CLASSES",
    "UrlPerformanceProcessor",
]
