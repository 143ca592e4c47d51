"""Uma implementação por dimensão; "raised" não tem breakdown."""

from __future__ import annotations

from typing import Dict, Optional

from donor_insights.domain.filters import FilterDimension
from donor_insights.repositories.protocols import OrderStoreProtocol
from donor_insights.services.processors.base import FilterProcessor
from donor_insights.services.processors.countries import CountryProcessor
from donor_insights.services.processors.customers import CustomerProcessor
from donor_insights.services.processors.daytime import DaytimeProcessor
from donor_insights.services.processors.designations import DesignationProcessor
from donor_insights.services.processors.frequencies import FrequencyProcessor
from donor_insights.services.processors.payment_methods import PaymentMethodProcessor
from donor_insights.services.processors.url_performance import UrlPerformanceProcessor

PROCESSOR_CLASSES = {
    FilterDimension.PAYMENT_METHODS: PaymentMethodProcessor,
    FilterDimension.COUNTRIES: CountryProcessor,
    FilterDimension.DAYTIME: DaytimeProcessor,
    FilterDimension.DESIGNATIONS: DesignationProcessor,
    FilterDimension.URL: UrlPerformanceProcessor,
    FilterDimension.FREQUENCIES: FrequencyProcessor,
    FilterDimension.CUSTOMERS: CustomerProcessor,
}


def build_processors(
    store: OrderStoreProtocol, *, subscriptions_enabled: Optional[bool] = None
) -> Dict[FilterDimension, FilterProcessor]:
    return {
        dimension: cls(store, subscriptions_enabled=subscriptions_enabled)
        for dimension, cls in PROCESSOR_CLASSES.items()
    }
