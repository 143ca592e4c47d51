"""FastAPI dependency providers for service layer."""

from functools import lru_cache

from donor_insights.core.cache import ResultCache, result_cache
from donor_insights.repositories.protocols import OrderStoreProtocol
from donor_insights.repositories.sql_order_store import SqlOrderStore
from donor_insights.services.aggregation_service import InsightsEngine


@lru_cache(maxsize=1)
def get_order_store() -> OrderStoreProtocol:
    return SqlOrderStore()


def get_result_cache() -> ResultCache:
    return result_cache


@lru_cache(maxsize=1)
def get_insights_engine() -> InsightsEngine:
    # Uma instância por processo: o cache de clientes vive nos processadores
    return InsightsEngine(get_order_store(), cache=get_result_cache())
