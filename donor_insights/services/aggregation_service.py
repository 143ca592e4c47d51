"""
Motor de agregação do dashboard de doações.

Resolves the requested range, picks the standard, optimized or chunked
path, attaches the requested dimension breakdown and caches whole
results only.
"""

from __future__ import annotations

import time
from datetime import date
from typing import Any, Dict, Mapping, Optional, Union

from donor_insights.core.budget import Budget
from donor_insights.core.cache import ResultCache, TTLCache, result_cache
from donor_insights.core.config import settings
from donor_insights.core.logging import engine_logger
from donor_insights.domain.dates import (
    DateRange,
    RangeClass,
    RangeName,
    chunk_range,
    classify,
    resolve_date_range,
)
from donor_insights.domain.filters import FilterDimension, FilterSet, ViewType
from donor_insights.domain.models import AggregateResult
from donor_insights.repositories.protocols import OrderStoreProtocol
from donor_insights.services.processors import FilterProcessor, build_processors

# Dimensões que toleram uma única varredura do intervalo inteiro
SINGLE_PASS_DIMENSIONS = frozenset({FilterDimension.RAISED, FilterDimension.DAYTIME})

FilterInput = Union[FilterSet, Mapping[str, Any], None]


class InsightsEngine:
    """Service for the donation insights computation."""

    def __init__(
        self,
        store: OrderStoreProtocol,
        *,
        cache: Optional[ResultCache] = None,
        processors: Optional[Dict[FilterDimension, FilterProcessor]] = None,
        subscriptions_enabled: Optional[bool] = None,
        chunk_days: Optional[int] = None,
    ):
        self.store = store
        self.cache = cache if cache is not None else result_cache
        self.subscriptions_enabled = (
            settings.SUBSCRIPTIONS_ENABLED if subscriptions_enabled is None else subscriptions_enabled
        )
        self.processors = (
            processors
            if processors is not None
            else build_processors(store, subscriptions_enabled=self.subscriptions_enabled)
        )
        self.chunk_days = settings.CHUNK_DAYS if chunk_days is None else chunk_days

    # -------------------------------------------------------------------------
    # API pública
    # -------------------------------------------------------------------------

    def compute(
        self,
        range_name: Union[str, RangeName],
        custom_from: Optional[str] = None,
        custom_to: Optional[str] = None,
        view_type: Union[str, ViewType] = ViewType.DAILY,
        filter_dimension: Union[str, FilterDimension] = FilterDimension.RAISED,
        filter_set: FilterInput = None,
        *,
        minimal: bool = False,
        budget: Optional[Budget] = None,
        today: Optional[date] = None,
    ) -> AggregateResult:
        """
        Compute totals, daily series and the requested breakdown.

        Args:
            range_name: Nome do intervalo ("last7days", "custom", ...)
            custom_from: Início (YYYY-MM-DD) quando ``range_name`` é custom
            custom_to: Fim (YYYY-MM-DD) quando ``range_name`` é custom
            view_type: "daily" ou "weekly"
            filter_dimension: Aba do breakdown ("raised" = sem breakdown)
            filter_set: Filtros dimensionais (FilterSet ou mapping)
            minimal: Pula o breakdown mesmo com aba definida
            budget: Orçamento de memória/tempo (derivado do intervalo se omitido)
            today: Âncora de "hoje" (padrão: data atual no fuso configurado)

        Raises:
            ValidationError: entrada inválida
            DataError: falha do Order Store nas métricas principais
        """
        started = time.monotonic()

        # ----- 1) Validação de entrada
        name = RangeName.parse(range_name)
        view = ViewType.parse(view_type)
        dimension = FilterDimension.parse(filter_dimension)
        filters = filter_set if isinstance(filter_set, FilterSet) else FilterSet.from_mapping(filter_set)

        # ----- 2) Intervalo e classificação
        date_range = resolve_date_range(name, custom_from, custom_to, today=today)
        range_class = classify(date_range, name)
        large = range_class is RangeClass.LARGE

        # ----- 3) Cache
        cache_key = None
        if self.cache.applies_to(filters_empty=filters.is_empty, large_range=large):
            cache_key = self.cache.key_for(
                name.value,
                date_range.start.isoformat(),
                date_range.end.isoformat(),
                view.value,
                dimension.value,
                filters.to_dict(),
                minimal=minimal,
            )
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        # ----- 4) Cálculo
        processor = None if minimal else self.processors.get(dimension)
        if budget is None:
            budget = Budget.for_range(name, date_range, flush_hooks=(self.cache.flush_runtime,))

        if not large:
            path = "standard"
            result = self._compute_window(date_range, filters, processor)
        elif dimension in SINGLE_PASS_DIMENSIONS:
            path = "optimized"
            result = self._compute_optimized(date_range, filters, processor, budget)
        else:
            path = "chunked"
            result = self._compute_chunked(date_range, filters, processor, budget)

        if view is ViewType.WEEKLY:
            result = result.to_weekly()

        # ----- 5) Só resultados completos vão para o cache
        if cache_key is not None and result.complete:
            self.cache.put(cache_key, result)

        engine_logger.info(
            "Insights computed",
            range_name=name.value,
            range_class=range_class.value,
            path=path,
            dimension=dimension.value,
            view_type=view.value,
            complete=result.complete,
            elapsed_ms=round((time.monotonic() - started) * 1000, 1),
            **date_range.to_dict(),
        )
        return result

    def compute_tab(
        self,
        range_name: Union[str, RangeName],
        filter_dimension: Union[str, FilterDimension],
        custom_from: Optional[str] = None,
        custom_to: Optional[str] = None,
        filter_set: FilterInput = None,
        *,
        today: Optional[date] = None,
    ) -> AggregateResult:
        """Aba isolada: sempre diária, sempre com breakdown."""
        return self.compute(
            range_name,
            custom_from,
            custom_to,
            ViewType.DAILY,
            filter_dimension,
            filter_set,
            today=today,
        )

    def invalidate_cache(self, scope: Optional[str] = None) -> int:
        """Limpa o cache de resultados e os caches próprios dos processadores."""
        removed = self.cache.invalidate(scope)
        for processor in self.processors.values():
            own_cache = getattr(processor, "cache", None)
            if isinstance(own_cache, TTLCache):
                own_cache.clear()
        return removed

    # -------------------------------------------------------------------------
    # Caminhos de cálculo
    # -------------------------------------------------------------------------

    def _compute_window(
        self, date_range: DateRange, filters: FilterSet, processor: Optional[FilterProcessor]
    ) -> AggregateResult:
        """Uma janela completa: esqueleto, métricas, avulsos, novos doadores e breakdown."""
        result = AggregateResult.skeleton(date_range)
        result = result.with_main_metrics(self.store.main_metrics(date_range, filters))
        if self.subscriptions_enabled:
            result = result.with_installments(self.store.subscription_metrics(date_range, filters))
        result = result.with_onetime()
        result = result.with_new_donors(self.store.new_donor_count(date_range, filters))
        if processor is not None:
            result = result.with_filter_data(processor.run(date_range, filters))
        return result

    def _compute_optimized(
        self,
        date_range: DateRange,
        filters: FilterSet,
        processor: Optional[FilterProcessor],
        budget: Budget,
    ) -> AggregateResult:
        if budget.under_pressure():
            engine_logger.warning(
                "Memory pressure before single-pass computation, continuing",
                **date_range.to_dict(),
            )
        return self._compute_window(date_range, filters, processor)

    def _compute_chunked(
        self,
        date_range: DateRange,
        filters: FilterSet,
        processor: Optional[FilterProcessor],
        budget: Budget,
    ) -> AggregateResult:
        """
        Janelas consecutivas dobradas sobre o esqueleto do intervalo inteiro.
        Memory pressure or an expired deadline stops the loop; what was
        merged so far is returned, flagged incomplete.
        """
        result = AggregateResult.skeleton(date_range)
        merge_filter_data = processor.merge if processor is not None else None
        chunks = chunk_range(date_range, self.chunk_days)
        covered: Optional[DateRange] = None

        for index, chunk in enumerate(chunks):
            reason = None
            if budget.under_pressure():
                reason = "memory"
            elif budget.expired():
                reason = "deadline"
            if reason is not None:
                engine_logger.warning(
                    "Stopping chunked computation, returning partial result",
                    reason=reason,
                    chunks_done=index,
                    chunks_total=len(chunks),
                    **date_range.to_dict(),
                )
                result = result.incomplete()
                break

            part = self._compute_window(chunk, filters, processor)
            result = result.merge(part, merge_filter_data=merge_filter_data)
            covered = DateRange(date_range.start, chunk.end)
            engine_logger.debug(
                "Chunk merged",
                chunk=index + 1,
                chunks_total=len(chunks),
                start=chunk.start.isoformat(),
                end=chunk.end.isoformat(),
            )

        if processor is not None and not result.filter_data:
            result = result.with_filter_data(processor.empty(date_range))
        elif processor is not None and covered is not None:
            # Ajuste sobre o trecho efetivamente coberto pelas janelas
            result = result.with_filter_data(processor.finish(covered, filters, result.filter_data))
        return result
