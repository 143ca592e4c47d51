"""Insights dashboard endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from donor_insights.core.cache import etag_json
from donor_insights.core.logging import api_logger
from donor_insights.services.aggregation_service import InsightsEngine
from donor_insights.services.dependencies import get_insights_engine

router = APIRouter(prefix="/insights", tags=["insights"])


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------


class InsightsRequest(BaseModel):
    """Dashboard request body."""
    date_range: str = "last7days"
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    view_type: str = "daily"
    filter: str = "raised"
    filters: Dict[str, Any] = Field(default_factory=dict)
    minimal: bool = False


class TabRequest(BaseModel):
    """Single-tab request body (always daily)."""
    date_range: str = "last7days"
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    filter: str = "raised"
    filters: Dict[str, Any] = Field(default_factory=dict)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# -----------------------------------------------------------------------------
# Endpoints
# -----------------------------------------------------------------------------


@router.post("/dashboard")
def dashboard(
    body: InsightsRequest,
    request: Request,
    engine: InsightsEngine = Depends(get_insights_engine),
):
    """Totais, séries e breakdown da aba pedida."""
    api_logger.info(
        "Dashboard request",
        date_range=body.date_range,
        view_type=body.view_type,
        dimension=body.filter,
        filters=body.filters,
        minimal=body.minimal,
    )
    result = engine.compute(
        body.date_range,
        body.date_from,
        body.date_to,
        body.view_type,
        body.filter,
        body.filters,
        minimal=body.minimal,
    )
    data = result.to_dict()
    # timestamp fica fora do ETag para permitir 304 entre chamadas iguais
    return etag_json(request, {**data, "timestamp": _timestamp()}, etag_source=data)


@router.post("/tab")
def tab(
    body: TabRequest,
    request: Request,
    engine: InsightsEngine = Depends(get_insights_engine),
):
    """Dados de uma aba isolada."""
    result = engine.compute_tab(
        body.date_range,
        body.filter,
        body.date_from,
        body.date_to,
        body.filters,
    )
    data = result.to_dict()
    return etag_json(request, {**data, "timestamp": _timestamp()}, etag_source=data)


@router.post("/cache/clear")
def clear_cache(engine: InsightsEngine = Depends(get_insights_engine)):
    """Invalida todos os resultados em cache."""
    removed = engine.invalidate_cache()
    api_logger.info("Cache cleared on request", removed=removed)
    return {"cleared": True, "removed": removed}
