from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from donor_insights.core.errors import InsightsError
from donor_insights.core.logging import api_logger
from donor_insights.infra.db import health_check

router = APIRouter()

@router.get("/healthz")
def healthz():
    return {"status": "ok"}

@router.get("/readyz")
def readyz():
    try:
        return health_check()
    except (SQLAlchemyError, InsightsError) as exc:
        api_logger.warning("Readiness check failed", error=str(exc))
        return JSONResponse(status_code=503, content={"ok": False, "error": "database unavailable"})
