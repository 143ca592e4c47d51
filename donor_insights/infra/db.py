from __future__ import annotations
import time
from typing import Any, Dict, List, Mapping, Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from donor_insights.core.config import settings
from donor_insights.core.errors import InsightsError

# -----------------------------------------------------------------------------
# Engine compartilhado (lazy: o FrameOrderStore nunca abre conexão)
# -----------------------------------------------------------------------------

_engine: Optional[Engine] = None

def get_engine() -> Engine:
    global _engine
    if _engine is not None:
        return _engine
    url = settings.DATABASE_URL
    if not url:
        raise InsightsError("DATABASE_URL não configurada.")
    _engine = create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=1800,
    )
    return _engine

def dispose_engine() -> None:
    global _engine
    eng, _engine = _engine, None
    if eng is not None:
        eng.dispose()

# -----------------------------------------------------------------------------
# Readiness
# -----------------------------------------------------------------------------

def health_check() -> Dict[str, Any]:
    """Round-trip ao banco; devolve o nome do banco e a latência em ms."""
    started = time.perf_counter()
    with get_engine().connect() as conn:
        database = conn.execute(text("SELECT current_database()")).scalar_one()
    return {
        "ok": True,
        "database": database,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
    }

# -----------------------------------------------------------------------------
# SELECT read-only com timeout por transação
# -----------------------------------------------------------------------------

def _apply_timeout(conn: Connection, timeout_ms: Optional[int]) -> None:
    # SET LOCAL vale só até o fim da transação aberta por begin()
    if timeout_ms and conn.dialect.name == "postgresql":
        conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

def fetch_all(sql: str, params: Optional[Mapping[str, Any]] = None,
              timeout_ms: Optional[int] = None) -> List[Dict[str, Any]]:
    with get_engine().begin() as conn:
        _apply_timeout(conn, timeout_ms)
        return [dict(row) for row in conn.execute(text(sql), dict(params or {})).mappings()]
