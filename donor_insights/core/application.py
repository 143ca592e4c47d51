"""
Application builder.
Monta a aplicação FastAPI em passos encadeáveis (middlewares, rotas,
ciclo de vida, erros); ``build()`` recusa um app com passo faltando.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Set

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

import donor_insights
from donor_insights.core.config import Settings, settings
from donor_insights.core.errors import DataError, InsightsError, ValidationError
from donor_insights.core.logging import api_logger, app_logger, init_app_logging
from donor_insights.infra.db import dispose_engine, health_check
from donor_insights.routers import health, insights

GENERIC_DATA_ERROR = "Could not load dashboard data. Please try again later."
DEV_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Banco fora do ar não impede o boot; /readyz reporta o estado
    try:
        info = health_check()
        app_logger.info("Database reachable", database=info["database"], latency_ms=info["latency_ms"])
    except (SQLAlchemyError, InsightsError) as exc:
        app_logger.warning("Database not reachable at startup", error=str(exc))
    yield
    dispose_engine()
    app_logger.info("Engine disposed, shutting down")


class ApplicationBuilder:
    STEPS = ("middlewares", "routes", "lifespan", "error_handlers")

    def __init__(self, config: Settings = settings):
        self.config = config
        self.app = FastAPI(
            title=config.APP_NAME,
            version=donor_insights.__version__,
            description="Donation insights: totals, daily series and per-dimension breakdowns",
        )
        self._applied: Set[str] = set()

    def _mark(self, step: str) -> None:
        if step in self._applied:
            raise RuntimeError(f"Step '{step}' already applied")
        self._applied.add(step)

    def with_middlewares(self) -> ApplicationBuilder:
        self._mark("middlewares")
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.CORS_ORIGINS_LIST or DEV_ORIGINS,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
            expose_headers=["ETag", "X-Response-Time-Ms"],
        )

        @self.app.middleware("http")
        async def timed(request: Request, call_next):
            started = time.perf_counter()
            response = await call_next(request)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
            response.headers["X-Response-Time-Ms"] = str(elapsed_ms)
            api_logger.info(
                "Request handled",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                elapsed_ms=elapsed_ms,
            )
            return response

        return self

    def with_routes(self) -> ApplicationBuilder:
        self._mark("routes")
        self.app.include_router(health.router)
        self.app.include_router(insights.router)

        @self.app.get("/")
        def index():
            return {
                "name": self.config.APP_NAME,
                "version": donor_insights.__version__,
                "env": self.config.ENV,
                "endpoints": ["/insights/dashboard", "/insights/tab", "/insights/cache/clear", "/healthz", "/readyz"],
            }

        return self

    def with_lifespan(self) -> ApplicationBuilder:
        self._mark("lifespan")
        self.app.router.lifespan_context = lifespan
        return self

    def with_error_handlers(self) -> ApplicationBuilder:
        """ValidationError vira 400 com a mensagem; DataError vira 500 genérico."""
        self._mark("error_handlers")

        @self.app.exception_handler(ValidationError)
        async def on_validation_error(request: Request, exc: ValidationError):
            api_logger.info("Request rejected", code=exc.code, path=request.url.path)
            return JSONResponse(status_code=400, content={"message": exc.message, "code": exc.code})

        @self.app.exception_handler(DataError)
        async def on_data_error(request: Request, exc: DataError):
            # Detalhes do storage ficam só no log
            api_logger.error(
                "Data error while serving request",
                exc=exc,
                path=request.url.path,
                query=exc.query,
                dimension=exc.dimension,
            )
            return JSONResponse(status_code=500, content={"message": GENERIC_DATA_ERROR, "code": "data_error"})

        return self

    def build(self) -> FastAPI:
        missing = [step for step in self.STEPS if step not in self._applied]
        if missing:
            raise RuntimeError(f"Application steps missing: {', '.join(missing)}")
        app_logger.info("Application built", app=self.config.APP_NAME, env=self.config.ENV)
        return self.app


def create_application() -> FastAPI:
    init_app_logging()
    return (
        ApplicationBuilder()
        .with_middlewares()
        .with_routes()
        .with_lifespan()
        .with_error_handlers()
        .build()
    )
