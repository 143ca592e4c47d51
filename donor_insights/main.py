from __future__ import annotations

from fastapi import FastAPI

from donor_insights.core.application import create_application


def create_app() -> FastAPI:
    return create_application()


# Instância global para uvicorn: `uvicorn donor_insights.main:app --reload`
app = create_app()
