"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from automation_engine.api.error_handlers import register_exception_handlers
from automation_engine.api.routers import get_api_router
from automation_engine.core.config import AppSettings, get_settings
from automation_engine.core.database import engine
from automation_engine.core.logging import configure_logging
from automation_engine.models import Base

LOGGER = logging.getLogger("automation_engine.main")


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: D401
    """Application lifespan context for startup/shutdown hooks."""

    settings = get_settings()
    if settings.environment == "local":
        # Local runs skip alembic; every other environment migrates explicitly.
        Base.metadata.create_all(bind=engine)
    LOGGER.info("service_started", extra={"environment": settings.environment})
    yield
    LOGGER.info("service_stopped")


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Notification Automation Engine",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(get_api_router())
    return app


app = create_app()
