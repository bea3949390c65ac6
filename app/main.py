from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from datastore.range_cache import build_default_cache
from logging_config import configure_logging
from services.dashboard import build_default_dashboard
from settings import get_settings
from telemetry.source import build_default_source


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    dashboard = build_default_dashboard()
    dashboard.start_periodic_refresh(get_settings().refresh_interval)
    try:
        yield
    finally:
        await dashboard.shutdown()
        build_default_dashboard.cache_clear()
        build_default_cache.cache_clear()
        build_default_source.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Weather Nowcast",
        description="Cleaned environmental telemetry and a pressure-tendency nowcast.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()
