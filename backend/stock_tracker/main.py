"""Entrypoint for the stock tracker FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from stock_tracker import __version__
from stock_tracker.api.routes import api_router
from stock_tracker.config import AppSettings, get_settings
from stock_tracker.core.logging import setup_logging
from stock_tracker.core.telemetry import setup_telemetry
from stock_tracker.db.session import Database
from stock_tracker.providers.market_data import MarketDataGateway
from stock_tracker.providers.yahoo_finance import YahooFinanceClient

logger = logging.getLogger(__name__)


def create_app(
    database: Database | None = None,
    market_data: MarketDataGateway | None = None,
    settings: AppSettings | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    database_instance = database or Database(settings.database_url)

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        await database_instance.create_all()
        owned_client = None
        if market_data is None:
            owned_client = YahooFinanceClient()
            app.state.market_data = owned_client
        logger.info("Stock tracker configuration", extra={"settings": settings.dict_for_logging()})
        try:
            yield
        finally:
            if owned_client is not None:
                await owned_client.aclose()
            if database is None:
                await database_instance.dispose()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=_lifespan)
    app.state.database = database_instance
    app.state.market_data = market_data
    setup_telemetry(app, settings, database_instance.engine)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


__all__ = ["create_app"]
