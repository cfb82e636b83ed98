"""Shared FastAPI dependencies for the stock tracker API."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.config import get_settings
from stock_tracker.db.session import Database
from stock_tracker.providers.market_data import MarketDataGateway


async def get_db_session(request: Request) -> AsyncIterator[AsyncSession]:
    database: Database = request.app.state.database
    async for session in database.get_session():  # pragma: no cover - FastAPI dependency wrapper
        yield session


def get_market_data(request: Request) -> MarketDataGateway:
    return request.app.state.market_data


def verify_internal_token(x_internal_token: str | None = Header(default=None)) -> None:
    settings = get_settings()
    if settings.internal_auth_token is None:
        return
    if x_internal_token != settings.internal_auth_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid internal token")


InternalAuth = Depends(verify_internal_token)


@dataclass
class RequestContext:
    user_id: str


def get_request_context(x_user_id: str | None = Header(default=None)) -> RequestContext:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user context")
    return RequestContext(user_id=x_user_id.strip())


__all__ = [
    "InternalAuth",
    "RequestContext",
    "get_db_session",
    "get_market_data",
    "get_request_context",
]
