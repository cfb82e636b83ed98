"""Ledger store queries over the transactions and holdings tables."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.config import get_settings
from stock_tracker.models import Holding, Transaction


def local_today() -> date:
    """Current date in the configured market timezone."""

    return datetime.now(ZoneInfo(get_settings().timezone)).date()


async def get_transaction(session: AsyncSession, user_id: str, transaction_id: int) -> Transaction | None:
    stmt: Select = select(Transaction).where(
        Transaction.id == transaction_id,
        Transaction.user_id == user_id,
    )
    return (await session.execute(stmt)).scalars().first()


async def list_transactions(session: AsyncSession, user_id: str) -> Sequence[Transaction]:
    """Return the user's transactions newest first."""

    stmt: Select = (
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
    )
    return (await session.execute(stmt)).scalars().all()


async def list_symbol_transactions(session: AsyncSession, user_id: str, symbol: str) -> Sequence[Transaction]:
    """Return the ledger for one symbol in replay order."""

    stmt: Select = (
        select(Transaction)
        .where(Transaction.user_id == user_id, Transaction.symbol == symbol)
        .order_by(Transaction.transaction_date.asc(), Transaction.id.asc())
    )
    return (await session.execute(stmt)).scalars().all()


async def list_ledger(session: AsyncSession, user_id: str) -> Sequence[Transaction]:
    stmt: Select = (
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(Transaction.symbol.asc(), Transaction.transaction_date.asc(), Transaction.id.asc())
    )
    return (await session.execute(stmt)).scalars().all()


async def list_symbols(session: AsyncSession, user_id: str) -> list[str]:
    stmt: Select = (
        select(Transaction.symbol)
        .where(Transaction.user_id == user_id)
        .distinct()
        .order_by(Transaction.symbol)
    )
    return list((await session.execute(stmt)).scalars().all())


async def earliest_transaction_date(session: AsyncSession, user_id: str) -> date | None:
    stmt: Select = select(func.min(Transaction.transaction_date)).where(Transaction.user_id == user_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def earliest_buy_date(
    session: AsyncSession,
    user_id: str,
    symbol: str,
    *,
    exclude_id: int | None = None,
) -> date | None:
    stmt: Select = select(func.min(Transaction.transaction_date)).where(
        Transaction.user_id == user_id,
        Transaction.symbol == symbol,
        Transaction.type == "BUY",
    )
    if exclude_id is not None:
        stmt = stmt.where(Transaction.id != exclude_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def net_shares(
    session: AsyncSession,
    user_id: str,
    symbol: str,
    *,
    exclude_id: int | None = None,
) -> Decimal:
    """Sum of signed share quantities recorded for the symbol."""

    stmt: Select = select(Transaction).where(
        Transaction.user_id == user_id,
        Transaction.symbol == symbol,
    )
    if exclude_id is not None:
        stmt = stmt.where(Transaction.id != exclude_id)
    rows = (await session.execute(stmt)).scalars().all()
    return sum((row.signed_shares() for row in rows), Decimal("0"))


async def get_holding(session: AsyncSession, user_id: str, symbol: str) -> Holding | None:
    stmt: Select = select(Holding).where(Holding.user_id == user_id, Holding.symbol == symbol)
    return (await session.execute(stmt)).scalars().first()


async def list_holdings(session: AsyncSession, user_id: str) -> Sequence[Holding]:
    stmt: Select = select(Holding).where(Holding.user_id == user_id).order_by(Holding.symbol)
    return (await session.execute(stmt)).scalars().all()


__all__ = [
    "local_today",
    "earliest_buy_date",
    "earliest_transaction_date",
    "get_holding",
    "get_transaction",
    "list_holdings",
    "list_ledger",
    "list_symbol_transactions",
    "list_symbols",
    "list_transactions",
    "net_shares",
]
