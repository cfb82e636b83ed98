"""Holding recalculation from the transaction ledger.

A holding is never edited directly. Every ledger change replays the user's
transactions for the symbol through a single weighted-average cost pool:

* BUY adds ``shares * price`` to the pool cost and the shares to the pool.
* SELL removes shares at the pool's average cost at the time of sale
  (quantized to 4 dp). A SELL against an empty pool leaves it untouched.

The resulting average cost is quantized to 2 dp. Positions that end at zero or
negative shares have their holding row removed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Protocol

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.models import Holding
from stock_tracker.services import ledger
from stock_tracker.services.errors import HoldingConsistencyError

logger = logging.getLogger(__name__)

SALE_COST_QUANT = Decimal("0.0001")
AVERAGE_COST_QUANT = Decimal("0.01")
_ZERO = Decimal("0")


class LedgerEntry(Protocol):
    type: str
    symbol: str
    company_name: str | None
    shares: Decimal
    price_per_share: Decimal


@dataclass(frozen=True)
class Position:
    symbol: str
    company_name: str | None
    shares: Decimal
    average_cost: Decimal
    total_cost: Decimal


@dataclass
class RecalculationReport:
    symbols: list[str] = field(default_factory=list)
    recalculated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def compute_position(transactions: Iterable[LedgerEntry]) -> Position | None:
    """Replay transactions in ledger order; ``None`` when no shares remain."""

    total_shares = _ZERO
    total_cost = _ZERO
    symbol: str | None = None
    company_name: str | None = None

    for tx in transactions:
        symbol = tx.symbol
        company_name = tx.company_name
        shares = Decimal(tx.shares)
        if tx.type == "BUY":
            total_cost += shares * Decimal(tx.price_per_share)
            total_shares += shares
        elif tx.type == "SELL" and total_shares > _ZERO:
            avg_cost_at_sale = (total_cost / total_shares).quantize(SALE_COST_QUANT, rounding=ROUND_HALF_UP)
            total_cost -= shares * avg_cost_at_sale
            total_shares -= shares

    if symbol is None or total_shares <= _ZERO:
        return None
    average_cost = (total_cost / total_shares).quantize(AVERAGE_COST_QUANT, rounding=ROUND_HALF_UP)
    return Position(
        symbol=symbol,
        company_name=company_name,
        shares=total_shares,
        average_cost=average_cost,
        total_cost=total_cost,
    )


def _apply(holding: Holding, position: Position) -> None:
    holding.company_name = position.company_name
    holding.shares = position.shares
    holding.average_cost = position.average_cost


async def _upsert_holding(session: AsyncSession, user_id: str, position: Position) -> Holding:
    existing = await ledger.get_holding(session, user_id, position.symbol)
    if existing is not None:
        _apply(existing, position)
        await session.flush()
        logger.info("Updated holding %s for user %s: %s shares", position.symbol, user_id, position.shares)
        return existing

    holding = Holding(user_id=user_id, symbol=position.symbol)
    _apply(holding, position)
    try:
        # The savepoint confines a duplicate-key failure to the holding insert.
        async with session.begin_nested():
            session.add(holding)
    except IntegrityError:
        logger.warning("Holding %s for user %s created concurrently; retrying as update", position.symbol, user_id)
        existing = await ledger.get_holding(session, user_id, position.symbol)
        if existing is None:
            logger.error(
                "Holding %s for user %s missing after duplicate key error", position.symbol, user_id
            )
            raise HoldingConsistencyError(
                f"Failed to update holding {position.symbol} after duplicate key error"
            ) from None
        _apply(existing, position)
        await session.flush()
        logger.info("Updated holding %s for user %s after conflict", position.symbol, user_id)
        return existing

    logger.info("Created holding %s for user %s: %s shares", position.symbol, user_id, position.shares)
    return holding


async def recalculate_holding(
    session: AsyncSession,
    user_id: str,
    symbol: str,
    *,
    commit: bool = True,
) -> Holding | None:
    """Rebuild the holding for ``symbol`` from the ledger.

    With ``commit=False`` the change is only flushed, so a caller can commit it
    together with the ledger write that triggered it.
    """

    transactions = await ledger.list_symbol_transactions(session, user_id, symbol)
    position = compute_position(transactions)
    if position is None:
        result = await session.execute(
            delete(Holding).where(Holding.user_id == user_id, Holding.symbol == symbol)
        )
        if commit:
            await session.commit()
        if result.rowcount:
            logger.info("Removed holding %s for user %s", symbol, user_id)
        return None

    holding = await _upsert_holding(session, user_id, position)
    if commit:
        await session.commit()
    return holding


async def recalculate_all(session: AsyncSession, user_id: str, *, attempts: int = 2) -> RecalculationReport:
    """Recalculate every symbol the user has transacted, isolating failures per symbol."""

    report = RecalculationReport(symbols=await ledger.list_symbols(session, user_id))
    for symbol in report.symbols:
        for attempt in range(1, attempts + 1):
            try:
                holding = await recalculate_holding(session, user_id, symbol)
            except (SQLAlchemyError, HoldingConsistencyError) as exc:
                await session.rollback()
                logger.exception(
                    "Recalculation of %s for user %s failed (attempt %d/%d)", symbol, user_id, attempt, attempts
                )
                if attempt == attempts:
                    report.failed[symbol] = str(exc)
                continue
            if holding is None:
                report.removed.append(symbol)
            else:
                report.recalculated.append(symbol)
            break

    logger.info(
        "Recalculated %d holdings for user %s (%d removed, %d failed)",
        len(report.recalculated),
        user_id,
        len(report.removed),
        len(report.failed),
    )
    return report


__all__ = [
    "AVERAGE_COST_QUANT",
    "Position",
    "RecalculationReport",
    "SALE_COST_QUANT",
    "compute_position",
    "recalculate_all",
    "recalculate_holding",
]
