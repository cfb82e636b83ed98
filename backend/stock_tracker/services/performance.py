"""Historical portfolio value reconstructed from the ledger and price history."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.models import Holding, Transaction
from stock_tracker.providers.market_data import HISTORY_RANGES, MarketDataGateway, PricePoint
from stock_tracker.services import ledger
from stock_tracker.services.errors import ValidationError
from stock_tracker.services.valuation import percent

logger = logging.getLogger(__name__)

PERFORMANCE_RANGES = HISTORY_RANGES + ("all",)
_ZERO = Decimal("0")


@dataclass(frozen=True)
class PerformancePoint:
    date: date
    total_value: Decimal
    daily_change: Decimal
    daily_change_percent: Decimal


def range_for_history(earliest: date | None, today: date) -> str:
    """Pick the smallest fixed range that covers the whole ledger."""

    if earliest is None:
        return "1y"
    years = (today - earliest).days // 365
    if years < 1:
        return "1y"
    if years < 2:
        return "2y"
    if years < 5:
        return "5y"
    if years < 10:
        return "10y"
    return "max"


def _closes_by_date(series: Mapping[str, Sequence[PricePoint]]) -> dict[str, dict[date, Decimal]]:
    return {symbol: {point.date: point.close for point in points} for symbol, points in series.items()}


def _series_dates(series: Mapping[str, Sequence[PricePoint]], today: date) -> list[date]:
    # Today's bar may still be moving, so it is left out.
    return sorted({point.date for points in series.values() for point in points if point.date < today})


def _with_changes(totals: Iterable[tuple[date, Decimal]]) -> list[PerformancePoint]:
    points: list[PerformancePoint] = []
    previous: Decimal | None = None
    for day, total in totals:
        if previous is None:
            change = _ZERO
            change_percent = _ZERO
        else:
            change = total - previous
            change_percent = percent(change, previous)
        points.append(
            PerformancePoint(date=day, total_value=total, daily_change=change, daily_change_percent=change_percent)
        )
        previous = total
    return points


def reconstruct_from_ledger(
    transactions: Sequence[Transaction],
    series: Mapping[str, Sequence[PricePoint]],
    today: date,
) -> list[PerformancePoint]:
    """Value the positions held on each series date using only prices from that date."""

    by_symbol: dict[str, list[Transaction]] = defaultdict(list)
    for tx in transactions:
        by_symbol[tx.symbol].append(tx)
    closes = _closes_by_date(series)

    totals: list[tuple[date, Decimal]] = []
    for day in _series_dates(series, today):
        total = _ZERO
        for symbol, symbol_txs in by_symbol.items():
            close = closes.get(symbol, {}).get(day)
            if close is None:
                continue
            held = sum((tx.signed_shares() for tx in symbol_txs if tx.transaction_date <= day), _ZERO)
            if held > 0:
                total += held * close
        if total != 0:
            totals.append((day, total))
    return _with_changes(totals)


def reconstruct_from_holdings(
    holdings: Sequence[Holding],
    series: Mapping[str, Sequence[PricePoint]],
    today: date,
) -> list[PerformancePoint]:
    """Apply today's share counts to every historical close.

    Only used when no ledger exists; earlier dates are valued with positions
    that may not have been held yet.
    """

    totals: dict[date, Decimal] = defaultdict(lambda: _ZERO)
    for holding in holdings:
        for point in series.get(holding.symbol, ()):
            if point.date < today:
                totals[point.date] += Decimal(holding.shares) * point.close
    return _with_changes(sorted(totals.items()))


async def get_performance_history(
    session: AsyncSession,
    market_data: MarketDataGateway,
    *,
    user_id: str,
    range_: str = "1mo",
    today: date | None = None,
) -> list[PerformancePoint]:
    if range_ not in PERFORMANCE_RANGES:
        raise ValidationError(
            f"Unsupported range. Expected one of: {', '.join(PERFORMANCE_RANGES)}",
            field="range",
            value=range_,
        )

    holdings = await ledger.list_holdings(session, user_id)
    if not holdings:
        return []

    today = today or ledger.local_today()
    effective_range = range_
    if range_ == "all":
        earliest = await ledger.earliest_transaction_date(session, user_id)
        effective_range = range_for_history(earliest, today)

    symbols = [holding.symbol for holding in holdings]
    series = await market_data.get_historical_series(symbols, effective_range)

    transactions = await ledger.list_ledger(session, user_id)
    if transactions:
        return reconstruct_from_ledger(transactions, series, today)

    logger.warning(
        "No ledger for user %s; performance uses current share counts for every date and is approximate",
        user_id,
    )
    return reconstruct_from_holdings(holdings, series, today)


__all__ = [
    "PERFORMANCE_RANGES",
    "PerformancePoint",
    "get_performance_history",
    "range_for_history",
    "reconstruct_from_holdings",
    "reconstruct_from_ledger",
]
