"""Portfolio valuation from holdings and live market data."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.models import Holding
from stock_tracker.providers.market_data import MarketDataGateway, PricePoint, Quote
from stock_tracker.services import ledger

logger = logging.getLogger(__name__)

SPARKLINE_POINTS = 52
DAYS_PER_YEAR = Decimal("365.25")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def round_half_up(value: Decimal, places: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def percent(numerator: Decimal, denominator: Decimal, places: int = 4) -> Decimal:
    """``numerator / denominator * 100`` rounded once; 0 for a zero denominator."""

    if denominator == 0:
        return _ZERO
    return round_half_up(numerator / denominator * _HUNDRED, places)


@dataclass
class HoldingValuation:
    id: int
    symbol: str
    company_name: str | None
    shares: Decimal
    average_cost: Decimal
    last_price: Decimal
    previous_close: Decimal | None
    current_value: Decimal
    cost_basis: Decimal
    total_return_dollars: Decimal
    total_return_percent: Decimal
    seven_day_return_dollars: Decimal = _ZERO
    seven_day_return_percent: Decimal = _ZERO
    weight: Decimal = _ZERO
    sparkline: list[Decimal] = field(default_factory=list)


@dataclass
class PortfolioSnapshot:
    holdings: list[HoldingValuation]
    total_value: Decimal
    total_cost: Decimal
    total_return_dollars: Decimal
    total_return_percent: Decimal
    annualized_yield: Decimal
    investment_years: Decimal
    prices_updated_at: datetime


def sparkline(series: Sequence[PricePoint]) -> list[Decimal]:
    if not series:
        return []
    step = max(1, len(series) // SPARKLINE_POINTS)
    return [point.close for point in series[::step]]


def annualized_yield(
    total_return_percent: Decimal,
    total_cost: Decimal,
    earliest: date | None,
    today: date,
) -> tuple[Decimal, Decimal]:
    """Return ``(annualized_yield, investment_years)`` for the whole ledger."""

    if earliest is None or total_cost <= 0:
        return _ZERO, _ZERO
    years = Decimal((today - earliest).days) / DAYS_PER_YEAR
    if years < Decimal("0.1"):
        return round_half_up(total_return_percent, 2), round_half_up(years, 2)

    growth = 1 + float(total_return_percent) / 100
    if growth <= 0:
        cagr = -100.0
    else:
        cagr = (growth ** (1 / float(years)) - 1) * 100
    return round_half_up(Decimal(str(cagr)), 2), round_half_up(years, 1)


def value_holding(
    holding: Holding,
    quote: Quote | None,
    series_7d: Sequence[PricePoint] | None,
    series_1y: Sequence[PricePoint] | None,
) -> HoldingValuation:
    shares = Decimal(holding.shares)
    average_cost = Decimal(holding.average_cost)
    last_price = quote.last_price if quote is not None and quote.last_price is not None else _ZERO
    previous_close = quote.previous_close if quote is not None else None

    current_value = last_price * shares
    cost_basis = average_cost * shares
    return_dollars = current_value - cost_basis

    valuation = HoldingValuation(
        id=holding.id,
        symbol=holding.symbol,
        company_name=holding.company_name,
        shares=shares,
        average_cost=average_cost,
        last_price=last_price,
        previous_close=previous_close,
        current_value=current_value,
        cost_basis=cost_basis,
        total_return_dollars=return_dollars,
        total_return_percent=percent(return_dollars, cost_basis),
        sparkline=sparkline(series_1y or []),
    )
    if series_7d:
        price_7d_ago = series_7d[0].close
        change = last_price - price_7d_ago
        valuation.seven_day_return_dollars = change * shares
        valuation.seven_day_return_percent = percent(change, price_7d_ago)
    return valuation


def build_snapshot(
    holdings: Sequence[Holding],
    quotes: Mapping[str, Quote],
    series_7d: Mapping[str, Sequence[PricePoint]],
    series_1y: Mapping[str, Sequence[PricePoint]],
    *,
    earliest: date | None,
    today: date,
    now: datetime | None = None,
) -> PortfolioSnapshot:
    valuations = [
        value_holding(holding, quotes.get(holding.symbol), series_7d.get(holding.symbol), series_1y.get(holding.symbol))
        for holding in holdings
    ]
    total_value = sum((item.current_value for item in valuations), _ZERO)
    total_cost = sum((item.cost_basis for item in valuations), _ZERO)
    for item in valuations:
        item.weight = percent(item.current_value, total_value)

    total_return = total_value - total_cost
    if total_cost > 0:
        raw_return_percent = total_return / total_cost * _HUNDRED
    else:
        raw_return_percent = _ZERO
    yield_value, years = annualized_yield(raw_return_percent, total_cost, earliest, today)
    return PortfolioSnapshot(
        holdings=valuations,
        total_value=total_value,
        total_cost=total_cost,
        total_return_dollars=total_return,
        total_return_percent=round_half_up(raw_return_percent, 4),
        annualized_yield=yield_value,
        investment_years=years,
        prices_updated_at=now or datetime.now(timezone.utc),
    )


def empty_snapshot(now: datetime | None = None) -> PortfolioSnapshot:
    return PortfolioSnapshot(
        holdings=[],
        total_value=_ZERO,
        total_cost=_ZERO,
        total_return_dollars=_ZERO,
        total_return_percent=_ZERO,
        annualized_yield=_ZERO,
        investment_years=_ZERO,
        prices_updated_at=now or datetime.now(timezone.utc),
    )


async def get_portfolio(
    session: AsyncSession,
    market_data: MarketDataGateway,
    *,
    user_id: str,
    today: date | None = None,
) -> PortfolioSnapshot:
    holdings = await ledger.list_holdings(session, user_id)
    if not holdings:
        return empty_snapshot()

    symbols = [holding.symbol for holding in holdings]
    quotes, series_7d, series_1y = await asyncio.gather(
        market_data.get_quotes(symbols),
        market_data.get_historical_series(symbols, "7d"),
        market_data.get_historical_series(symbols, "1y"),
    )
    missing = sorted(set(symbols) - set(quotes))
    if missing:
        logger.warning("No quotes for %s; valuing at zero", ", ".join(missing))

    earliest = await ledger.earliest_transaction_date(session, user_id)
    return build_snapshot(
        holdings,
        quotes,
        series_7d,
        series_1y,
        earliest=earliest,
        today=today or ledger.local_today(),
    )


__all__ = [
    "HoldingValuation",
    "PortfolioSnapshot",
    "annualized_yield",
    "build_snapshot",
    "empty_snapshot",
    "get_portfolio",
    "percent",
    "round_half_up",
    "sparkline",
    "value_holding",
]
