"""Market data contracts shared by the valuation and performance services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Protocol

HISTORY_RANGES = ("1d", "7d", "1mo", "3mo", "ytd", "1y", "2y", "5y", "10y", "max")


@dataclass(frozen=True)
class Quote:
    symbol: str
    last_price: Decimal | None
    previous_close: Decimal | None = None
    short_name: str | None = None


@dataclass(frozen=True)
class PricePoint:
    date: date
    close: Decimal
    open: Decimal | None = None
    high: Decimal | None = None
    low: Decimal | None = None
    volume: int | None = None


class MarketDataGateway(Protocol):
    """Best-effort market data lookups keyed by symbol.

    Symbols that fail to resolve are omitted from the returned mapping; series
    are ordered by date ascending.
    """

    async def get_quotes(self, symbols: Iterable[str]) -> dict[str, Quote]:
        ...

    async def get_historical_series(self, symbols: Iterable[str], range_: str) -> dict[str, list[PricePoint]]:
        ...


@dataclass
class InMemoryMarketData:
    """Fixed market data used by tests and offline runs."""

    quotes: dict[str, Quote] = field(default_factory=dict)
    series: dict[str, dict[str, list[PricePoint]]] = field(default_factory=dict)
    requested_ranges: list[str] = field(default_factory=list)

    def add_quote(
        self,
        symbol: str,
        price: Decimal | str | None,
        *,
        previous_close: Decimal | str | None = None,
        short_name: str | None = None,
    ) -> None:
        self.quotes[symbol] = Quote(
            symbol=symbol,
            last_price=Decimal(str(price)) if price is not None else None,
            previous_close=Decimal(str(previous_close)) if previous_close is not None else None,
            short_name=short_name,
        )

    def add_series(self, symbol: str, range_: str, closes: Iterable[tuple[date, Decimal | str]]) -> None:
        points = [PricePoint(date=day, close=Decimal(str(close))) for day, close in closes]
        self.series.setdefault(range_, {})[symbol] = sorted(points, key=lambda point: point.date)

    async def get_quotes(self, symbols: Iterable[str]) -> dict[str, Quote]:
        return {symbol: self.quotes[symbol] for symbol in symbols if symbol in self.quotes}

    async def get_historical_series(self, symbols: Iterable[str], range_: str) -> dict[str, list[PricePoint]]:
        self.requested_ranges.append(range_)
        by_symbol = self.series.get(range_, {})
        return {symbol: list(by_symbol[symbol]) for symbol in symbols if symbol in by_symbol}


__all__ = [
    "HISTORY_RANGES",
    "InMemoryMarketData",
    "MarketDataGateway",
    "PricePoint",
    "Quote",
]
