"""Yahoo Finance chart client used for quotes and daily price history."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Iterable, TypeVar

import httpx
import pandas as pd
from opentelemetry.propagate import inject

from stock_tracker.config import get_settings
from stock_tracker.providers.market_data import HISTORY_RANGES, PricePoint, Quote

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko)",
    "Accept": "application/json",
}


class MarketDataError(RuntimeError):
    """Raised when the chart endpoint returns an error or an unusable payload."""


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or pd.isna(value):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _chart_result(payload: dict[str, Any], symbol: str) -> dict[str, Any]:
    chart = payload.get("chart") or {}
    error = chart.get("error")
    if error:
        description = error.get("description") if isinstance(error, dict) else error
        raise MarketDataError(f"Chart error for {symbol}: {description}")
    results = chart.get("result") or []
    if not results or not isinstance(results[0], dict):
        raise MarketDataError(f"Empty chart result for {symbol}")
    return results[0]


def parse_quote(payload: dict[str, Any], symbol: str) -> Quote | None:
    """Build a quote from the chart ``meta`` block, or ``None`` without a price."""

    meta = _chart_result(payload, symbol).get("meta") or {}
    price = _to_decimal(meta.get("regularMarketPrice"))
    if price is None:
        return None
    previous_close = _to_decimal(meta.get("chartPreviousClose", meta.get("previousClose")))
    return Quote(
        symbol=meta.get("symbol") or symbol,
        last_price=price,
        previous_close=previous_close,
        short_name=meta.get("shortName") or meta.get("longName"),
    )


def _parse_frame(result: dict[str, Any]) -> pd.DataFrame:
    timestamps = result.get("timestamp") or []
    if not timestamps:
        return pd.DataFrame()
    indicators = result.get("indicators") or {}
    quote_block = (indicators.get("quote") or [{}])[0] or {}
    columns: dict[str, Any] = {"timestamp": timestamps}
    for column in ("open", "high", "low", "close", "volume"):
        values = quote_block.get(column)
        if not values or len(values) != len(timestamps):
            values = [None] * len(timestamps)
        columns[column] = values

    df = pd.DataFrame(columns).dropna(subset=["close"])
    if df.empty:
        return df
    exchange_tz = (result.get("meta") or {}).get("exchangeTimezoneName") or "UTC"
    stamps = pd.to_datetime(df["timestamp"], unit="s", utc=True)
    try:
        stamps = stamps.dt.tz_convert(exchange_tz)
    except KeyError:  # unknown zone names fall back to UTC dates
        logger.debug("Unknown exchange timezone %s; using UTC dates", exchange_tz)
    df["date"] = stamps.dt.date
    return df.drop_duplicates(subset="date", keep="last").sort_values("date")


def parse_history(payload: dict[str, Any], symbol: str) -> list[PricePoint]:
    """Convert a chart payload into price points ordered by date ascending."""

    df = _parse_frame(_chart_result(payload, symbol))
    points: list[PricePoint] = []
    for row in df.itertuples(index=False):
        close = _to_decimal(row.close)
        if close is None:
            continue
        volume = None if pd.isna(row.volume) else int(row.volume)
        points.append(
            PricePoint(
                date=row.date,
                close=close,
                open=_to_decimal(row.open),
                high=_to_decimal(row.high),
                low=_to_decimal(row.low),
                volume=volume,
            )
        )
    return points


class YahooFinanceClient:
    """Chart endpoint client with bounded concurrent per-symbol requests."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        connect_timeout_seconds: float | None = None,
        max_concurrency: int | None = None,
        client: httpx.AsyncClient | Any | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.yahoo_chart_url).rstrip("/")
        self.max_concurrency = max_concurrency or settings.market_data_max_concurrency
        timeout = httpx.Timeout(
            timeout_seconds or settings.market_data_timeout_seconds,
            connect=connect_timeout_seconds or settings.market_data_connect_timeout_seconds,
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=_DEFAULT_HEADERS)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _chart(self, symbol: str, range_: str) -> dict[str, Any]:
        headers: dict[str, str] = {}
        inject(headers)
        response = await self._client.get(
            f"{self.base_url}/{symbol}",
            params={"interval": "1d", "range": range_},
            headers=headers,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise MarketDataError(f"Unexpected chart payload for {symbol}")
        return payload

    async def get_quote(self, symbol: str) -> Quote | None:
        return parse_quote(await self._chart(symbol, "1d"), symbol)

    async def get_history(self, symbol: str, range_: str) -> list[PricePoint]:
        return parse_history(await self._chart(symbol, range_), symbol)

    async def get_quotes(self, symbols: Iterable[str]) -> dict[str, Quote]:
        return await self._fan_out(symbols, self.get_quote, "quote")

    async def get_historical_series(self, symbols: Iterable[str], range_: str) -> dict[str, list[PricePoint]]:
        if range_ not in HISTORY_RANGES:
            raise ValueError(f"Unsupported history range: {range_}")

        async def _fetch(symbol: str) -> list[PricePoint] | None:
            return await self.get_history(symbol, range_) or None

        return await self._fan_out(symbols, _fetch, f"{range_} history")

    async def _fan_out(
        self,
        symbols: Iterable[str],
        fetch: Callable[[str], Awaitable[T | None]],
        label: str,
    ) -> dict[str, T]:
        unique = list(dict.fromkeys(symbol for symbol in symbols if symbol))
        if not unique:
            return {}
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(symbol: str) -> T | None:
            async with semaphore:
                return await fetch(symbol)

        results = await asyncio.gather(*(_bounded(symbol) for symbol in unique), return_exceptions=True)
        resolved: dict[str, T] = {}
        for symbol, result in zip(unique, results):
            if isinstance(result, Exception):
                logger.warning("Failed to fetch %s for %s: %s", label, symbol, result)
                continue
            if isinstance(result, BaseException):
                raise result
            if result is None:
                logger.info("No %s data returned for %s", label, symbol)
                continue
            resolved[symbol] = result
        return resolved


__all__ = [
    "MarketDataError",
    "YahooFinanceClient",
    "parse_history",
    "parse_quote",
]
