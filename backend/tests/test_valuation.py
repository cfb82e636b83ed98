"""Portfolio valuation tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from factories import make_tx
from stock_tracker.models import Holding
from stock_tracker.providers.market_data import InMemoryMarketData, PricePoint, Quote
from stock_tracker.services.holdings import recalculate_holding
from stock_tracker.services.valuation import annualized_yield, build_snapshot, get_portfolio, sparkline

TODAY = date(2024, 6, 28)
NOW = datetime(2024, 6, 28, 15, 0, tzinfo=timezone.utc)


def _holding(symbol: str, shares: str, average_cost: str, holding_id: int = 1) -> Holding:
    return Holding(
        id=holding_id,
        user_id="user-1",
        symbol=symbol,
        company_name=f"{symbol} Corp",
        shares=Decimal(shares),
        average_cost=Decimal(average_cost),
    )


def _quote(symbol: str, price: str, previous_close: str | None = None) -> Quote:
    return Quote(
        symbol=symbol,
        last_price=Decimal(price),
        previous_close=Decimal(previous_close) if previous_close else None,
    )


def _series(closes: list[str], start: date = date(2024, 6, 21)) -> list[PricePoint]:
    return [PricePoint(date=start + timedelta(days=i), close=Decimal(close)) for i, close in enumerate(closes)]


def test_holding_returns_and_weights():
    snapshot = build_snapshot(
        [_holding("AAPL", "10", "100", 1), _holding("MSFT", "5", "300", 2), _holding("NVDA", "3", "77.77", 3)],
        {
            "AAPL": _quote("AAPL", "120", "118"),
            "MSFT": _quote("MSFT", "290"),
            "NVDA": _quote("NVDA", "123.45"),
        },
        {},
        {},
        earliest=None,
        today=TODAY,
        now=NOW,
    )
    aapl = snapshot.holdings[0]
    assert aapl.current_value == Decimal("1200")
    assert aapl.cost_basis == Decimal("1000")
    assert aapl.total_return_dollars == Decimal("200")
    assert aapl.total_return_percent == Decimal("20.0000")
    assert aapl.previous_close == Decimal("118")

    msft = snapshot.holdings[1]
    assert msft.total_return_dollars == Decimal("-50")
    assert msft.total_return_percent == Decimal("-3.3333")

    assert abs(sum(item.weight for item in snapshot.holdings) - Decimal("100")) <= Decimal("0.01")
    assert snapshot.total_value == Decimal("1200") + Decimal("1450") + Decimal("370.35")
    assert snapshot.prices_updated_at == NOW


def test_missing_quote_values_holding_at_zero():
    snapshot = build_snapshot(
        [_holding("AAPL", "10", "100", 1), _holding("GONE", "4", "25", 2)],
        {"AAPL": _quote("AAPL", "110")},
        {},
        {},
        earliest=None,
        today=TODAY,
    )
    gone = snapshot.holdings[1]
    assert gone.symbol == "GONE"
    assert gone.last_price == 0
    assert gone.previous_close is None
    assert gone.current_value == 0
    assert gone.total_return_percent == Decimal("-100.0000")
    assert gone.weight == 0
    assert snapshot.holdings[0].weight == Decimal("100.0000")


def test_seven_day_return_uses_oldest_close():
    snapshot = build_snapshot(
        [_holding("AAPL", "10", "100")],
        {"AAPL": _quote("AAPL", "110")},
        {"AAPL": _series(["100", "104", "108"])},
        {},
        earliest=None,
        today=TODAY,
    )
    holding = snapshot.holdings[0]
    assert holding.seven_day_return_dollars == Decimal("100")
    assert holding.seven_day_return_percent == Decimal("10.0000")


def test_seven_day_return_is_zero_without_series():
    snapshot = build_snapshot(
        [_holding("AAPL", "10", "100")],
        {"AAPL": _quote("AAPL", "110")},
        {},
        {},
        earliest=None,
        today=TODAY,
    )
    assert snapshot.holdings[0].seven_day_return_dollars == 0
    assert snapshot.holdings[0].seven_day_return_percent == 0


def test_sparkline_downsamples_long_series():
    series = _series([str(100 + i) for i in range(252)], start=date(2023, 6, 1))
    points = sparkline(series)
    assert len(points) == 63
    assert points[0] == Decimal("100")
    assert points[1] == Decimal("104")
    assert sparkline(series[:30]) == [point.close for point in series[:30]]
    assert sparkline([]) == []


def test_annualized_yield_compounds_over_years():
    value, years = annualized_yield(Decimal("21"), Decimal("1000"), TODAY - timedelta(days=730), TODAY)
    assert years == Decimal("2.0")
    assert value == Decimal("10.01")


def test_annualized_yield_short_horizon_uses_simple_return():
    value, years = annualized_yield(Decimal("3.456"), Decimal("1000"), TODAY - timedelta(days=20), TODAY)
    assert value == Decimal("3.46")
    assert years == Decimal("0.05")


def test_annualized_yield_without_history_is_zero():
    assert annualized_yield(Decimal("12"), Decimal("1000"), None, TODAY) == (0, 0)
    assert annualized_yield(Decimal("12"), Decimal("0"), TODAY, TODAY) == (0, 0)


def test_annualized_yield_total_loss():
    value, _ = annualized_yield(Decimal("-100"), Decimal("1000"), TODAY - timedelta(days=800), TODAY)
    assert value == Decimal("-100.00")


async def test_get_portfolio_for_empty_ledger_skips_market_data(database):
    await database.create_all()
    market_data = InMemoryMarketData()
    async with database.session() as session:
        snapshot = await get_portfolio(session, market_data, user_id="nobody", today=TODAY)
    assert snapshot.holdings == []
    assert snapshot.total_value == 0
    assert snapshot.annualized_yield == 0
    assert snapshot.investment_years == 0
    assert market_data.requested_ranges == []


async def test_get_portfolio_fetches_quotes_and_series(database, market_data):
    await database.create_all()
    market_data.add_series("AAPL", "7d", [(date(2024, 6, 21), "180"), (date(2024, 6, 27), "188")])
    market_data.add_series("AAPL", "1y", [(date(2023, 6, 28) + timedelta(days=i), "150") for i in range(104)])
    async with database.session() as session:
        session.add(make_tx("BUY", "10", "150", date(2022, 6, 28)))
        await session.commit()
        await recalculate_holding(session, "user-1", "AAPL")

        snapshot = await get_portfolio(session, market_data, user_id="user-1", today=TODAY)

    assert sorted(market_data.requested_ranges) == ["1y", "7d"]
    holding = snapshot.holdings[0]
    assert holding.last_price == Decimal("190")
    assert holding.seven_day_return_dollars == Decimal("100")
    assert len(holding.sparkline) == 52
    assert snapshot.total_return_percent == Decimal("26.6667")
    assert snapshot.investment_years == Decimal("2.0")
    assert snapshot.annualized_yield == Decimal("12.54")
