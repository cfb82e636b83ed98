"""Holding recalculation tests."""

from __future__ import annotations

import random
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from factories import make_tx
from stock_tracker.models import Holding
from stock_tracker.services import ledger
from stock_tracker.services.errors import HoldingConsistencyError
from stock_tracker.services.holdings import compute_position, recalculate_all, recalculate_holding

D0 = date(2024, 1, 2)


def test_buys_average_to_weighted_mean():
    position = compute_position(
        [
            make_tx("BUY", "10", "100", D0),
            make_tx("BUY", "30", "120", D0 + timedelta(days=1)),
        ]
    )
    assert position is not None
    assert position.shares == Decimal("40")
    assert position.average_cost == Decimal("115.00")


def test_buy_only_average_matches_weighted_mean_for_random_ledgers():
    rng = random.Random(7)
    for _ in range(50):
        txs = []
        for offset in range(rng.randint(1, 8)):
            shares = Decimal(rng.randint(1, 500)) / 4
            price = Decimal(rng.randint(100, 90000)) / 100
            txs.append(make_tx("BUY", str(shares), str(price), D0 + timedelta(days=offset)))
        position = compute_position(txs)
        total_shares = sum(tx.shares for tx in txs)
        expected = (sum(tx.shares * tx.price_per_share for tx in txs) / total_shares).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        assert position is not None
        assert position.shares == total_shares
        assert position.average_cost == expected


def test_sell_reduces_pool_at_average_cost():
    position = compute_position(
        [
            make_tx("BUY", "10", "100", D0),
            make_tx("BUY", "10", "110", D0 + timedelta(days=1)),
            make_tx("SELL", "5", "150", D0 + timedelta(days=2)),
        ]
    )
    assert position is not None
    assert position.shares == Decimal("15")
    assert position.total_cost == Decimal("1575.0000")
    assert position.average_cost == Decimal("105.00")


def test_average_cost_rounds_half_up():
    position = compute_position(
        [
            make_tx("BUY", "1", "10", D0),
            make_tx("BUY", "2", "10.0075", D0),
        ]
    )
    assert position is not None
    assert position.average_cost == Decimal("10.01")


def test_sell_against_empty_pool_is_ignored():
    position = compute_position(
        [
            make_tx("SELL", "5", "90", D0),
            make_tx("BUY", "10", "50", D0 + timedelta(days=1)),
        ]
    )
    assert position is not None
    assert position.shares == Decimal("10")
    assert position.average_cost == Decimal("50.00")


def test_full_sale_leaves_no_position():
    assert compute_position([make_tx("BUY", "10", "100", D0), make_tx("SELL", "10", "120", D0)]) is None
    assert compute_position([]) is None


def test_company_name_comes_from_latest_transaction():
    position = compute_position(
        [
            make_tx("BUY", "1", "10", D0, company_name="Apple Computer"),
            make_tx("BUY", "1", "10", D0 + timedelta(days=3), company_name="Apple Inc."),
        ]
    )
    assert position is not None
    assert position.company_name == "Apple Inc."


async def _holding_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(Holding))).scalar_one()


async def test_recalculate_creates_updates_and_removes_holding(database):
    await database.create_all()
    async with database.session() as session:
        session.add_all([make_tx("BUY", "10", "100", D0), make_tx("BUY", "30", "120", D0 + timedelta(days=1))])
        await session.commit()

        holding = await recalculate_holding(session, "user-1", "AAPL")
        assert holding is not None
        assert holding.shares == Decimal("40")
        assert holding.average_cost == Decimal("115.00")

        first = (holding.id, holding.shares, holding.average_cost)
        again = await recalculate_holding(session, "user-1", "AAPL")
        assert again is not None
        assert (again.id, again.shares, again.average_cost) == first
        assert await _holding_count(session) == 1

        session.add(make_tx("SELL", "40", "130", D0 + timedelta(days=2)))
        await session.commit()
        assert await recalculate_holding(session, "user-1", "AAPL") is None
        assert await ledger.get_holding(session, "user-1", "AAPL") is None
        assert await _holding_count(session) == 0


async def test_holdings_are_scoped_per_user(database):
    await database.create_all()
    async with database.session() as session:
        session.add_all(
            [
                make_tx("BUY", "10", "100", D0, user_id="alice"),
                make_tx("BUY", "5", "200", D0, user_id="bob"),
            ]
        )
        await session.commit()
        alice = await recalculate_holding(session, "alice", "AAPL")
        bob = await recalculate_holding(session, "bob", "AAPL")
        assert alice is not None and bob is not None
        assert alice.id != bob.id
        assert bob.average_cost == Decimal("200.00")


async def test_concurrent_insert_is_retried_as_update(database, monkeypatch):
    await database.create_all()
    async with database.session() as session:
        session.add(make_tx("BUY", "10", "100", D0))
        await session.commit()
        await recalculate_holding(session, "user-1", "AAPL")

        session.add(make_tx("BUY", "10", "120", D0 + timedelta(days=1)))
        await session.commit()

        real_get_holding = ledger.get_holding
        calls: list[str] = []

        async def stale_first_read(session_, user_id, symbol):
            calls.append(symbol)
            if len(calls) == 1:
                return None
            return await real_get_holding(session_, user_id, symbol)

        monkeypatch.setattr(ledger, "get_holding", stale_first_read)
        holding = await recalculate_holding(session, "user-1", "AAPL")

        assert len(calls) == 2
        assert holding is not None
        assert holding.shares == Decimal("20")
        assert holding.average_cost == Decimal("110.00")
        assert await _holding_count(session) == 1


async def test_missing_row_after_conflict_is_fatal(database, monkeypatch):
    await database.create_all()
    async with database.session() as session:
        session.add(make_tx("BUY", "10", "100", D0))
        await session.commit()
        await recalculate_holding(session, "user-1", "AAPL")

        async def never_found(session_, user_id, symbol):
            return None

        monkeypatch.setattr(ledger, "get_holding", never_found)
        with pytest.raises(HoldingConsistencyError):
            await recalculate_holding(session, "user-1", "AAPL")


async def test_recalculate_all_isolates_failing_symbol(database, monkeypatch):
    await database.create_all()
    async with database.session() as session:
        session.add_all(
            [
                make_tx("BUY", "10", "100", D0),
                make_tx("BUY", "5", "300", D0, symbol="MSFT", company_name="Microsoft"),
                make_tx("BUY", "3", "40", D0, symbol="TSLA", company_name="Tesla"),
                make_tx("SELL", "3", "45", D0 + timedelta(days=1), symbol="TSLA", company_name="Tesla"),
            ]
        )
        await session.commit()

        real_list = ledger.list_symbol_transactions

        async def failing_for_msft(session_, user_id, symbol):
            if symbol == "MSFT":
                raise SQLAlchemyError("connection reset")
            return await real_list(session_, user_id, symbol)

        monkeypatch.setattr(ledger, "list_symbol_transactions", failing_for_msft)
        report = await recalculate_all(session, "user-1")

        assert report.symbols == ["AAPL", "MSFT", "TSLA"]
        assert report.recalculated == ["AAPL"]
        assert report.removed == ["TSLA"]
        assert list(report.failed) == ["MSFT"]
        assert await ledger.get_holding(session, "user-1", "AAPL") is not None


async def test_conflict_retry_keeps_pending_ledger_write(database, monkeypatch):
    await database.create_all()
    async with database.session() as session:
        session.add(make_tx("BUY", "10", "100", D0))
        await session.commit()
        await recalculate_holding(session, "user-1", "AAPL")

        session.add(make_tx("BUY", "10", "120", D0 + timedelta(days=1)))
        await session.flush()

        real_get_holding = ledger.get_holding
        calls: list[str] = []

        async def stale_first_read(session_, user_id, symbol):
            calls.append(symbol)
            if len(calls) == 1:
                return None
            return await real_get_holding(session_, user_id, symbol)

        monkeypatch.setattr(ledger, "get_holding", stale_first_read)
        holding = await recalculate_holding(session, "user-1", "AAPL", commit=False)
        await session.commit()

        assert len(calls) == 2
        assert holding is not None
        assert holding.shares == Decimal("20")

    async with database.session() as session:
        assert len(await ledger.list_symbol_transactions(session, "user-1", "AAPL")) == 2
        assert await _holding_count(session) == 1
