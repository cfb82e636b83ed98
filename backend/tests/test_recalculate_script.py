from __future__ import annotations

from datetime import date
from decimal import Decimal

from factories import make_tx
from scripts.recalculate_holdings import _run
from stock_tracker.services import ledger


async def test_script_rebuilds_holdings(database, capsys):
    await database.create_all()
    async with database.session() as session:
        session.add_all(
            [
                make_tx("BUY", "10", "100", date(2024, 1, 2)),
                make_tx("BUY", "5", "20", date(2024, 1, 3), symbol="TSLA", company_name="Tesla"),
                make_tx("SELL", "5", "25", date(2024, 2, 1), symbol="TSLA", company_name="Tesla"),
            ]
        )
        await session.commit()

    exit_code = await _run("user-1", database.url)

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "Recalculated 1 of 2 symbols for user-1" in output
    assert "removed TSLA" in output
    async with database.session() as session:
        holding = await ledger.get_holding(session, "user-1", "AAPL")
        assert holding is not None
        assert holding.shares == Decimal("10")
        assert await ledger.get_holding(session, "user-1", "TSLA") is None
