"""Rebuild every holding for a user from the transaction ledger."""

from __future__ import annotations

import argparse
import asyncio

from stock_tracker.config import get_settings
from stock_tracker.core.logging import setup_logging
from stock_tracker.db.session import Database
from stock_tracker.services.holdings import recalculate_all


async def _run(user_id: str, database_url: str | None) -> int:
    database = Database(database_url)
    try:
        async with database.session() as session:
            report = await recalculate_all(session, user_id)
    finally:
        await database.dispose()

    print(f"Recalculated {len(report.recalculated)} of {len(report.symbols)} symbols for {user_id}")
    for symbol in report.removed:
        print(f"  removed {symbol}")
    for symbol, message in report.failed.items():
        print(f"  failed {symbol}: {message}")
    return 1 if report.failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Recalculate holdings for a user from the ledger")
    parser.add_argument("--user", required=True, help="User identifier as sent in X-User-Id")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()
    setup_logging(get_settings().log_level)
    raise SystemExit(asyncio.run(_run(args.user, args.database_url)))


if __name__ == "__main__":
    main()
