"""Ledger row builders shared by the test modules."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from stock_tracker.models import Transaction


def make_tx(
    type_: str,
    shares: str,
    price: str,
    day: date,
    *,
    symbol: str = "AAPL",
    user_id: str = "user-1",
    company_name: str | None = "Apple Inc.",
    fee: str | None = None,
) -> Transaction:
    tx = Transaction(
        user_id=user_id,
        type=type_,
        symbol=symbol,
        company_name=company_name,
        transaction_date=day,
        shares=Decimal(shares),
        price_per_share=Decimal(price),
        broker_fee=Decimal(fee) if fee is not None else None,
    )
    tx.recompute_total()
    return tx
