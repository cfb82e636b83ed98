"""Manual ledger entry: create, update, delete, ticker checks and CSV export."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.models import Transaction
from stock_tracker.providers.market_data import MarketDataGateway
from stock_tracker.services import ledger
from stock_tracker.services.errors import NotFoundError, ValidationError
from stock_tracker.services.holdings import recalculate_holding

logger = logging.getLogger(__name__)

EXPORT_HEADER = "Type,Symbol,Company Name,Date,Shares,Price Per Share,Broker Fee,Total Amount,Notes"


class TransactionPayload(Protocol):
    type: str
    symbol: str
    transaction_date: date
    shares: Decimal
    price_per_share: Decimal
    broker_fee: Decimal | None
    notes: str | None


@dataclass(frozen=True)
class TickerValidation:
    valid: bool
    symbol: str
    company_name: str | None = None
    error_message: str | None = None


def format_decimal(value: Decimal) -> str:
    """Render a decimal without exponent or trailing zeros."""

    normalized = Decimal(value).normalize()
    return format(normalized, "f")


async def validate_ticker(symbol: str | None, market_data: MarketDataGateway) -> TickerValidation:
    normalized = (symbol or "").strip().upper()
    if not normalized:
        return TickerValidation(valid=False, symbol=normalized, error_message="Symbol is required")

    quotes = await market_data.get_quotes([normalized])
    quote = quotes.get(normalized)
    if quote is None or quote.last_price is None or quote.last_price <= 0:
        return TickerValidation(valid=False, symbol=normalized, error_message="Invalid ticker symbol")
    return TickerValidation(valid=True, symbol=normalized, company_name=quote.short_name or normalized)


async def _require_ticker(symbol: str, market_data: MarketDataGateway) -> TickerValidation:
    validation = await validate_ticker(symbol, market_data)
    if not validation.valid:
        raise ValidationError(validation.error_message or "Invalid ticker symbol", field="symbol", value=symbol)
    return validation


async def check_sell_allowed(
    session: AsyncSession,
    user_id: str,
    symbol: str,
    shares: Decimal,
    transaction_date: date,
    *,
    exclude_id: int | None = None,
) -> None:
    """Reject a SELL that is not covered by earlier buys of the symbol."""

    first_buy = await ledger.earliest_buy_date(session, user_id, symbol, exclude_id=exclude_id)
    if first_buy is None:
        raise ValidationError(f"Cannot sell {symbol}: no buy transactions exist", field="symbol", value=symbol)
    if transaction_date < first_buy:
        raise ValidationError(
            f"Sell date cannot be before first buy date ({first_buy.isoformat()})",
            field="transaction_date",
            value=transaction_date.isoformat(),
        )
    owned = await ledger.net_shares(session, user_id, symbol, exclude_id=exclude_id)
    if shares > owned:
        raise ValidationError(
            f"Cannot sell {format_decimal(shares)} shares of {symbol}: only {format_decimal(owned)} shares owned",
            field="shares",
            value=format_decimal(shares),
        )


def _apply_payload(tx: Transaction, payload: TransactionPayload, symbol: str) -> None:
    tx.type = payload.type.upper()
    tx.symbol = symbol
    tx.transaction_date = payload.transaction_date
    tx.shares = Decimal(payload.shares)
    tx.price_per_share = Decimal(payload.price_per_share)
    tx.broker_fee = Decimal(payload.broker_fee) if payload.broker_fee is not None else None
    tx.notes = payload.notes
    tx.recompute_total()


async def _commit_with_holdings(session: AsyncSession, user_id: str, symbols: list[str]) -> None:
    """Commit a pending ledger change together with the holdings it affects.

    Nothing is persisted unless every recalculation succeeds.
    """

    try:
        await session.flush()
        for symbol in dict.fromkeys(symbols):
            await recalculate_holding(session, user_id, symbol, commit=False)
        await session.commit()
    except Exception:
        await session.rollback()
        raise


async def list_transactions(session: AsyncSession, *, user_id: str) -> list[Transaction]:
    return list(await ledger.list_transactions(session, user_id))


async def create_transaction(
    payload: TransactionPayload,
    session: AsyncSession,
    market_data: MarketDataGateway,
    *,
    user_id: str,
) -> Transaction:
    symbol = payload.symbol.strip().upper()
    ticker = await _require_ticker(symbol, market_data)

    if payload.type.upper() == "SELL":
        await check_sell_allowed(session, user_id, symbol, Decimal(payload.shares), payload.transaction_date)

    tx = Transaction(user_id=user_id, company_name=ticker.company_name)
    _apply_payload(tx, payload, symbol)
    session.add(tx)
    await _commit_with_holdings(session, user_id, [symbol])
    logger.info("Recorded %s of %s %s for user %s", tx.type, tx.shares, symbol, user_id)
    return tx


async def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    session: AsyncSession,
    market_data: MarketDataGateway,
    *,
    user_id: str,
) -> Transaction:
    tx = await ledger.get_transaction(session, user_id, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")

    previous_symbol = tx.symbol
    symbol = payload.symbol.strip().upper()
    company_name = tx.company_name
    if symbol != previous_symbol:
        company_name = (await _require_ticker(symbol, market_data)).company_name

    if payload.type.upper() == "SELL":
        await check_sell_allowed(
            session,
            user_id,
            symbol,
            Decimal(payload.shares),
            payload.transaction_date,
            exclude_id=tx.id,
        )

    _apply_payload(tx, payload, symbol)
    tx.company_name = company_name
    await _commit_with_holdings(session, user_id, [symbol, previous_symbol])
    logger.info("Updated transaction %s for user %s", transaction_id, user_id)
    return tx


async def delete_transaction(transaction_id: int, session: AsyncSession, *, user_id: str) -> None:
    tx = await ledger.get_transaction(session, user_id, transaction_id)
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")

    symbol = tx.symbol
    await session.delete(tx)
    await _commit_with_holdings(session, user_id, [symbol])
    logger.info("Deleted transaction %s for user %s", transaction_id, user_id)


def _quoted(value: str | None) -> str:
    return '"' + (value or "").replace('"', '""') + '"'


def render_csv(transactions: list[Transaction]) -> str:
    lines = [EXPORT_HEADER]
    for tx in transactions:
        lines.append(
            ",".join(
                [
                    tx.type,
                    tx.symbol,
                    _quoted(tx.company_name),
                    tx.transaction_date.isoformat(),
                    format_decimal(tx.shares),
                    format_decimal(tx.price_per_share),
                    format_decimal(tx.broker_fee) if tx.broker_fee is not None else "",
                    format_decimal(tx.total_amount),
                    _quoted(tx.notes),
                ]
            )
        )
    return "\n".join(lines) + "\n"


async def export_transactions_csv(session: AsyncSession, *, user_id: str) -> str:
    """Export the user's ledger newest first."""

    return render_csv(await list_transactions(session, user_id=user_id))


__all__ = [
    "EXPORT_HEADER",
    "TickerValidation",
    "check_sell_allowed",
    "create_transaction",
    "delete_transaction",
    "export_transactions_csv",
    "format_decimal",
    "list_transactions",
    "render_csv",
    "update_transaction",
    "validate_ticker",
]
