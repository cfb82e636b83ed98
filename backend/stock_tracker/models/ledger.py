"""Transaction ledger and derived holding models."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, Enum, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_tracker.db.base import Base

TRANSACTION_TYPES = ("BUY", "SELL")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_symbol", "user_id", "symbol"),
        Index("ix_transactions_user_date", "user_id", "transaction_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(Enum(*TRANSACTION_TYPES, name="transaction_type"))
    symbol: Mapped[str] = mapped_column(String(15))
    company_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date)
    shares: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    price_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    broker_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def recompute_total(self) -> None:
        """Refresh ``total_amount`` from shares, price and the optional fee."""

        self.total_amount = self.shares * self.price_per_share + (self.broker_fee or Decimal("0"))

    def signed_shares(self) -> Decimal:
        return self.shares if self.type == "BUY" else -self.shares


class Holding(Base):
    """Current position for one user and symbol, derived from the ledger."""

    __tablename__ = "holdings"
    __table_args__ = (UniqueConstraint("user_id", "symbol", name="uq_holding_user_symbol"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    symbol: Mapped[str] = mapped_column(String(15))
    company_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shares: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    average_cost: Mapped[Decimal] = mapped_column(Numeric(18, 4))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


__all__ = ["TRANSACTION_TYPES", "Holding", "Transaction"]
