"""Pydantic schemas for ledger transactions."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from stock_tracker.models.ledger import TRANSACTION_TYPES


class TransactionCreateRequest(BaseModel):
    type: str = Field(..., pattern="^(" + "|".join(TRANSACTION_TYPES) + ")$", examples=["BUY"])
    symbol: str = Field(..., min_length=1, max_length=15, examples=["AAPL"])
    transaction_date: date
    shares: Decimal = Field(..., gt=0, allow_inf_nan=False)
    price_per_share: Decimal = Field(..., gt=0, allow_inf_nan=False)
    broker_fee: Decimal | None = Field(default=None, ge=0, allow_inf_nan=False)
    notes: str | None = Field(default=None, max_length=500)


class TransactionUpdateRequest(TransactionCreateRequest):
    """Full replacement of an existing ledger entry."""


class TransactionSchema(BaseModel):
    id: int
    type: str
    symbol: str
    company_name: str | None = None
    transaction_date: date
    shares: float
    price_per_share: float
    broker_fee: float | None = None
    total_amount: float
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TickerValidationSchema(BaseModel):
    valid: bool
    symbol: str
    company_name: str | None = None
    error_message: str | None = None


__all__ = [
    "TickerValidationSchema",
    "TransactionCreateRequest",
    "TransactionSchema",
    "TransactionUpdateRequest",
]
