"""Pydantic schemas for the brokerage CSV import flow."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field

from .transactions import TransactionSchema


class SuggestMappingRequest(BaseModel):
    headers: list[str] = Field(..., examples=[["Trade Date", "Ticker Symbol", "Quantity", "Price"]])


class MappingSuggestionSchema(BaseModel):
    suggested_mappings: dict[str, str]
    confidence_scores: dict[str, float]
    unmapped_columns: list[str]


class ImportRowSchema(BaseModel):
    row_number: int = Field(..., ge=1)
    values: dict[str, str | None] = Field(default_factory=dict)


class ImportRequest(BaseModel):
    rows: list[ImportRowSchema]
    field_mappings: dict[str, str] = Field(
        ...,
        description="CSV header to standard field name",
        examples=[{"Trade Date": "transaction_date", "Symbol": "symbol"}],
    )


class ImportErrorSchema(BaseModel):
    row_number: int
    field: str | None = None
    message: str
    value: str | None = None


class PreviewRowSchema(BaseModel):
    row_number: int
    valid: bool
    type: str | None = None
    symbol: str | None = None
    transaction_date: date | None = None
    shares: float | None = None
    price_per_share: float | None = None
    notes: str | None = None
    errors: list[ImportErrorSchema] = Field(default_factory=list)


class ImportPreviewSchema(BaseModel):
    valid_rows: list[PreviewRowSchema]
    error_rows: list[PreviewRowSchema]
    total_rows: int
    valid_count: int
    error_count: int


class ImportResultSchema(BaseModel):
    imported_count: int
    skipped_count: int
    errors: list[ImportErrorSchema]
    imported_transactions: list[TransactionSchema]


__all__ = [
    "ImportErrorSchema",
    "ImportPreviewSchema",
    "ImportRequest",
    "ImportResultSchema",
    "ImportRowSchema",
    "MappingSuggestionSchema",
    "PreviewRowSchema",
    "SuggestMappingRequest",
]
