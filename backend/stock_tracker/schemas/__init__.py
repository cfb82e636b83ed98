"""Pydantic schemas exposed by the stock tracker API."""

from .imports import (
    ImportErrorSchema,
    ImportPreviewSchema,
    ImportRequest,
    ImportResultSchema,
    ImportRowSchema,
    MappingSuggestionSchema,
    PreviewRowSchema,
    SuggestMappingRequest,
)
from .portfolio import HoldingSchema, PerformancePointSchema, PortfolioSchema, RecalculationReportSchema
from .transactions import (
    TickerValidationSchema,
    TransactionCreateRequest,
    TransactionSchema,
    TransactionUpdateRequest,
)

__all__ = [
    "HoldingSchema",
    "ImportErrorSchema",
    "ImportPreviewSchema",
    "ImportRequest",
    "ImportResultSchema",
    "ImportRowSchema",
    "MappingSuggestionSchema",
    "PreviewRowSchema",
    "PerformancePointSchema",
    "PortfolioSchema",
    "RecalculationReportSchema",
    "SuggestMappingRequest",
    "TickerValidationSchema",
    "TransactionCreateRequest",
    "TransactionSchema",
    "TransactionUpdateRequest",
]
