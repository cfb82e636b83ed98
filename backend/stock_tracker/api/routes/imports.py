"""Brokerage CSV import endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.providers.market_data import MarketDataGateway
from stock_tracker.schemas import (
    ImportErrorSchema,
    ImportPreviewSchema,
    ImportRequest,
    ImportResultSchema,
    MappingSuggestionSchema,
    PreviewRowSchema,
    SuggestMappingRequest,
)
from stock_tracker.services import csv_import
from stock_tracker.services.errors import ValidationError
from ..dependencies import InternalAuth, RequestContext, get_db_session, get_market_data, get_request_context
from .transactions import ledger_http_error, serialize_transaction

router = APIRouter(dependencies=[InternalAuth])


def _serialize_error(error: csv_import.RowError) -> ImportErrorSchema:
    return ImportErrorSchema(
        row_number=error.row_number,
        field=error.field,
        message=error.message,
        value=error.value,
    )


def _serialize_row(row: csv_import.PreviewRow) -> PreviewRowSchema:
    return PreviewRowSchema(
        row_number=row.row_number,
        valid=row.valid,
        type=row.type,
        symbol=row.symbol,
        transaction_date=row.transaction_date,
        shares=float(row.shares) if row.shares is not None else None,
        price_per_share=float(row.price_per_share) if row.price_per_share is not None else None,
        notes=row.notes,
        errors=[_serialize_error(error) for error in row.errors],
    )


@router.post("/suggest-mapping", response_model=MappingSuggestionSchema)
async def post_suggest_mapping(
    payload: SuggestMappingRequest,
    context: RequestContext = Depends(get_request_context),
) -> MappingSuggestionSchema:
    suggestion = csv_import.suggest_mappings(payload.headers)
    return MappingSuggestionSchema(
        suggested_mappings=suggestion.suggested_mappings,
        confidence_scores=suggestion.confidence_scores,
        unmapped_columns=suggestion.unmapped_columns,
    )


@router.post("/preview", response_model=ImportPreviewSchema)
async def post_preview(
    payload: ImportRequest,
    context: RequestContext = Depends(get_request_context),
) -> ImportPreviewSchema:
    try:
        preview = csv_import.preview_import(payload)
    except ValidationError as exc:
        raise ledger_http_error(exc) from exc
    return ImportPreviewSchema(
        valid_rows=[_serialize_row(row) for row in preview.valid_rows],
        error_rows=[_serialize_row(row) for row in preview.error_rows],
        total_rows=preview.total_rows,
        valid_count=preview.valid_count,
        error_count=preview.error_count,
    )


@router.post("", response_model=ImportResultSchema)
async def post_import(
    payload: ImportRequest,
    session: AsyncSession = Depends(get_db_session),
    market_data: MarketDataGateway = Depends(get_market_data),
    context: RequestContext = Depends(get_request_context),
) -> ImportResultSchema:
    try:
        result = await csv_import.execute_import(payload, session, market_data, user_id=context.user_id)
    except ValidationError as exc:
        raise ledger_http_error(exc) from exc
    return ImportResultSchema(
        imported_count=result.imported_count,
        skipped_count=result.skipped_count,
        errors=[_serialize_error(error) for error in result.errors],
        imported_transactions=[serialize_transaction(tx) for tx in result.imported_transactions],
    )


__all__ = ["router"]
