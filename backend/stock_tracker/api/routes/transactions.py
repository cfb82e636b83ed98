"""Transaction ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.models import Transaction
from stock_tracker.providers.market_data import MarketDataGateway
from stock_tracker.schemas import (
    TickerValidationSchema,
    TransactionCreateRequest,
    TransactionSchema,
    TransactionUpdateRequest,
)
from stock_tracker.services import transactions as transaction_service
from stock_tracker.services.errors import HoldingConsistencyError, NotFoundError, ValidationError
from ..dependencies import InternalAuth, RequestContext, get_db_session, get_market_data, get_request_context

router = APIRouter(dependencies=[InternalAuth])


def serialize_transaction(tx: Transaction) -> TransactionSchema:
    return TransactionSchema(
        id=tx.id,
        type=tx.type,
        symbol=tx.symbol,
        company_name=tx.company_name,
        transaction_date=tx.transaction_date,
        shares=float(tx.shares),
        price_per_share=float(tx.price_per_share),
        broker_fee=float(tx.broker_fee) if tx.broker_fee is not None else None,
        total_amount=float(tx.total_amount),
        notes=tx.notes,
        created_at=tx.created_at,
        updated_at=tx.updated_at,
    )


def ledger_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.as_detail())
    if isinstance(exc, HoldingConsistencyError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=list[TransactionSchema])
async def get_transactions(
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> list[TransactionSchema]:
    transactions = await transaction_service.list_transactions(session, user_id=context.user_id)
    return [serialize_transaction(tx) for tx in transactions]


@router.get("/validate-ticker", response_model=TickerValidationSchema)
async def get_validate_ticker(
    symbol: str = Query(default=""),
    market_data: MarketDataGateway = Depends(get_market_data),
    context: RequestContext = Depends(get_request_context),
) -> TickerValidationSchema:
    result = await transaction_service.validate_ticker(symbol, market_data)
    return TickerValidationSchema(
        valid=result.valid,
        symbol=result.symbol,
        company_name=result.company_name,
        error_message=result.error_message,
    )


@router.get("/export")
async def get_export(
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> Response:
    content = await transaction_service.export_transactions_csv(session, user_id=context.user_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


@router.post("", response_model=TransactionSchema, status_code=status.HTTP_201_CREATED)
async def post_transaction(
    payload: TransactionCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    market_data: MarketDataGateway = Depends(get_market_data),
    context: RequestContext = Depends(get_request_context),
) -> TransactionSchema:
    try:
        tx = await transaction_service.create_transaction(payload, session, market_data, user_id=context.user_id)
    except (ValidationError, HoldingConsistencyError) as exc:
        raise ledger_http_error(exc) from exc
    return serialize_transaction(tx)


@router.put("/{transaction_id}", response_model=TransactionSchema)
async def put_transaction(
    transaction_id: int,
    payload: TransactionUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    market_data: MarketDataGateway = Depends(get_market_data),
    context: RequestContext = Depends(get_request_context),
) -> TransactionSchema:
    try:
        tx = await transaction_service.update_transaction(
            transaction_id, payload, session, market_data, user_id=context.user_id
        )
    except (NotFoundError, ValidationError, HoldingConsistencyError) as exc:
        raise ledger_http_error(exc) from exc
    return serialize_transaction(tx)


@router.delete("/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    transaction_id: int,
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> Response:
    try:
        await transaction_service.delete_transaction(transaction_id, session, user_id=context.user_id)
    except (NotFoundError, HoldingConsistencyError) as exc:
        raise ledger_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["ledger_http_error", "router", "serialize_transaction"]
