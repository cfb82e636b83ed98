"""Portfolio valuation, performance and holding maintenance endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from stock_tracker.providers.market_data import MarketDataGateway
from stock_tracker.schemas import (
    HoldingSchema,
    PerformancePointSchema,
    PortfolioSchema,
    RecalculationReportSchema,
)
from stock_tracker.services import holdings as holding_service
from stock_tracker.services import performance as performance_service
from stock_tracker.services import valuation as valuation_service
from stock_tracker.services.errors import ValidationError
from ..dependencies import InternalAuth, RequestContext, get_db_session, get_market_data, get_request_context
from .transactions import ledger_http_error

router = APIRouter(dependencies=[InternalAuth])


def _serialize_holding(item: valuation_service.HoldingValuation) -> HoldingSchema:
    return HoldingSchema(
        id=item.id,
        symbol=item.symbol,
        company_name=item.company_name,
        shares=float(item.shares),
        average_cost=float(item.average_cost),
        last_price=float(item.last_price),
        previous_close=float(item.previous_close) if item.previous_close is not None else None,
        current_value=float(item.current_value),
        cost_basis=float(item.cost_basis),
        total_return_dollars=float(item.total_return_dollars),
        total_return_percent=float(item.total_return_percent),
        seven_day_return_dollars=float(item.seven_day_return_dollars),
        seven_day_return_percent=float(item.seven_day_return_percent),
        weight=float(item.weight),
        sparkline=[float(value) for value in item.sparkline],
    )


@router.get("", response_model=PortfolioSchema)
async def get_portfolio(
    session: AsyncSession = Depends(get_db_session),
    market_data: MarketDataGateway = Depends(get_market_data),
    context: RequestContext = Depends(get_request_context),
) -> PortfolioSchema:
    snapshot = await valuation_service.get_portfolio(session, market_data, user_id=context.user_id)
    return PortfolioSchema(
        holdings=[_serialize_holding(item) for item in snapshot.holdings],
        total_value=float(snapshot.total_value),
        total_cost=float(snapshot.total_cost),
        total_return_dollars=float(snapshot.total_return_dollars),
        total_return_percent=float(snapshot.total_return_percent),
        annualized_yield=float(snapshot.annualized_yield),
        investment_years=float(snapshot.investment_years),
        prices_updated_at=snapshot.prices_updated_at,
    )


@router.get("/performance", response_model=list[PerformancePointSchema])
async def get_performance(
    range_: str = Query(default="1mo", alias="range"),
    session: AsyncSession = Depends(get_db_session),
    market_data: MarketDataGateway = Depends(get_market_data),
    context: RequestContext = Depends(get_request_context),
) -> list[PerformancePointSchema]:
    try:
        points = await performance_service.get_performance_history(
            session, market_data, user_id=context.user_id, range_=range_
        )
    except ValidationError as exc:
        raise ledger_http_error(exc) from exc
    return [
        PerformancePointSchema(
            date=point.date,
            total_value=float(point.total_value),
            daily_change=float(point.daily_change),
            daily_change_percent=float(point.daily_change_percent),
        )
        for point in points
    ]


@router.post("/holdings/recalculate", response_model=RecalculationReportSchema)
async def post_recalculate(
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> RecalculationReportSchema:
    report = await holding_service.recalculate_all(session, context.user_id)
    return RecalculationReportSchema(
        symbols=report.symbols,
        recalculated=report.recalculated,
        removed=report.removed,
        failed=report.failed,
    )


__all__ = ["router"]
