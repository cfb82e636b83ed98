"""Pydantic schemas for portfolio valuation and performance."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field


class HoldingSchema(BaseModel):
    id: int
    symbol: str
    company_name: str | None = None
    shares: float
    average_cost: float
    last_price: float
    previous_close: float | None = None
    current_value: float
    cost_basis: float
    total_return_dollars: float
    total_return_percent: float
    seven_day_return_dollars: float
    seven_day_return_percent: float
    weight: float
    sparkline: list[float] = Field(default_factory=list)


class PortfolioSchema(BaseModel):
    holdings: list[HoldingSchema]
    total_value: float
    total_cost: float
    total_return_dollars: float
    total_return_percent: float
    annualized_yield: float
    investment_years: float
    prices_updated_at: dt.datetime


class PerformancePointSchema(BaseModel):
    date: dt.date
    total_value: float
    daily_change: float
    daily_change_percent: float


class RecalculationReportSchema(BaseModel):
    symbols: list[str]
    recalculated: list[str]
    removed: list[str]
    failed: dict[str, str]


__all__ = [
    "HoldingSchema",
    "PerformancePointSchema",
    "PortfolioSchema",
    "RecalculationReportSchema",
]
