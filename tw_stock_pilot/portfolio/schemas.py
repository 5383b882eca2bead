"""
Portfolio schemas — transactions and the holdings derived from them.

Usage:
    tx = Transaction(symbol="2330", side="BUY", shares=1000, price=580.0, date="2026-02-16")
"""

from datetime import date as _date
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

Side = Literal["BUY", "SELL"]


class Transaction(BaseModel):
    """A single buy or sell of a Taiwan-listed stock."""

    id: str = Field(default_factory=lambda: uuid4().hex[:16])
    symbol: str = Field(min_length=1, description="Stock code e.g. 2330")
    side: Side
    shares: float = Field(gt=0)
    price: float = Field(gt=0, description="Price per share in TWD")
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$", description="Trade date YYYY-MM-DD")

    @field_validator("date")
    @classmethod
    def _check_calendar_date(cls, value: str) -> str:
        _date.fromisoformat(value)
        return value

    @property
    def amount(self) -> float:
        return self.shares * self.price


class Position(BaseModel):
    """Average-cost running state for one symbol, including closed positions."""

    symbol: str
    shares: float = 0.0
    total_cost: float = 0.0
    realized_pl: float = 0.0

    @property
    def avg_cost(self) -> float:
        return self.total_cost / self.shares if self.shares > 0 else 0.0


class Holding(BaseModel):
    """Active holding valued at a current price."""

    symbol: str
    shares: float
    avg_cost: float
    current_price: float = 0.0
    realized_pl: float = 0.0

    @property
    def cost_basis(self) -> float:
        return self.shares * self.avg_cost

    @property
    def market_value(self) -> float:
        return self.shares * self.current_price

    @property
    def unrealized_pl(self) -> float:
        return self.market_value - self.cost_basis

    @property
    def return_pct(self) -> float:
        return self.unrealized_pl / self.cost_basis * 100 if self.cost_basis > 0 else 0.0


class PortfolioMetrics(BaseModel):
    total_cost: float
    total_market_value: float
    unrealized_pl: float
    roi: float = Field(description="Unrealized return on cost, in percent")


class SectorWeight(BaseModel):
    name: str
    value: float
    percentage: float
