"""
Tests for tw_stock_pilot/portfolio/ledger.py.

Tests cover:
- Average-cost positions across buys and partial sells
- Chronological replay regardless of input order
- Oversell rejection and fully-closed positions
- Realized P&L within a date range
- Portfolio totals and sector exposure
"""

import pytest

from tw_stock_pilot.portfolio.ledger import (
    LedgerError,
    derive_holdings,
    derive_positions,
    portfolio_metrics,
    realized_pl,
    sector_exposure,
)
from tw_stock_pilot.portfolio.schemas import Holding, Transaction


def _tx(side: str, shares: float, price: float, day: str, symbol: str = "2330") -> Transaction:
    return Transaction(symbol=symbol, side=side, shares=shares, price=price, date=day)


@pytest.fixture
def trades() -> list[Transaction]:
    return [
        _tx("BUY", 1000, 100, "2026-01-05"),
        _tx("BUY", 1000, 120, "2026-01-12"),
        _tx("SELL", 500, 130, "2026-02-02"),
        _tx("BUY", 2000, 50, "2026-01-20", symbol="2317"),
    ]


# ── Positions ────────────────────────────────────────────────────────────────


class TestPositions:
    """derive_positions() and derive_holdings()."""

    def test_average_cost(self, trades: list[Transaction]) -> None:
        position = derive_positions(trades)["2330"]
        assert position.shares == 1500
        assert position.avg_cost == pytest.approx(110)
        assert position.realized_pl == pytest.approx(10_000)

    def test_input_order_does_not_matter(self, trades: list[Transaction]) -> None:
        forward = derive_positions(trades)["2330"]
        backward = derive_positions(list(reversed(trades)))["2330"]
        assert backward == forward

    def test_oversell_raises(self) -> None:
        with pytest.raises(LedgerError):
            derive_positions([_tx("BUY", 100, 10, "2026-01-05"), _tx("SELL", 200, 11, "2026-01-06")])

    def test_sell_before_buy_raises(self) -> None:
        with pytest.raises(LedgerError):
            derive_positions([_tx("SELL", 100, 11, "2026-01-04"), _tx("BUY", 100, 10, "2026-01-05")])

    def test_closed_position_excluded_from_holdings(self) -> None:
        transactions = [_tx("BUY", 100, 10, "2026-01-05"), _tx("SELL", 100, 12, "2026-01-06")]
        assert derive_positions(transactions)["2330"].shares == 0
        assert derive_holdings(transactions) == []

    def test_holdings_valued_at_prices(self, trades: list[Transaction]) -> None:
        holdings = {h.symbol: h for h in derive_holdings(trades, {"2330": 121.0})}
        assert holdings["2330"].market_value == pytest.approx(1500 * 121)
        assert holdings["2330"].unrealized_pl == pytest.approx(1500 * 11)
        assert holdings["2330"].return_pct == pytest.approx(10.0)
        # no price known
        assert holdings["2317"].current_price == 0.0

    def test_transaction_validation(self) -> None:
        with pytest.raises(ValueError):
            Transaction(symbol="2330", side="BUY", shares=0, price=10, date="2026-01-05")
        with pytest.raises(ValueError):
            Transaction(symbol="2330", side="BUY", shares=1, price=10, date="2026-02-30")


# ── Realized P&L ─────────────────────────────────────────────────────────────


class TestRealizedPl:
    """realized_pl() over a date range."""

    def test_inclusive_range(self, trades: list[Transaction]) -> None:
        assert realized_pl(trades, "2026-02-02", "2026-02-02") == pytest.approx(10_000)

    def test_outside_range(self, trades: list[Transaction]) -> None:
        assert realized_pl(trades, "2026-03-01", "2026-03-31") == 0

    def test_cost_basis_uses_earlier_buys(self) -> None:
        transactions = [
            _tx("BUY", 100, 10, "2025-12-01"),
            _tx("SELL", 50, 14, "2026-01-10"),
        ]
        assert realized_pl(transactions, "2026-01-01", "2026-01-31") == pytest.approx(200)


# ── Portfolio level ─────────────────────────────────────────────────────────


class TestPortfolio:
    """portfolio_metrics() and sector_exposure()."""

    def test_metrics(self) -> None:
        holdings = [
            Holding(symbol="2330", shares=1000, avg_cost=100, current_price=110),
            Holding(symbol="2317", shares=1000, avg_cost=50, current_price=45),
        ]
        metrics = portfolio_metrics(holdings)
        assert metrics.total_cost == pytest.approx(150_000)
        assert metrics.total_market_value == pytest.approx(155_000)
        assert metrics.unrealized_pl == pytest.approx(5_000)
        assert metrics.roi == pytest.approx(5_000 / 150_000 * 100)

    def test_metrics_empty(self) -> None:
        assert portfolio_metrics([]).roi == 0.0

    def test_sector_exposure(self) -> None:
        holdings = [
            Holding(symbol="2330", shares=1000, avg_cost=100, current_price=300),
            Holding(symbol="2454", shares=100, avg_cost=100, current_price=1000),
            Holding(symbol="2317", shares=1000, avg_cost=100, current_price=100),
            Holding(symbol="9999", shares=1000, avg_cost=100, current_price=100),
        ]
        weights = sector_exposure(
            holdings, {"2330": "Semiconductor", "2454": "Semiconductor", "2317": "Electronics"}
        )
        by_name = {w.name: w for w in weights}
        assert by_name["Semiconductor"].value == pytest.approx(400_000)
        assert by_name["Semiconductor"].percentage == 80.0
        assert by_name["Electronics"].percentage == 20.0
