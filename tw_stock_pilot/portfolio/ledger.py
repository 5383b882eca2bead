"""
Portfolio ledger — derives positions, holdings and P&L from transactions.

Average-cost method, transactions processed in date order (stable for trades
on the same day):
    BUY   shares += n;  cost += n × price
    SELL  realized += n × (price − avg_cost);  cost −= n × avg_cost;  shares −= n
"""

from typing import Dict, List, Mapping, Sequence

from loguru import logger

from tw_stock_pilot.portfolio.schemas import (
    Holding,
    PortfolioMetrics,
    Position,
    SectorWeight,
    Transaction,
)

# Shares below this are treated as a fully closed position.
_SHARE_EPSILON = 1e-9


class LedgerError(ValueError):
    """Transactions are inconsistent (e.g. selling more than held)."""


def _chronological(transactions: Sequence[Transaction]) -> List[Transaction]:
    return sorted(transactions, key=lambda t: t.date)


def _apply(position: Position, tx: Transaction) -> float:
    """Apply one transaction to a position. Returns the realized P&L of this trade."""
    if tx.side == "BUY":
        position.shares += tx.shares
        position.total_cost += tx.amount
        return 0.0

    if tx.shares > position.shares + _SHARE_EPSILON:
        raise LedgerError(
            f"{tx.symbol}: cannot sell {tx.shares:g} shares on {tx.date}, "
            f"only {position.shares:g} held"
        )

    cost_basis = tx.shares * position.avg_cost
    realized = tx.amount - cost_basis
    position.realized_pl += realized
    position.shares -= tx.shares
    position.total_cost -= cost_basis
    if position.shares < _SHARE_EPSILON:
        position.shares = 0.0
        position.total_cost = 0.0
    return realized


def derive_positions(transactions: Sequence[Transaction]) -> Dict[str, Position]:
    """Replay transactions into per-symbol positions (closed ones included).

    Raises:
        LedgerError: If a SELL exceeds the shares held at that point.
    """
    positions: Dict[str, Position] = {}
    for tx in _chronological(transactions):
        position = positions.setdefault(tx.symbol, Position(symbol=tx.symbol))
        _apply(position, tx)
    return positions


def derive_holdings(
    transactions: Sequence[Transaction],
    prices: Mapping[str, float] | None = None,
) -> List[Holding]:
    """Active holdings (shares > 0), valued at prices where known, else 0."""
    prices = prices or {}
    holdings = [
        Holding(
            symbol=p.symbol,
            shares=p.shares,
            avg_cost=p.avg_cost,
            current_price=prices.get(p.symbol, 0.0),
            realized_pl=p.realized_pl,
        )
        for p in derive_positions(transactions).values()
        if p.shares > 0
    ]
    logger.debug("Ledger: {} transactions → {} active holdings", len(transactions), len(holdings))
    return holdings


def realized_pl(
    transactions: Sequence[Transaction],
    start_date: str,
    end_date: str,
) -> float:
    """Realized P&L of SELLs dated within [start_date, end_date].

    Cost basis is tracked across the full history, including trades outside the range.
    """
    positions: Dict[str, Position] = {}
    total = 0.0
    for tx in _chronological(transactions):
        position = positions.setdefault(tx.symbol, Position(symbol=tx.symbol))
        realized = _apply(position, tx)
        if tx.side == "SELL" and start_date <= tx.date <= end_date:
            total += realized
    return total


def portfolio_metrics(holdings: Sequence[Holding]) -> PortfolioMetrics:
    """Totals across holdings. ROI is 0 when there is no cost."""
    total_cost = sum(h.cost_basis for h in holdings)
    total_market_value = sum(h.market_value for h in holdings)
    unrealized = total_market_value - total_cost
    roi = unrealized / total_cost * 100 if total_cost > 0 else 0.0
    return PortfolioMetrics(
        total_cost=total_cost,
        total_market_value=total_market_value,
        unrealized_pl=unrealized,
        roi=roi,
    )


def sector_exposure(
    holdings: Sequence[Holding],
    sectors: Mapping[str, str],
) -> List[SectorWeight]:
    """Market value per sector. Holdings with no known sector are skipped."""
    by_sector: Dict[str, float] = {}
    for h in holdings:
        sector = sectors.get(h.symbol)
        if sector is None:
            continue
        by_sector[sector] = by_sector.get(sector, 0.0) + h.market_value

    total = sum(by_sector.values())
    return [
        SectorWeight(
            name=name,
            value=value,
            percentage=round(value / total * 100, 1) if total > 0 else 0.0,
        )
        for name, value in by_sector.items()
    ]
