"""
Stock health score — fundamentals plus moving-average arrangement on a 0–100 scale.

    base 50
    ROE            > 20 / 15 / 10 / 5        → +20 / 15 / 10 / 5
    P/E            10–15 / 8–20 / 5–25        → +10 / 7 / 4
    Dividend yield > 5 / 3 / 2 / 1            → +10 / 7 / 4 / 2
    MA arrangement bullish / bearish / mixed  → +30 / 5 / 15
"""

from typing import Any, List, Literal, Mapping, Sequence, Tuple

from pydantic import BaseModel

from tw_stock_pilot.strategy.models import PriceBar
from tw_stock_pilot.strategy.moving_average import calculate_ma, last_value

Trend = Literal["bullish", "bearish", "neutral"]
FindingKind = Literal["good", "bad", "warning"]

HEALTH_MA_SHORT = 20
HEALTH_MA_LONG = 60

# Fundamental fields accepted from a quote snapshot, camelCase as stored by older backups.
_FUNDAMENTAL_KEYS = {
    "roe": "roe",
    "pe": "pe",
    "dividend_yield": "dividend_yield",
    "dividendYield": "dividend_yield",
    "volatility": "volatility",
}


class StockSnapshot(BaseModel):
    """Quote plus fundamentals used for scoring."""

    symbol: str = ""
    price: float
    ma20: float
    ma60: float
    roe: float = 0.0
    pe: float = 0.0
    dividend_yield: float = 0.0
    volatility: float = 0.0


class MaArrangement(BaseModel):
    label: str
    trend: Trend
    message: str


class HealthStatus(BaseModel):
    label: str
    color: str


class IndustryComparison(BaseModel):
    label: str
    color: str


def analyze_moving_averages(snapshot: StockSnapshot) -> MaArrangement:
    """Classify price/MA20/MA60 ordering."""
    price, ma20, ma60 = snapshot.price, snapshot.ma20, snapshot.ma60
    if price > ma20 > ma60:
        return MaArrangement(
            label="golden cross",
            trend="bullish",
            message="Price is above both the short and long averages; trend is up.",
        )
    if price < ma20 < ma60:
        return MaArrangement(
            label="death cross",
            trend="bearish",
            message="Price is below both the short and long averages; trend is down.",
        )
    return MaArrangement(
        label="tangled",
        trend="neutral",
        message="Averages are tangled with no clear direction; keep watching.",
    )


def calculate_health_score(snapshot: StockSnapshot | None) -> int:
    """Score a stock from 0 to 100."""
    if snapshot is None:
        return 0

    score = 50

    roe = snapshot.roe
    if roe > 20:
        score += 20
    elif roe > 15:
        score += 15
    elif roe > 10:
        score += 10
    elif roe > 5:
        score += 5

    pe = snapshot.pe
    if 10 <= pe <= 15:
        score += 10
    elif 8 <= pe <= 20:
        score += 7
    elif 5 <= pe <= 25:
        score += 4

    dy = snapshot.dividend_yield
    if dy > 5:
        score += 10
    elif dy > 3:
        score += 7
    elif dy > 2:
        score += 4
    elif dy > 1:
        score += 2

    trend = analyze_moving_averages(snapshot).trend
    score += {"bullish": 30, "bearish": 5, "neutral": 15}[trend]

    return min(100, max(0, score))


def generate_health_report(snapshot: StockSnapshot | None) -> List[Tuple[FindingKind, str]]:
    """List the notable findings behind a health score."""
    if snapshot is None:
        return []

    findings: List[Tuple[FindingKind, str]] = []

    if snapshot.roe > 15:
        findings.append(("good", f"High ROE ({snapshot.roe}%) shows strong profitability"))
    elif snapshot.roe < 5:
        findings.append(("bad", f"Low ROE ({snapshot.roe}%) shows weak profitability"))

    if 10 <= snapshot.pe <= 20:
        findings.append(("good", f"P/E ({snapshot.pe}) is in a reasonable range"))
    elif snapshot.pe > 25:
        findings.append(("bad", f"P/E ({snapshot.pe}) is high; price may be overheated"))

    if snapshot.dividend_yield > 4:
        findings.append(
            ("good", f"High dividend yield ({snapshot.dividend_yield}%) supports cash flow")
        )

    trend = analyze_moving_averages(snapshot).trend
    if trend == "bullish":
        findings.append(("good", "Averages are in bullish order (golden cross)"))
    elif trend == "bearish":
        findings.append(("bad", "Averages are in bearish order (death cross)"))

    if snapshot.volatility > 30:
        findings.append(
            ("warning", f"High volatility ({snapshot.volatility}%), suits active trading")
        )

    return findings


def health_status(score: int) -> HealthStatus:
    """Label a health score."""
    if score >= 80:
        return HealthStatus(label="healthy", color="green")
    if score >= 60:
        return HealthStatus(label="fair", color="yellow")
    if score >= 40:
        return HealthStatus(label="watch", color="orange")
    return HealthStatus(label="warning", color="red")


def compare_with_industry(
    value: float,
    industry_avg: float,
    higher_is_better: bool = True,
) -> IndustryComparison:
    """Compare a metric against its industry average (within 5% counts as close)."""
    if industry_avg == 0:
        return IndustryComparison(label="no industry average", color="gray")

    diff = (value - industry_avg) / industry_avg * 100
    if abs(diff) < 5:
        return IndustryComparison(label="close to industry average", color="gray")

    above = value > industry_avg
    if higher_is_better:
        if above:
            return IndustryComparison(label=f"better than industry by {diff:.1f}%", color="green")
        return IndustryComparison(label=f"below industry by {abs(diff):.1f}%", color="red")

    if above:
        return IndustryComparison(label=f"above industry by {diff:.1f}%", color="red")
    return IndustryComparison(label=f"below industry by {abs(diff):.1f}%", color="green")


def snapshot_from_history(
    symbol: str,
    history: Sequence[PriceBar],
    fundamentals: Mapping[str, Any] | None = None,
) -> StockSnapshot | None:
    """Snapshot at the last close with MA20/MA60 taken from history.

    Fundamentals come from a cached quote snapshot where present; missing or
    non-numeric ones stay at 0. Returns None with fewer than 60 bars.
    """
    if not history:
        return None
    ma20 = last_value(calculate_ma(history, HEALTH_MA_SHORT))
    ma60 = last_value(calculate_ma(history, HEALTH_MA_LONG))
    if ma20 is None or ma60 is None:
        return None

    known = {}
    for key, value in (fundamentals or {}).items():
        field = _FUNDAMENTAL_KEYS.get(key)
        if field is None:
            continue
        try:
            known[field] = float(value)
        except (TypeError, ValueError):
            continue

    return StockSnapshot(
        symbol=symbol,
        price=history[-1].close,
        ma20=ma20,
        ma60=ma60,
        **known,
    )
