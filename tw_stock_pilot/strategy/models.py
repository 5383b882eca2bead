"""
Data models for the two-day-rule signal engine.

PriceBar is the only input shape the engine consumes; StrategyAdvice is the only
output shape it produces. Status, rule and color tags are closed enumerations so
that consumers (watchlist grouping, CLI, LLM prompt) match them exhaustively.

Usage:
    bar = PriceBar(date="2026-02-16", open=100, high=103, low=99, close=102, volume=1500)
    advice = get_strategy_advice(history, 18, 52, AnalysisMode.SHORT)
    if advice.status is AdviceStatus.GIFT_BUY:
        ...
"""

from datetime import date as _date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ── Errors ──────────────────────────────────────────────────────────────────


class StrategyError(Exception):
    """Base error for the signal engine."""


class InvalidPeriodError(StrategyError, ValueError):
    """Moving-average period is not a positive integer."""


class InsufficientHistoryError(StrategyError):
    """History is too short for the requested evaluation."""


class HistoryValidationError(StrategyError, ValueError):
    """A price bar is internally inconsistent (e.g. high below close)."""


class HistoryOrderError(HistoryValidationError):
    """Bar dates are not strictly increasing."""


# ── Enumerations ────────────────────────────────────────────────────────────


class AnalysisMode(str, Enum):
    """Which moving average the two-day rule is evaluated against."""

    SHORT = "short"
    LONG = "long"


class RuleOutcome(str, Enum):
    """Outcome of the two-day rule over the last three bars."""

    BREAKOUT_VALIDATED = "BREAKOUT_VALIDATED"
    BREAKOUT_FAILED = "BREAKOUT_FAILED"
    WASHOUT_GIFT = "WASHOUT_GIFT"
    BREAKDOWN_VALIDATED = "BREAKDOWN_VALIDATED"
    BREAKOUT_WATCH = "BREAKOUT_WATCH"
    BREAKDOWN_WATCH = "BREAKDOWN_WATCH"
    TREND_STABLE = "TREND_STABLE"


class AdviceStatus(str, Enum):
    """Final advisory classification."""

    WAITING = "WAITING"
    GIFT_BUY = "GIFT_BUY"
    WATCH_BREAKOUT = "WATCH_BREAKOUT"
    WATCH_BREAKDOWN = "WATCH_BREAKDOWN"
    BULLISH_CONFIRMED = "BULLISH_CONFIRMED"
    BEARISH_CONFIRMED = "BEARISH_CONFIRMED"
    CONSOLIDATING = "CONSOLIDATING"
    BULLISH_TREND = "BULLISH_TREND"
    BEARISH_TREND = "BEARISH_TREND"

    @property
    def is_bullish(self) -> bool:
        """True for statuses that suggest entering or holding a position."""
        return self in _BULLISH_STATUSES

    def action_hint(self) -> str:
        """Short execution hint shown next to the advice."""
        return "consider entry / hold" if self.is_bullish else "reduce / wait"


_BULLISH_STATUSES = frozenset(
    {AdviceStatus.GIFT_BUY, AdviceStatus.BULLISH_CONFIRMED, AdviceStatus.BULLISH_TREND}
)


class ColorHint(str, Enum):
    """Semantic color tag. Taiwan convention: red is bullish, green is bearish."""

    GRAY = "gray"
    LIGHT_GRAY = "light_gray"
    ORANGE = "orange"
    YELLOW = "yellow"
    AMBER = "amber"
    RED = "red"
    LIGHT_RED = "light_red"
    GREEN = "green"
    DARK_GREEN = "dark_green"


# ── PriceBar ────────────────────────────────────────────────────────────────


class PriceBar(BaseModel):
    """One daily OHLCV bar. Immutable once fetched."""

    model_config = ConfigDict(frozen=True)

    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$", description="Trading date YYYY-MM-DD")
    open: float
    high: float
    low: float
    close: float
    volume: float = Field(default=0, ge=0)

    @field_validator("date")
    @classmethod
    def _check_calendar_date(cls, value: str) -> str:
        _date.fromisoformat(value)
        return value


# ── StrategyAdvice ──────────────────────────────────────────────────────────


class StrategyAdvice(BaseModel):
    """Advisory classification with human-readable rationale.

    `rule` and `primary_ma` are None for WAITING results, where no rule was evaluated.
    """

    model_config = ConfigDict(frozen=True)

    status: AdviceStatus
    advice: str
    color_hint: ColorHint
    reason: str
    rule: RuleOutcome | None = None
    primary_ma: float | None = None
