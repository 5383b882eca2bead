"""
Strategy advisor — turns a price history into an advisory classification.

Computes the short and long moving averages, evaluates the two-day rule against
the one selected by the analysis mode, and maps the rule outcome to a status,
color hint, reason and templated advice sentence.

Pure and stateless: the same inputs always produce the same StrategyAdvice.
Callers that want memoisation use AdviceCache.

Usage:
    advice = get_strategy_advice(history, ma_short_period=18, ma_long_period=52)
    print(advice.status, advice.advice)
"""

from typing import Dict, NamedTuple, Sequence

from loguru import logger

from tw_stock_pilot.strategy.models import (
    AdviceStatus,
    AnalysisMode,
    ColorHint,
    InvalidPeriodError,
    PriceBar,
    RuleOutcome,
    StrategyAdvice,
)
from tw_stock_pilot.strategy.moving_average import calculate_ma, last_value
from tw_stock_pilot.strategy.two_day_rule import WINDOW_SIZE, evaluate_two_day_rule

INSUFFICIENT_DATA_ADVICE = "insufficient data"
INSUFFICIENT_DATA_REASON = "not enough bars for the moving-average lookback"


class _Template(NamedTuple):
    status: AdviceStatus
    color: ColorHint
    reason: str
    advice: str  # formatted with {ma}


# ── Rule → Advice Mapping ───────────────────────────────────────────────────

# TREND_STABLE is resolved separately against the last close.
_RULE_TEMPLATES: Dict[RuleOutcome, _Template] = {
    RuleOutcome.WASHOUT_GIFT: _Template(
        AdviceStatus.GIFT_BUY,
        ColorHint.ORANGE,
        "breakdown without new low (shakeout confirmation)",
        "Washout gift: price broke below the {ma} but today did not undercut "
        "yesterday's low. This looks like a shakeout and is a buying opportunity.",
    ),
    RuleOutcome.BREAKOUT_WATCH: _Template(
        AdviceStatus.WATCH_BREAKOUT,
        ColorHint.YELLOW,
        "initial breakout, awaiting day-2 confirmation",
        "Price closed above the {ma} today (day 1). Watch tomorrow: a high above "
        "today's high confirms the uptrend.",
    ),
    RuleOutcome.BREAKDOWN_WATCH: _Template(
        AdviceStatus.WATCH_BREAKDOWN,
        ColorHint.AMBER,
        "initial breakdown, awaiting day-2 confirmation",
        "Price closed below the {ma} today (day 1). Watch tomorrow: a low under "
        "today's low confirms the weakness.",
    ),
    RuleOutcome.BREAKOUT_VALIDATED: _Template(
        AdviceStatus.BULLISH_CONFIRMED,
        ColorHint.RED,
        "holding above key moving average (time and price confirmed)",
        "Two-day rule confirmed: today's high cleared yesterday's high. Price is "
        "holding above the {ma}; a clear signal to buy or add.",
    ),
    RuleOutcome.BREAKDOWN_VALIDATED: _Template(
        AdviceStatus.BEARISH_CONFIRMED,
        ColorHint.GREEN,
        "breakdown trend confirmed",
        "Two-day rule breakdown confirmed below the {ma}: today's low undercut "
        "yesterday's low. Reduce exposure substantially or stay flat.",
    ),
    RuleOutcome.BREAKOUT_FAILED: _Template(
        AdviceStatus.CONSOLIDATING,
        ColorHint.LIGHT_GRAY,
        "false breakout or range-bound",
        "Two-day rule failed: price closed above the {ma} but made no new high. "
        "Stay on the sidelines and avoid heavy positions here.",
    ),
}

_BULLISH_TREND = _Template(
    AdviceStatus.BULLISH_TREND,
    ColorHint.LIGHT_RED,
    "stable bullish track",
    "Price is trending steadily above the {ma}. Momentum is bullish; keep holding "
    "and watch the distance from the average.",
)

_BEARISH_TREND = _Template(
    AdviceStatus.BEARISH_TREND,
    ColorHint.DARK_GREEN,
    "stable bearish track",
    "Price is trading below the {ma}. The trend is weak; stay flat until the "
    "two-day rule turns bullish again.",
)


# ── Public API ──────────────────────────────────────────────────────────────


def ma_label(mode: AnalysisMode, ma_short_period: int, ma_long_period: int) -> str:
    """Human-readable name of the moving average the mode evaluates against."""
    if AnalysisMode(mode) is AnalysisMode.SHORT:
        return f"short-term MA({ma_short_period})"
    return f"long-term MA({ma_long_period})"


def waiting_advice() -> StrategyAdvice:
    """Advice returned while the history is too short to evaluate."""
    return StrategyAdvice(
        status=AdviceStatus.WAITING,
        advice=INSUFFICIENT_DATA_ADVICE,
        color_hint=ColorHint.GRAY,
        reason=INSUFFICIENT_DATA_REASON,
    )


def required_bars(ma_short_period: int, ma_long_period: int) -> int:
    """Minimum history length before the advisor evaluates anything."""
    return max(ma_short_period, ma_long_period) + WINDOW_SIZE


def get_strategy_advice(
    history: Sequence[PriceBar] | None,
    ma_short_period: int = 18,
    ma_long_period: int = 52,
    mode: AnalysisMode | str = AnalysisMode.SHORT,
) -> StrategyAdvice:
    """Classify a price history with the two-day rule.

    Args:
        history: Bars ordered by ascending date. Not mutated.
        ma_short_period: Short moving-average period.
        ma_long_period: Long moving-average period.
        mode: Evaluate against the short or the long average.

    Returns:
        StrategyAdvice. Status WAITING when history is shorter than
        max(ma_short_period, ma_long_period) + 3.

    Raises:
        InvalidPeriodError: If either period is not a positive integer.
    """
    for period in (ma_short_period, ma_long_period):
        if isinstance(period, bool) or not isinstance(period, int) or period <= 0:
            raise InvalidPeriodError(f"MA period must be a positive integer, got {period!r}")
    mode = AnalysisMode(mode)

    if not history or len(history) < required_bars(ma_short_period, ma_long_period):
        logger.debug(
            "StrategyAdvisor: waiting ({} bars, need {})",
            len(history) if history else 0,
            required_bars(ma_short_period, ma_long_period),
        )
        return waiting_advice()

    short_ma = calculate_ma(history, ma_short_period)
    long_ma = calculate_ma(history, ma_long_period)
    primary_ma = last_value(short_ma if mode is AnalysisMode.SHORT else long_ma)
    if primary_ma is None:
        return waiting_advice()

    rule = evaluate_two_day_rule(history, primary_ma)
    last_close = history[-1].close

    if rule is RuleOutcome.TREND_STABLE:
        template = _BULLISH_TREND if last_close > primary_ma else _BEARISH_TREND
    else:
        template = _RULE_TEMPLATES[rule]

    label = ma_label(mode, ma_short_period, ma_long_period)
    advice = StrategyAdvice(
        status=template.status,
        advice=template.advice.format(ma=label),
        color_hint=template.color,
        reason=template.reason,
        rule=rule,
        primary_ma=primary_ma,
    )

    logger.debug(
        "StrategyAdvisor: {} vs {}={:.2f} close={:.2f} → {}",
        rule.value,
        label,
        primary_ma,
        last_close,
        advice.status.value,
    )
    return advice
