"""
Two-day rule — classifies how the close crossed a reference moving average
over the last three bars (day_before, yesterday, today).

Day-2 checks come first: a cross that happened yesterday is confirmed or
rejected by today's extreme. Day-1 checks follow: a cross happening today is
only put on watch. First match wins:

    1. breakout yesterday, today's high above yesterday's  → BREAKOUT_VALIDATED
    2. breakout yesterday, no new high                     → BREAKOUT_FAILED
    3. breakdown yesterday, today's low holds               → WASHOUT_GIFT
    4. breakdown yesterday, new low                         → BREAKDOWN_VALIDATED
    5. breakout today                                       → BREAKOUT_WATCH
    6. breakdown today                                      → BREAKDOWN_WATCH
    7. otherwise                                            → TREND_STABLE

A failed breakdown is a shakeout and gets the bullish GIFT label; a failed
breakout only gets FAILED. The asymmetry is intentional.
"""

from typing import Sequence

from tw_stock_pilot.strategy.models import (
    HistoryOrderError,
    InsufficientHistoryError,
    PriceBar,
    RuleOutcome,
)

WINDOW_SIZE = 3


def evaluate_two_day_rule(history: Sequence[PriceBar], ma_value: float) -> RuleOutcome:
    """Evaluate the two-day rule on the last three bars of history.

    Args:
        history: Bars ordered by ascending date, at least three of them.
        ma_value: Reference moving-average value (short or long, caller's choice).

    Returns:
        The first matching RuleOutcome.

    Raises:
        InsufficientHistoryError: If history has fewer than three bars.
        HistoryOrderError: If the three window dates are not strictly increasing.
    """
    if len(history) < WINDOW_SIZE:
        raise InsufficientHistoryError(
            f"two-day rule needs {WINDOW_SIZE} bars, got {len(history)}"
        )

    day_before, yesterday, today = history[-WINDOW_SIZE:]
    _check_window_order(day_before, yesterday, today)

    # Day 2: yesterday crossed above
    if yesterday.close > ma_value and day_before.close <= ma_value:
        if today.high > yesterday.high:
            return RuleOutcome.BREAKOUT_VALIDATED
        return RuleOutcome.BREAKOUT_FAILED

    # Day 2: yesterday crossed below
    if yesterday.close < ma_value and day_before.close >= ma_value:
        if today.low >= yesterday.low:
            return RuleOutcome.WASHOUT_GIFT
        return RuleOutcome.BREAKDOWN_VALIDATED

    # Day 1: today crosses
    if today.close > ma_value and yesterday.close <= ma_value:
        return RuleOutcome.BREAKOUT_WATCH
    if today.close < ma_value and yesterday.close >= ma_value:
        return RuleOutcome.BREAKDOWN_WATCH

    return RuleOutcome.TREND_STABLE


def _check_window_order(day_before: PriceBar, yesterday: PriceBar, today: PriceBar) -> None:
    """Reject windows whose dates are duplicated or out of order."""
    # ISO dates compare correctly as strings
    if not (day_before.date < yesterday.date < today.date):
        raise HistoryOrderError(
            "two-day rule window must have strictly increasing dates, got "
            f"{day_before.date}, {yesterday.date}, {today.date}"
        )
