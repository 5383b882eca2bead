"""
Simple moving average over daily closes.

The series is positionally aligned with its source history: entry i averages
closes [i - period + 1, i], and the first period - 1 entries are None (not
enough lookback, which is different from a price of zero).
"""

from typing import List, Sequence

from tw_stock_pilot.strategy.models import InvalidPeriodError, PriceBar

MovingAverageSeries = List[float | None]


def calculate_ma(history: Sequence[PriceBar], period: int) -> MovingAverageSeries:
    """Calculate the simple moving average of closing prices.

    Args:
        history: Bars ordered by ascending date.
        period: Window length, must be > 0.

    Returns:
        List the same length as history. All None when period > len(history).

    Raises:
        InvalidPeriodError: If period is not a positive integer.
    """
    if isinstance(period, bool) or not isinstance(period, int) or period <= 0:
        raise InvalidPeriodError(f"MA period must be a positive integer, got {period!r}")

    closes = [bar.close for bar in history]
    series: MovingAverageSeries = []
    for i in range(len(closes)):
        if i < period - 1:
            series.append(None)
            continue
        window = closes[i - period + 1 : i + 1]
        series.append(sum(window) / period)
    return series


def last_value(series: Sequence[float | None]) -> float | None:
    """Return the last non-None entry of an MA series, or None if there is none."""
    for value in reversed(series):
        if value is not None:
            return value
    return None
