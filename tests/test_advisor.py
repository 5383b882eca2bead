"""
Tests for tw_stock_pilot/strategy/advisor.py.

Tests cover:
- WAITING below the max(short, long) + 3 bar threshold
- Period validation before the length check
- End-to-end gift and confirmed-breakout histories
- Every rule outcome → status / color mapping (rule evaluator patched)
- Trend resolution against the last close
- Short vs long mode MA selection and labels
- Determinism and non-mutation of the input
"""

from datetime import date, timedelta
from unittest.mock import patch

import pytest

from tw_stock_pilot.strategy.advisor import get_strategy_advice, ma_label, required_bars
from tw_stock_pilot.strategy.models import (
    AdviceStatus,
    AnalysisMode,
    ColorHint,
    InvalidPeriodError,
    PriceBar,
    RuleOutcome,
)


def _bar(day: int, close: float, high: float | None = None, low: float | None = None) -> PriceBar:
    return PriceBar(
        date=(date(2025, 6, 2) + timedelta(days=day)).isoformat(),
        open=close,
        high=close + 0.5 if high is None else high,
        low=close - 0.5 if low is None else low,
        close=close,
    )


def _history(closes: list[float]) -> list[PriceBar]:
    return [_bar(i, c) for i, c in enumerate(closes)]


def _flat_then(tail: list[PriceBar], flat_bars: int = 27) -> list[PriceBar]:
    """flat_bars closes at 100 followed by tail bars (re-dated to follow on)."""
    head = [_bar(i, 100) for i in range(flat_bars)]
    shifted = [
        _bar(flat_bars + i, b.close, high=b.high, low=b.low) for i, b in enumerate(tail)
    ]
    return head + shifted


# ── WAITING ──────────────────────────────────────────────────────────────────


class TestWaiting:
    """Not enough bars for the lookback."""

    def test_none_history(self) -> None:
        advice = get_strategy_advice(None)
        assert advice.status is AdviceStatus.WAITING

    def test_two_bars_with_default_periods(self) -> None:
        advice = get_strategy_advice(_history([100, 101]), 18, 52)
        assert advice.status is AdviceStatus.WAITING
        assert advice.advice == "insufficient data"
        assert advice.color_hint is ColorHint.GRAY
        assert advice.rule is None
        assert advice.primary_ma is None

    def test_threshold_uses_larger_period(self) -> None:
        assert required_bars(18, 52) == 55
        assert required_bars(60, 20) == 63

    def test_one_below_threshold_waits(self) -> None:
        history = _history([float(i) for i in range(1, 8)])
        assert get_strategy_advice(history, 3, 5).status is AdviceStatus.WAITING

    def test_at_threshold_evaluates(self) -> None:
        history = _history([float(i) for i in range(1, 9)])
        assert get_strategy_advice(history, 3, 5).status is not AdviceStatus.WAITING

    @pytest.mark.parametrize("short, long", [(0, 52), (18, -1), (True, 52), (18, 2.0)])
    def test_invalid_period_raises_even_when_short(self, short: object, long: object) -> None:
        with pytest.raises(InvalidPeriodError):
            get_strategy_advice(_history([100, 101]), short, long)  # type: ignore[arg-type]


# ── End-to-end histories ────────────────────────────────────────────────────


class TestHistories:
    """Histories built so the short MA(18) lands just around 100."""

    def test_washout_gift(self) -> None:
        # MA18 = (15 × 100 + 101 + 98 + 99) / 18 ≈ 99.89
        history = _flat_then([_bar(0, 101), _bar(0, 98, low=97), _bar(0, 99, low=97.5)])
        advice = get_strategy_advice(history, 18, 20)

        assert advice.status is AdviceStatus.GIFT_BUY
        assert advice.color_hint is ColorHint.ORANGE
        assert advice.reason == "breakdown without new low (shakeout confirmation)"
        assert advice.rule is RuleOutcome.WASHOUT_GIFT
        assert "short-term MA(18)" in advice.advice

    def test_breakout_validated(self) -> None:
        # MA18 = (15 × 100 + 99 + 102 + 101) / 18 ≈ 100.11
        history = _flat_then([_bar(0, 99), _bar(0, 102), _bar(0, 101, high=103)])
        advice = get_strategy_advice(history, 18, 20)

        assert advice.status is AdviceStatus.BULLISH_CONFIRMED
        assert advice.color_hint is ColorHint.RED
        assert advice.reason == "holding above key moving average (time and price confirmed)"
        assert advice.primary_ma == pytest.approx(1802 / 18)

    def test_rising_series_is_bullish_trend(self) -> None:
        advice = get_strategy_advice(_history([float(i) for i in range(1, 61)]))
        assert advice.status is AdviceStatus.BULLISH_TREND
        assert advice.color_hint is ColorHint.LIGHT_RED
        assert advice.reason == "stable bullish track"

    def test_falling_series_is_bearish_trend(self) -> None:
        advice = get_strategy_advice(_history([float(i) for i in range(60, 0, -1)]))
        assert advice.status is AdviceStatus.BEARISH_TREND
        assert advice.color_hint is ColorHint.DARK_GREEN
        assert advice.reason == "stable bearish track"

    def test_flat_series_on_ma_is_bearish_trend(self) -> None:
        # close == MA is not "above"
        advice = get_strategy_advice(_history([100.0] * 60))
        assert advice.status is AdviceStatus.BEARISH_TREND


# ── Modes ────────────────────────────────────────────────────────────────────


class TestModes:
    """Short vs long reference average."""

    def test_short_mode_uses_short_ma(self) -> None:
        advice = get_strategy_advice(_history([float(i) for i in range(1, 61)]), 18, 52, "short")
        # mean(43..60)
        assert advice.primary_ma == pytest.approx(51.5)
        assert "short-term MA(18)" in advice.advice

    def test_long_mode_uses_long_ma(self) -> None:
        advice = get_strategy_advice(
            _history([float(i) for i in range(1, 61)]), 18, 52, AnalysisMode.LONG
        )
        # mean(9..60)
        assert advice.primary_ma == pytest.approx(34.5)
        assert "long-term MA(52)" in advice.advice

    def test_unknown_mode_raises(self) -> None:
        with pytest.raises(ValueError):
            get_strategy_advice(_history([float(i) for i in range(1, 61)]), mode="medium")

    def test_ma_label(self) -> None:
        assert ma_label(AnalysisMode.SHORT, 18, 52) == "short-term MA(18)"
        assert ma_label(AnalysisMode.LONG, 18, 52) == "long-term MA(52)"


# ── Mapping table ────────────────────────────────────────────────────────────


class TestMapping:
    """Rule outcome → status / color, with the rule evaluator patched."""

    @pytest.mark.parametrize(
        "outcome, status, color",
        [
            (RuleOutcome.WASHOUT_GIFT, AdviceStatus.GIFT_BUY, ColorHint.ORANGE),
            (RuleOutcome.BREAKOUT_WATCH, AdviceStatus.WATCH_BREAKOUT, ColorHint.YELLOW),
            (RuleOutcome.BREAKDOWN_WATCH, AdviceStatus.WATCH_BREAKDOWN, ColorHint.AMBER),
            (RuleOutcome.BREAKOUT_VALIDATED, AdviceStatus.BULLISH_CONFIRMED, ColorHint.RED),
            (RuleOutcome.BREAKDOWN_VALIDATED, AdviceStatus.BEARISH_CONFIRMED, ColorHint.GREEN),
            (RuleOutcome.BREAKOUT_FAILED, AdviceStatus.CONSOLIDATING, ColorHint.LIGHT_GRAY),
        ],
    )
    def test_outcome_mapping(
        self, outcome: RuleOutcome, status: AdviceStatus, color: ColorHint
    ) -> None:
        history = _history([100.0] * 60)
        with patch(
            "tw_stock_pilot.strategy.advisor.evaluate_two_day_rule", return_value=outcome
        ):
            advice = get_strategy_advice(history)

        assert advice.status is status
        assert advice.color_hint is color
        assert advice.rule is outcome
        assert advice.reason
        assert "{ma}" not in advice.advice

    def test_every_status_has_action_hint(self) -> None:
        assert AdviceStatus.GIFT_BUY.action_hint() == "consider entry / hold"
        assert AdviceStatus.BULLISH_TREND.is_bullish
        assert not AdviceStatus.CONSOLIDATING.is_bullish
        assert AdviceStatus.BEARISH_CONFIRMED.action_hint() == "reduce / wait"


# ── Purity ───────────────────────────────────────────────────────────────────


class TestPurity:
    """Same inputs, same output; input left untouched."""

    def test_idempotent(self) -> None:
        history = _flat_then([_bar(0, 101), _bar(0, 98, low=97), _bar(0, 99, low=97.5)])
        assert get_strategy_advice(history, 18, 20) == get_strategy_advice(history, 18, 20)

    def test_history_not_mutated(self) -> None:
        history = _history([float(i) for i in range(1, 61)])
        before = list(history)
        get_strategy_advice(history)
        assert history == before
