"""
Advice cache — last computed StrategyAdvice per symbol.

The advisor is pure and knows nothing about caching. This cache is refreshed
explicitly when new history arrives and invalidated explicitly when a symbol's
settings change or it leaves the watchlist. Status-change tracking belongs to
the caller (TwStockPilot journals it).

Usage:
    cache = AdviceCache()
    advice = cache.refresh("2330", history, settings)
    cache.invalidate("2330")
"""

from typing import Dict, Sequence

from loguru import logger

from tw_stock_pilot.portfolio.watchlist import WatchlistSettings
from tw_stock_pilot.strategy.advisor import get_strategy_advice
from tw_stock_pilot.strategy.models import PriceBar, StrategyAdvice


class AdviceCache:
    """Mapping from symbol to its last computed StrategyAdvice."""

    def __init__(self) -> None:
        self._entries: Dict[str, StrategyAdvice] = {}

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, symbol: str) -> StrategyAdvice | None:
        return self._entries.get(symbol)

    def put(self, symbol: str, advice: StrategyAdvice) -> None:
        self._entries[symbol] = advice

    def refresh(
        self,
        symbol: str,
        history: Sequence[PriceBar],
        settings: WatchlistSettings | None = None,
    ) -> StrategyAdvice:
        """Recompute advice for a symbol from fresh history and store it."""
        settings = settings or WatchlistSettings()
        advice = get_strategy_advice(
            history,
            ma_short_period=settings.ma_short,
            ma_long_period=settings.ma_long,
            mode=settings.analysis_mode,
        )
        self._entries[symbol] = advice
        logger.debug("AdviceCache: {} → {}", symbol, advice.status.value)
        return advice

    def invalidate(self, symbol: str) -> bool:
        """Drop a symbol's cached advice. Returns True if an entry was removed."""
        return self._entries.pop(symbol, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def snapshot(self) -> Dict[str, StrategyAdvice]:
        """Copy of all cached entries."""
        return dict(self._entries)
