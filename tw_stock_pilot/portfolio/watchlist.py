"""
Watchlist — tracked symbols, pinned symbols and per-symbol MA settings,
plus grouping of symbols by their cached advisory status.
"""

from enum import Enum
from typing import Dict, List, Literal, Mapping

from loguru import logger
from pydantic import BaseModel, Field

from tw_stock_pilot.config import StrategyConfig
from tw_stock_pilot.strategy.models import AdviceStatus, StrategyAdvice


class WatchlistError(ValueError):
    """Invalid watchlist operation (empty or duplicate symbol)."""


class WatchlistSettings(BaseModel):
    """Per-symbol analysis settings."""

    ma_short: int = Field(default=18, gt=0)
    ma_long: int = Field(default=52, gt=0)
    analysis_mode: Literal["short", "long"] = "short"

    @classmethod
    def from_strategy(cls, strategy: StrategyConfig) -> "WatchlistSettings":
        """Settings matching the configured default MA pair and mode."""
        return cls(
            ma_short=strategy.ma_short_period,
            ma_long=strategy.ma_long_period,
            analysis_mode=strategy.analysis_mode,
        )


class WatchlistCategory(str, Enum):
    """Display groups, in display order."""

    GIFT_BUY = "GIFT_BUY"
    BULLISH_CONFIRMED = "BULLISH_CONFIRMED"
    BEARISH_CONFIRMED = "BEARISH_CONFIRMED"
    WATCH_BREAKOUT = "WATCH_BREAKOUT"
    WATCH_BREAKDOWN = "WATCH_BREAKDOWN"
    BULLISH_TREND = "BULLISH_TREND"
    BEARISH_TREND = "BEARISH_TREND"
    OTHERS = "OTHERS"


# Every AdviceStatus has an entry; WAITING and CONSOLIDATING have no group of their own.
STATUS_CATEGORY: Dict[AdviceStatus, WatchlistCategory] = {
    AdviceStatus.WAITING: WatchlistCategory.OTHERS,
    AdviceStatus.GIFT_BUY: WatchlistCategory.GIFT_BUY,
    AdviceStatus.WATCH_BREAKOUT: WatchlistCategory.WATCH_BREAKOUT,
    AdviceStatus.WATCH_BREAKDOWN: WatchlistCategory.WATCH_BREAKDOWN,
    AdviceStatus.BULLISH_CONFIRMED: WatchlistCategory.BULLISH_CONFIRMED,
    AdviceStatus.BEARISH_CONFIRMED: WatchlistCategory.BEARISH_CONFIRMED,
    AdviceStatus.CONSOLIDATING: WatchlistCategory.OTHERS,
    AdviceStatus.BULLISH_TREND: WatchlistCategory.BULLISH_TREND,
    AdviceStatus.BEARISH_TREND: WatchlistCategory.BEARISH_TREND,
}


def normalize_symbol(symbol: str) -> str:
    """Strip whitespace and exchange suffix, upper-case the rest ("2330.tw" → "2330")."""
    cleaned = symbol.strip().upper()
    for suffix in (".TWO", ".TW"):
        if cleaned.endswith(suffix):
            cleaned = cleaned[: -len(suffix)]
            break
    return cleaned


class Watchlist(BaseModel):
    """Ordered, unique list of tracked symbols.

    Usage:
        wl = Watchlist()
        wl.add("2330")
        wl.toggle_pin("2330")
        wl.update_settings("2330", analysis_mode="long")
    """

    symbols: List[str] = []
    pinned: List[str] = []
    settings: Dict[str, WatchlistSettings] = {}

    def add(self, symbol: str) -> str:
        """Add a symbol. Returns the normalized symbol.

        Raises:
            WatchlistError: If the symbol is empty or already tracked.
        """
        normalized = normalize_symbol(symbol)
        if not normalized:
            raise WatchlistError("symbol must not be empty")
        if normalized in self.symbols:
            raise WatchlistError(f"{normalized} is already in the watchlist")
        self.symbols.append(normalized)
        logger.debug("Watchlist: added {}", normalized)
        return normalized

    def remove(self, symbol: str) -> bool:
        """Remove a symbol with its pin and settings. Returns False if absent."""
        normalized = normalize_symbol(symbol)
        if normalized not in self.symbols:
            return False
        self.symbols.remove(normalized)
        if normalized in self.pinned:
            self.pinned.remove(normalized)
        self.settings.pop(normalized, None)
        logger.debug("Watchlist: removed {}", normalized)
        return True

    def toggle_pin(self, symbol: str) -> bool:
        """Pin or unpin a tracked symbol. Returns the new pinned state."""
        normalized = normalize_symbol(symbol)
        if normalized not in self.symbols:
            raise WatchlistError(f"{normalized} is not in the watchlist")
        if normalized in self.pinned:
            self.pinned.remove(normalized)
            return False
        self.pinned.append(normalized)
        return True

    def is_pinned(self, symbol: str) -> bool:
        return normalize_symbol(symbol) in self.pinned

    def settings_for(
        self, symbol: str, defaults: WatchlistSettings | None = None
    ) -> WatchlistSettings:
        """Settings saved for a symbol, else defaults (built-in 18/52/short if None)."""
        saved = self.settings.get(normalize_symbol(symbol))
        if saved is not None:
            return saved
        return defaults or WatchlistSettings()

    def update_settings(
        self,
        symbol: str,
        defaults: WatchlistSettings | None = None,
        **changes: object,
    ) -> WatchlistSettings:
        """Merge changes into a symbol's settings and return the result."""
        normalized = normalize_symbol(symbol)
        current = self.settings_for(normalized, defaults)
        updated = WatchlistSettings(**{**current.model_dump(), **changes})
        self.settings[normalized] = updated
        return updated


def group_watchlist(
    watchlist: Watchlist,
    advice_by_symbol: Mapping[str, StrategyAdvice],
) -> Dict[WatchlistCategory, List[str]]:
    """Group watchlist symbols by cached advisory status.

    Symbols without cached advice land in OTHERS. Pinned symbols come first in
    each group; otherwise watchlist order is kept.

    Returns:
        Every WatchlistCategory as a key, in display order.
    """
    groups: Dict[WatchlistCategory, List[str]] = {cat: [] for cat in WatchlistCategory}

    for symbol in watchlist.symbols:
        advice = advice_by_symbol.get(symbol)
        if advice is None:
            groups[WatchlistCategory.OTHERS].append(symbol)
            continue
        groups[STATUS_CATEGORY[advice.status]].append(symbol)

    pinned = set(watchlist.pinned)
    for category, symbols in groups.items():
        # sorted() is stable, so unpinned symbols keep watchlist order
        groups[category] = sorted(symbols, key=lambda s: s not in pinned)

    return groups
