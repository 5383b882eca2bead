"""
Position sizer — maximum share count under a fixed fractional-risk rule.

Uses the 1% rule:
    max_loss = total_assets × risk_fraction
    shares   = floor(max_loss / (entry_price − stop_loss_price))

A stop at or above the entry defines no downside, so the size is 0 rather than
an error.
"""

import math

from loguru import logger

from tw_stock_pilot.config import RiskConfig

DEFAULT_RISK_FRACTION = 0.01


def calculate_position_size(
    total_assets: float,
    entry_price: float,
    stop_loss_price: float,
    risk_fraction: float = DEFAULT_RISK_FRACTION,
) -> int:
    """Calculate the maximum number of shares for a trade.

    Args:
        total_assets: Account equity.
        entry_price: Planned entry price.
        stop_loss_price: Stop-loss price, must be below entry.
        risk_fraction: Share of total assets allowed to be lost at the stop.

    Returns:
        Non-negative share count. 0 when entry_price <= stop_loss_price.
    """
    if entry_price <= stop_loss_price:
        logger.warning(
            "PositionSizer: stop {} is not below entry {}, returning 0",
            stop_loss_price,
            entry_price,
        )
        return 0

    risk_per_share = entry_price - stop_loss_price
    max_loss_allowed = total_assets * risk_fraction
    return max(0, math.floor(max_loss_allowed / risk_per_share))


class PositionSizer:
    """Fractional-risk sizing bound to a RiskConfig.

    Usage:
        sizer = PositionSizer(RiskConfig(risk_fraction=0.01))
        shares = sizer.calculate_shares(1_000_000, entry_price=100, stop_loss_price=93)
        shares = sizer.shares_for_stop_percent(1_000_000, entry_price=100, stop_loss_pct=7)
    """

    def __init__(self, config: RiskConfig | None = None) -> None:
        self._config = config or RiskConfig()

    @property
    def risk_fraction(self) -> float:
        return self._config.risk_fraction

    def max_loss_allowed(self, total_assets: float) -> float:
        """Largest loss the account accepts on one trade."""
        return total_assets * self._config.risk_fraction

    def calculate_shares(
        self,
        total_assets: float,
        entry_price: float,
        stop_loss_price: float,
    ) -> int:
        """Maximum shares so that hitting the stop loses at most max_loss_allowed."""
        shares = calculate_position_size(
            total_assets,
            entry_price,
            stop_loss_price,
            risk_fraction=self._config.risk_fraction,
        )
        logger.debug(
            "PositionSizer: assets={:,.0f} entry={} stop={} → {} shares (risk={:.1%})",
            total_assets,
            entry_price,
            stop_loss_price,
            shares,
            self._config.risk_fraction,
        )
        return shares

    def stop_price_for_percent(self, entry_price: float, stop_loss_pct: float) -> float:
        """Stop price stop_loss_pct percent below the entry.

        Args:
            entry_price: Planned entry price.
            stop_loss_pct: Stop distance in percent (7 means 7%).
        """
        return entry_price * (1 - stop_loss_pct / 100)

    def shares_for_stop_percent(
        self,
        total_assets: float,
        entry_price: float,
        stop_loss_pct: float | None = None,
    ) -> int:
        """Size a trade whose stop sits a percentage below the entry.

        Uses RiskConfig.default_stop_loss_pct when stop_loss_pct is None.
        """
        pct = self._config.default_stop_loss_pct if stop_loss_pct is None else stop_loss_pct
        if pct <= 0:
            logger.error("PositionSizer: stop_loss_pct must be > 0, got {}", pct)
            return 0
        stop_price = self.stop_price_for_percent(entry_price, pct)
        return self.calculate_shares(total_assets, entry_price, stop_price)
