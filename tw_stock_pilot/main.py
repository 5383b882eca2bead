"""
TwStockPilot — main orchestrator for two-day-rule analysis of Taiwan stocks.

Coordinates one scan of the watchlist:
1. Fetch daily history → 2. Validate bars → 3. Refresh cached advice →
4. Journal status changes → 5. Group the watchlist by status

Usage:
    # Scan every watchlist symbol
    tw-stock-pilot scan

    # Advice, health diagnosis and suggested size for one symbol
    tw-stock-pilot analyze 2330

    # Position size for an explicit stop
    tw-stock-pilot size --entry 100 --stop 93 --assets 1000000

    # Holdings, totals and sector exposure (--refresh fetches quotes first)
    tw-stock-pilot summary --refresh

    # Realized P&L for a date range
    tw-stock-pilot realized --from 2026-01-01 --to 2026-06-30

    # LLM commentary over current holdings (GEMINI_API_KEY in .env)
    tw-stock-pilot advise
"""

import argparse
import asyncio
import json
import os
import sys
from datetime import date
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import httpx
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel

from tw_stock_pilot.config import AppConfig, load_config
from tw_stock_pilot.data.history_fetcher import (
    HistoryFetchError,
    HistoryProvider,
    create_provider,
    fetch_history,
)
from tw_stock_pilot.decision.gemini_advisor import GeminiAdvisor, PortfolioAdvice
from tw_stock_pilot.execution.position_sizer import PositionSizer
from tw_stock_pilot.monitor.signal_journal import SignalJournal
from tw_stock_pilot.portfolio.book import PortfolioBook
from tw_stock_pilot.portfolio.ledger import portfolio_metrics, sector_exposure
from tw_stock_pilot.portfolio.schemas import Holding, PortfolioMetrics, SectorWeight, Transaction
from tw_stock_pilot.portfolio.watchlist import (
    Watchlist,
    WatchlistCategory,
    WatchlistSettings,
    group_watchlist,
    normalize_symbol,
)
from tw_stock_pilot.storage.keyed_store import KeyedStore
from tw_stock_pilot.strategy.advice_cache import AdviceCache
from tw_stock_pilot.strategy.health_score import (
    calculate_health_score,
    generate_health_report,
    health_status,
    snapshot_from_history,
)
from tw_stock_pilot.strategy.models import HistoryValidationError, PriceBar, StrategyAdvice

# A single sector above this share of market value is flagged.
SECTOR_CONCENTRATION_PCT = 50.0


class HealthDiagnosis(BaseModel):
    score: int
    label: str
    findings: List[Tuple[str, str]] = []


class SymbolAnalysis(BaseModel):
    """Advice for one symbol plus a suggested position at the default stop."""

    symbol: str
    advice: StrategyAdvice
    last_close: float
    stop_price: float
    suggested_shares: int
    health: HealthDiagnosis | None = None


class PortfolioSummary(BaseModel):
    holdings: List[Holding]
    metrics: PortfolioMetrics
    sectors: List[SectorWeight]

    @property
    def concentrated_sectors(self) -> List[SectorWeight]:
        return [s for s in self.sectors if s.percentage > SECTOR_CONCENTRATION_PCT]


class TwStockPilot:
    """Main orchestrator for tw-stock-pilot.

    Wires the subsystems together:
    - HistoryProvider: daily bars and quotes from Yahoo
    - AdviceCache: last advice per symbol, refreshed on every scan
    - SignalJournal: JSONL record of advice and status changes
    - PortfolioBook: transactions and watchlist in the keyed store
    - PositionSizer: fractional-risk sizing
    - GeminiAdvisor: LLM portfolio commentary
    """

    def __init__(
        self,
        config: AppConfig,
        store: KeyedStore | None = None,
        provider: HistoryProvider | None = None,
        advisor: GeminiAdvisor | None = None,
        journal: SignalJournal | None = None,
    ) -> None:
        self.config = config
        self.default_settings = WatchlistSettings.from_strategy(config.strategy)

        # ── Subsystems ──────────────────────────────────────────────────
        self.store = store or KeyedStore(config.storage.db_path)
        self.book = PortfolioBook(self.store)
        self.cache = AdviceCache()
        self.journal = journal or SignalJournal(config.storage.signal_journal_path)
        self.provider = provider or create_provider(
            "yahoo",
            suffixes=config.data.suffixes,
            max_retries=config.data.max_retries,
            timeout=config.data.timeout,
        )
        self.sizer = PositionSizer(config.risk)
        self.advisor = advisor or GeminiAdvisor(
            api_key=os.getenv("GEMINI_API_KEY", ""),
            model=config.advisor.model,
            output_language=config.advisor.output_language,
            timeout=config.advisor.timeout,
        )

    def close(self) -> None:
        self.store.close()

    # ── Watchlist ───────────────────────────────────────────────────────

    def load_watchlist(self) -> Watchlist:
        """Stored watchlist, seeded from config on first use."""
        watchlist = self.book.load_watchlist()
        if not watchlist.symbols:
            for symbol in self.config.watchlist:
                watchlist.add(symbol)
            self.book.save_watchlist(watchlist)
            logger.info("TwStockPilot: seeded watchlist with {}", watchlist.symbols)
        return watchlist

    def settings_for(self, symbol: str, watchlist: Watchlist) -> WatchlistSettings:
        """Per-symbol settings, falling back to the configured strategy."""
        return watchlist.settings_for(symbol, self.default_settings)

    # ── Analysis ────────────────────────────────────────────────────────

    async def _fetch(self, symbol: str, client: httpx.AsyncClient) -> List[PriceBar]:
        return await fetch_history(
            self.provider,
            symbol,
            client,
            range_=self.config.data.range,
            interval=self.config.data.interval,
        )

    async def refresh_signals(
        self, symbols: Sequence[str], watchlist: Watchlist | None = None
    ) -> Dict[str, StrategyAdvice]:
        """Fetch history and refresh advice for symbols.

        Symbols without usable history are journaled as FETCH_FAILED and skipped.
        """
        watchlist = watchlist or self.load_watchlist()
        refreshed: Dict[str, StrategyAdvice] = {}
        async with httpx.AsyncClient() as client:
            for symbol in symbols:
                try:
                    bars = await self._fetch(symbol, client)
                except (HistoryFetchError, HistoryValidationError) as e:
                    logger.error("TwStockPilot: skipping {}: {}", symbol, e)
                    self.journal.log_event("FETCH_FAILED", {"symbol": symbol, "error": str(e)})
                    continue
                refreshed[symbol] = self._refresh(symbol, bars, watchlist)
        return refreshed

    async def scan(self) -> Dict[WatchlistCategory, List[str]]:
        """Refresh advice for every watchlist symbol and group the watchlist."""
        watchlist = self.load_watchlist()
        logger.info("=" * 60)
        logger.info("TwStockPilot: scanning {} symbols", len(watchlist.symbols))
        logger.info("=" * 60)

        await self.refresh_signals(watchlist.symbols, watchlist)

        groups = group_watchlist(watchlist, self.cache.snapshot())
        for category, symbols in groups.items():
            if symbols:
                logger.info("  {:<18} {}", category.value, ", ".join(symbols))

        logger.info("TwStockPilot: scan complete, {} symbols analysed", len(self.cache))
        return groups

    def _refresh(self, symbol: str, bars: List[PriceBar], watchlist: Watchlist) -> StrategyAdvice:
        """Recompute advice and journal it, noting any status change."""
        previous = self.journal.last_status(symbol)
        advice = self.cache.refresh(symbol, bars, self.settings_for(symbol, watchlist))
        self.journal.log_advice(symbol, advice)

        if previous is not None and previous != advice.status.value:
            logger.info("TwStockPilot: {} {} → {}", symbol, previous, advice.status.value)
            self.journal.log_event(
                "STATUS_CHANGE",
                {"symbol": symbol, "from": previous, "to": advice.status.value},
            )
        return advice

    async def analyze(self, symbol: str) -> SymbolAnalysis:
        """Advice and health diagnosis for one symbol, with a position sized at
        the default stop percent.

        Raises:
            HistoryFetchError: If no history is available for the symbol.
            HistoryValidationError: If the fetched history is malformed.
        """
        normalized = normalize_symbol(symbol)
        watchlist = self.load_watchlist()

        async with httpx.AsyncClient() as client:
            bars = await self._fetch(normalized, client)

        advice = self._refresh(normalized, bars, watchlist)
        last_close = bars[-1].close
        pct = self.config.risk.default_stop_loss_pct
        return SymbolAnalysis(
            symbol=normalized,
            advice=advice,
            last_close=last_close,
            stop_price=self.sizer.stop_price_for_percent(last_close, pct),
            suggested_shares=self.sizer.shares_for_stop_percent(
                self.config.risk.total_assets, last_close, pct
            ),
            health=self.diagnose(normalized, bars),
        )

    def diagnose(self, symbol: str, bars: List[PriceBar]) -> HealthDiagnosis | None:
        """Health score from MA20/MA60 and any cached fundamentals; None under 60 bars."""
        snapshot = snapshot_from_history(symbol, bars, self.book.stock_data().get(symbol))
        if snapshot is None:
            return None
        score = calculate_health_score(snapshot)
        return HealthDiagnosis(
            score=score,
            label=health_status(score).label,
            findings=generate_health_report(snapshot),
        )

    def size(self, entry_price: float, stop_loss_price: float, total_assets: float | None = None) -> int:
        """Position size for an explicit entry and stop."""
        assets = self.config.risk.total_assets if total_assets is None else total_assets
        return self.sizer.calculate_shares(assets, entry_price, stop_loss_price)

    # ── Portfolio ───────────────────────────────────────────────────────

    async def refresh_prices(self) -> Dict[str, float]:
        """Fetch quotes for every held symbol and cache the snapshots."""
        prices: Dict[str, float] = {}
        async with httpx.AsyncClient() as client:
            for holding in self.book.holdings():
                quote = await self.provider.fetch_quote(holding.symbol, client)
                if quote is None:
                    logger.warning("TwStockPilot: no quote for {}", holding.symbol)
                    continue
                prices[holding.symbol] = quote.price
                cached = self.book.stock_data().get(holding.symbol, {})
                # keep fields the quote does not carry (sector, fundamentals)
                self.book.update_stock_data(holding.symbol, {**cached, **quote.model_dump()})
        return prices

    def cached_prices(self) -> Dict[str, float]:
        """Last quoted price per symbol from the stored snapshots."""
        return {
            symbol: float(data["price"])
            for symbol, data in self.book.stock_data().items()
            if isinstance(data, dict) and data.get("price") is not None
        }

    def holdings(self) -> List[Holding]:
        """Active holdings valued at the last cached quotes."""
        return self.book.holdings(self.cached_prices())

    def sectors(self) -> Dict[str, str]:
        """Configured sectors, overridden by a "sector" field in a quote snapshot."""
        sectors = dict(self.config.sectors)
        for symbol, data in self.book.stock_data().items():
            if isinstance(data, dict) and data.get("sector"):
                sectors[symbol] = str(data["sector"])
        return sectors

    def summary(self) -> PortfolioSummary:
        """Holdings with unrealized P&L, portfolio totals and sector exposure."""
        holdings = self.holdings()
        summary = PortfolioSummary(
            holdings=holdings,
            metrics=portfolio_metrics(holdings),
            sectors=sector_exposure(holdings, self.sectors()),
        )
        for sector in summary.concentrated_sectors:
            logger.warning(
                "TwStockPilot: {} is {:.1f}% of the portfolio", sector.name, sector.percentage
            )
        return summary

    def realized(self, start_date: str, end_date: str) -> float:
        """Realized P&L of sells dated within [start_date, end_date]."""
        return self.book.realized_pl(start_date, end_date)

    async def advise(self) -> PortfolioAdvice:
        """LLM commentary over current holdings and their two-day-rule signals.

        Held symbols without advice in this process are analysed first, so the
        prompt carries signals even when no scan ran before.
        """
        prices = await self.refresh_prices()
        holdings = self.book.holdings(prices)

        missing = [h.symbol for h in holdings if h.symbol not in self.cache]
        if missing:
            await self.refresh_signals(missing)
        signals = {h.symbol: self.cache.get(h.symbol) for h in holdings if h.symbol in self.cache}

        logger.info(
            "TwStockPilot: requesting advice for {} holdings ({} signals)",
            len(holdings),
            len(signals),
        )
        return await self.advisor.generate_advice(holdings, signals=signals)


def setup_logging(config: AppConfig) -> None:
    """Configure loguru logging from config."""
    log_dir = Path(config.logging.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        level=config.logging.level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level:8}</level> | {message}",
    )
    logger.add(
        config.logging.file,
        level=config.logging.level,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
        encoding="utf-8",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TwStockPilot — two-day rule for Taiwan stocks")
    parser.add_argument(
        "--config",
        default="config/default.yaml",
        help="Path to config YAML",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", help="Refresh advice for every watchlist symbol")

    analyze = sub.add_parser("analyze", help="Advice, health and suggested size for one symbol")
    analyze.add_argument("symbol")

    size = sub.add_parser("size", help="Position size for an entry and stop price")
    size.add_argument("--entry", type=float, required=True)
    size.add_argument("--stop", type=float, required=True)
    size.add_argument("--assets", type=float, default=None, help="Defaults to risk.total_assets")

    sub.add_parser("advise", help="LLM advice over current holdings")

    for name, help_text in (
        ("holdings", "Active holdings with unrealized P&L"),
        ("summary", "Portfolio totals and sector exposure"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--refresh", action="store_true", help="Fetch quotes first")

    realized = sub.add_parser("realized", help="Realized P&L for a date range")
    realized.add_argument(
        "--from",
        dest="start",
        default=None,
        help="First trade date YYYY-MM-DD (default Jan 1 of this year)",
    )
    realized.add_argument("--to", dest="end", default=None, help="Last trade date (default today)")

    watch = sub.add_parser("watch", help="Edit the watchlist")
    watch.add_argument("action", choices=["add", "remove", "pin", "set"])
    watch.add_argument("symbol")
    watch.add_argument("--short", type=int, default=None, help="Short MA period (set)")
    watch.add_argument("--long", type=int, default=None, help="Long MA period (set)")
    watch.add_argument("--mode", choices=["short", "long"], default=None, help="Analysis mode (set)")

    trade = sub.add_parser("trade", help="Record a transaction")
    trade.add_argument("side", choices=["BUY", "SELL"], type=str.upper)
    trade.add_argument("symbol")
    trade.add_argument("shares", type=float)
    trade.add_argument("price", type=float)
    trade.add_argument("--date", default=None, help="Trade date YYYY-MM-DD (default today)")

    export = sub.add_parser("export", help="Write a JSON backup")
    export.add_argument("path")

    restore = sub.add_parser("import", help="Replace transactions from a JSON backup")
    restore.add_argument("path")

    return parser


def _print_holdings(holdings: List[Holding]) -> None:
    if not holdings:
        print("no holdings")
        return
    for h in holdings:
        print(
            f"{h.symbol:<6} {h.shares:>8g} @ {h.avg_cost:>9.2f}  "
            f"price {h.current_price:>9.2f}  "
            f"P&L {h.unrealized_pl:>+12,.0f} ({h.return_pct:+.2f}%)"
        )


def run_command(pilot: TwStockPilot, args: argparse.Namespace) -> None:
    """Dispatch one parsed CLI command."""
    if args.command == "scan":
        asyncio.run(pilot.scan())

    elif args.command == "analyze":
        result = asyncio.run(pilot.analyze(args.symbol))
        advice = result.advice
        print(f"{result.symbol}  {advice.status.value}  ({advice.color_hint.value})")
        print(f"  {advice.advice}")
        print(f"  reason: {advice.reason}")
        print(f"  action: {advice.status.action_hint()}")
        print(
            f"  size:   {result.suggested_shares} shares "
            f"(close {result.last_close:.2f}, stop {result.stop_price:.2f})"
        )
        if result.health is not None:
            print(f"  health: {result.health.score} ({result.health.label})")
            for kind, text in result.health.findings:
                print(f"    [{kind}] {text}")

    elif args.command == "size":
        print(pilot.size(args.entry, args.stop, args.assets))

    elif args.command == "advise":
        advice = asyncio.run(pilot.advise())
        if advice.header:
            print(advice.header)
        print(advice.advice)
        print(f"— {advice.lesson}  [{advice.data_source}]")

    elif args.command in ("holdings", "summary"):
        if args.refresh:
            asyncio.run(pilot.refresh_prices())
        if args.command == "holdings":
            _print_holdings(pilot.holdings())
            return
        summary = pilot.summary()
        _print_holdings(summary.holdings)
        m = summary.metrics
        print(
            f"cost {m.total_cost:,.0f}  value {m.total_market_value:,.0f}  "
            f"P&L {m.unrealized_pl:+,.0f} ({m.roi:+.2f}%)"
        )
        for sector in summary.sectors:
            print(f"  {sector.name:<10} {sector.percentage:>5.1f}%  {sector.value:,.0f}")
        for sector in summary.concentrated_sectors:
            print(f"  warning: {sector.name} exceeds {SECTOR_CONCENTRATION_PCT:.0f}% of the portfolio")

    elif args.command == "realized":
        today = date.today()
        start = args.start or date(today.year, 1, 1).isoformat()
        end = args.end or today.isoformat()
        print(f"{pilot.realized(start, end):+,.0f}")

    elif args.command == "watch":
        watchlist = pilot.load_watchlist()
        if args.action == "add":
            watchlist.add(args.symbol)
        elif args.action == "remove":
            watchlist.remove(args.symbol)
            pilot.cache.invalidate(normalize_symbol(args.symbol))
        elif args.action == "set":
            changes = {
                key: value
                for key, value in (
                    ("ma_short", args.short),
                    ("ma_long", args.long),
                    ("analysis_mode", args.mode),
                )
                if value is not None
            }
            settings = watchlist.update_settings(args.symbol, pilot.default_settings, **changes)
            pilot.cache.invalidate(normalize_symbol(args.symbol))
            print(f"MA{settings.ma_short}/MA{settings.ma_long} {settings.analysis_mode}")
        else:
            watchlist.toggle_pin(args.symbol)
        pilot.book.save_watchlist(watchlist)
        print(", ".join(watchlist.symbols))

    elif args.command == "trade":
        tx = pilot.book.add_transaction(
            Transaction(
                symbol=args.symbol,
                side=args.side,
                shares=args.shares,
                price=args.price,
                date=args.date or date.today().isoformat(),
            )
        )
        print(f"recorded {tx.id}")

    elif args.command == "export":
        with open(args.path, "w", encoding="utf-8") as f:
            json.dump(pilot.book.export_backup(), f, ensure_ascii=False, indent=2)
        logger.info("TwStockPilot: backup written to {}", args.path)

    elif args.command == "import":
        with open(args.path, "r", encoding="utf-8") as f:
            count = pilot.book.import_backup(json.load(f))
        print(f"imported {count} transactions")


def main() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()

    # Load environment variables
    load_dotenv()

    config = load_config(args.config)
    setup_logging(config)

    logger.info("TwStockPilot v0.1.0 starting")
    logger.info("Config: {}", args.config)

    pilot = TwStockPilot(config)
    try:
        pilot.book.migrate_legacy_holdings()
        run_command(pilot, args)
    finally:
        pilot.close()


if __name__ == "__main__":
    main()
