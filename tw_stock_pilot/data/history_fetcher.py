"""
Price-history fetcher — async daily OHLCV and quotes for Taiwan equities.

Uses the Yahoo Finance v8 chart API. Listed stocks trade under the ".TW"
suffix and OTC stocks under ".TWO"; the provider walks that suffix ladder and
retries each request with exponential backoff. Bars are validated before they
leave this module, so the signal engine only ever sees ordered, sane history.

Usage:
    provider = create_provider("yahoo")
    async with httpx.AsyncClient() as http:
        bars = await fetch_history(provider, "2330", http)
"""

import abc
import asyncio
from typing import Any, Dict, List, Sequence

import httpx
import pandas as pd
from loguru import logger
from pydantic import BaseModel

from tw_stock_pilot.strategy.models import HistoryOrderError, HistoryValidationError, PriceBar

BAR_COLUMNS = ["date", "open", "high", "low", "close", "volume"]


class HistoryFetchError(Exception):
    """No usable history could be fetched for a symbol."""


class Quote(BaseModel):
    """Latest quote snapshot."""

    symbol: str
    name: str
    price: float
    previous_close: float
    change: float
    change_percent: float
    open: float
    high: float
    low: float
    volume: float = 0
    currency: str = "TWD"
    exchange: str = ""
    data_source: str = "YAHOO_FINANCE_V8"


def _empty_frame() -> pd.DataFrame:
    return pd.DataFrame(columns=BAR_COLUMNS)


# ── Abstract Base ───────────────────────────────────────────────────────────


class HistoryProvider(abc.ABC):
    """Abstract price-history provider interface."""

    @abc.abstractmethod
    async def fetch_daily_bars(
        self,
        symbol: str,
        client: httpx.AsyncClient,
        range_: str = "2y",
        interval: str = "1d",
    ) -> pd.DataFrame:
        """Fetch OHLCV bars for a symbol.

        Returns:
            DataFrame with columns: date (YYYY-MM-DD str), open, high, low, close,
            volume; sorted by date, no duplicates. Empty on failure.
        """
        ...

    @abc.abstractmethod
    async def fetch_quote(self, symbol: str, client: httpx.AsyncClient) -> Quote | None:
        """Fetch the latest quote, or None when the symbol is unknown."""
        ...

    @property
    @abc.abstractmethod
    def name(self) -> str: ...


# ── Yahoo Provider ──────────────────────────────────────────────────────────


class YahooChartProvider(HistoryProvider):
    """Yahoo Finance v8 chart API.

    Endpoint: GET https://query1.finance.yahoo.com/v8/finance/chart/{ticker}
    404 means the ticker does not exist under that suffix; 429 and 5xx are retried.
    """

    BASE_URL = "https://query1.finance.yahoo.com/v8/finance/chart"
    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    DEFAULT_TIMEZONE = "Asia/Taipei"

    def __init__(
        self,
        suffixes: Sequence[str] = (".TW", ".TWO"),
        max_retries: int = 3,
        timeout: float = 30.0,
        backoff_base: float = 2.0,
    ) -> None:
        self._suffixes = list(suffixes)
        self._max_retries = max_retries
        self._timeout = timeout
        self._backoff_base = backoff_base

    @property
    def name(self) -> str:
        return "yahoo"

    async def fetch_daily_bars(
        self,
        symbol: str,
        client: httpx.AsyncClient,
        range_: str = "2y",
        interval: str = "1d",
    ) -> pd.DataFrame:
        """Fetch bars, trying each exchange suffix until one returns data."""
        for suffix in self._suffixes:
            ticker = f"{symbol}{suffix}"
            result = await self._fetch_chart(
                ticker, {"interval": interval, "range": range_}, client
            )
            if result is None:
                continue

            df = self._parse_bars(result)
            if df.empty:
                logger.warning("Yahoo: {} returned no bars", ticker)
                continue

            logger.info("Yahoo: fetched {} bars for {} ({})", len(df), ticker, range_)
            return df

        logger.warning("Yahoo: no history for {} under {}", symbol, self._suffixes)
        return _empty_frame()

    async def fetch_quote(self, symbol: str, client: httpx.AsyncClient) -> Quote | None:
        """Fetch today's quote, trying each exchange suffix."""
        for suffix in self._suffixes:
            ticker = f"{symbol}{suffix}"
            result = await self._fetch_chart(ticker, {"interval": "1d", "range": "1d"}, client)
            if result is None:
                continue
            quote = self._parse_quote(symbol, result)
            if quote is not None:
                logger.info("Yahoo: {} {} @ {}", ticker, quote.name, quote.price)
                return quote
        return None

    async def _fetch_chart(
        self,
        ticker: str,
        params: Dict[str, str],
        client: httpx.AsyncClient,
    ) -> Dict[str, Any] | None:
        """GET one chart payload with retries. Returns chart.result[0] or None."""
        url = f"{self.BASE_URL}/{ticker}"
        headers = {"User-Agent": self.USER_AGENT}

        for attempt in range(1, self._max_retries + 1):
            try:
                response = await client.get(
                    url, params=params, headers=headers, timeout=self._timeout
                )

                if response.status_code == 404:
                    logger.debug("Yahoo: {} not found", ticker)
                    return None

                if response.status_code == 429 or response.status_code >= 500:
                    wait = self._backoff_base**attempt
                    logger.warning(
                        "Yahoo: HTTP {} for {}, waiting {}s (attempt {})",
                        response.status_code,
                        ticker,
                        wait,
                        attempt,
                    )
                    await asyncio.sleep(wait)
                    continue

                if response.status_code != 200:
                    logger.error(
                        "Yahoo: HTTP {} for {}: {}",
                        response.status_code,
                        ticker,
                        response.text[:300],
                    )
                    return None

                data = response.json()
                results = (data.get("chart") or {}).get("result") or []
                if not results:
                    error = (data.get("chart") or {}).get("error")
                    logger.warning("Yahoo: empty chart for {}: {}", ticker, error)
                    return None
                return results[0]

            except (httpx.HTTPError, ValueError) as e:
                wait = self._backoff_base**attempt
                logger.warning(
                    "Yahoo: request error '{}' for {}, retry in {}s (attempt {})",
                    e,
                    ticker,
                    wait,
                    attempt,
                )
                await asyncio.sleep(wait)

        logger.error("Yahoo: failed after {} retries for {}", self._max_retries, ticker)
        return None

    def _parse_bars(self, result: Dict[str, Any]) -> pd.DataFrame:
        """Convert a chart result into a clean bar DataFrame."""
        timestamps = result.get("timestamp") or []
        if not timestamps:
            return _empty_frame()

        quote = ((result.get("indicators") or {}).get("quote") or [{}])[0]
        tz = (result.get("meta") or {}).get("exchangeTimezoneName") or self.DEFAULT_TIMEZONE

        def column(name: str) -> List[Any]:
            values = quote.get(name) or []
            return list(values) + [None] * (len(timestamps) - len(values))

        df = pd.DataFrame(
            {
                "datetime": pd.to_datetime(timestamps, unit="s", utc=True).tz_convert(tz),
                "open": column("open")[: len(timestamps)],
                "high": column("high")[: len(timestamps)],
                "low": column("low")[: len(timestamps)],
                "close": column("close")[: len(timestamps)],
                "volume": column("volume")[: len(timestamps)],
            }
        )
        df[["open", "high", "low", "close", "volume"]] = df[
            ["open", "high", "low", "close", "volume"]
        ].astype(float)
        df = df.dropna(subset=["open", "high", "low", "close"]).copy()
        df["volume"] = df["volume"].fillna(0)
        df["date"] = df["datetime"].dt.strftime("%Y-%m-%d")

        return (
            df.drop_duplicates(subset=["date"], keep="last")
            .sort_values("date")
            .reset_index(drop=True)[BAR_COLUMNS]
        )

    def _parse_quote(self, symbol: str, result: Dict[str, Any]) -> Quote | None:
        meta = result.get("meta") or {}
        price = float(meta.get("regularMarketPrice") or 0)
        if price <= 0:
            return None

        prev_close = float(meta.get("chartPreviousClose") or meta.get("previousClose") or price)
        change = price - prev_close
        quote = ((result.get("indicators") or {}).get("quote") or [{}])[0]
        opens = [v for v in quote.get("open") or [] if v is not None]
        highs = [v for v in quote.get("high") or [] if v is not None]
        lows = [v for v in quote.get("low") or [] if v is not None]
        volumes = [v for v in quote.get("volume") or [] if v is not None]

        return Quote(
            symbol=symbol,
            name=meta.get("shortName") or meta.get("longName") or symbol,
            price=price,
            previous_close=prev_close,
            change=change,
            change_percent=change / prev_close * 100 if prev_close else 0.0,
            open=opens[0] if opens else price,
            high=max(highs) if highs else price,
            low=min(lows) if lows else price,
            volume=sum(volumes),
            currency=meta.get("currency") or "TWD",
            exchange=meta.get("exchangeName") or "",
        )


# ── Validation ──────────────────────────────────────────────────────────────


def frame_to_bars(df: pd.DataFrame) -> List[PriceBar]:
    """Convert a bar DataFrame into PriceBar records."""
    return [
        PriceBar(
            date=row.date,
            open=row.open,
            high=row.high,
            low=row.low,
            close=row.close,
            volume=row.volume,
        )
        for row in df.itertuples(index=False)
    ]


def validate_history(bars: Sequence[PriceBar]) -> List[PriceBar]:
    """Reject malformed history at the ingestion boundary.

    Raises:
        HistoryOrderError: If dates are not strictly increasing.
        HistoryValidationError: If a bar's range does not contain its open and
            close, or its close is not positive.
    """
    for i, bar in enumerate(bars):
        if bar.low > min(bar.open, bar.close) or bar.high < max(bar.open, bar.close):
            raise HistoryValidationError(
                f"bar {bar.date}: open/close outside low-high range "
                f"({bar.open}, {bar.close} vs {bar.low}-{bar.high})"
            )
        if bar.close <= 0:
            raise HistoryValidationError(f"bar {bar.date}: non-positive close {bar.close}")
        if i and bar.date <= bars[i - 1].date:
            raise HistoryOrderError(
                f"bar dates must strictly increase: {bars[i - 1].date} then {bar.date}"
            )
    return list(bars)


# ── Factory ─────────────────────────────────────────────────────────────────


def create_provider(provider: str = "yahoo", **kwargs: Any) -> HistoryProvider:
    """Create a history provider by name.

    Raises:
        ValueError: If provider name is unknown.
    """
    providers = {
        "yahoo": YahooChartProvider,
    }

    cls = providers.get(provider)
    if cls is None:
        raise ValueError(
            f"Unknown history provider: '{provider}'. Available: {list(providers.keys())}"
        )

    return cls(**kwargs)


# ── Convenience ─────────────────────────────────────────────────────────────


async def fetch_history(
    provider: HistoryProvider,
    symbol: str,
    client: httpx.AsyncClient,
    range_: str = "2y",
    interval: str = "1d",
) -> List[PriceBar]:
    """Fetch and validate history for one symbol.

    Raises:
        HistoryFetchError: If the provider returns no bars.
        HistoryValidationError: If the returned bars are malformed.
    """
    df = await provider.fetch_daily_bars(symbol, client, range_=range_, interval=interval)
    if df.empty:
        raise HistoryFetchError(f"No history for {symbol} via {provider.name}")
    return validate_history(frame_to_bars(df))


async def fetch_all_symbols(
    provider: HistoryProvider,
    symbols: Sequence[str],
    range_: str = "2y",
    interval: str = "1d",
) -> Dict[str, List[PriceBar]]:
    """Fetch history for several symbols sequentially, skipping failures.

    Returns:
        Dict of symbol -> bars, only for symbols that succeeded.
    """
    results: Dict[str, List[PriceBar]] = {}

    async with httpx.AsyncClient() as client:
        for symbol in symbols:
            try:
                results[symbol] = await fetch_history(provider, symbol, client, range_, interval)
            except (HistoryFetchError, HistoryValidationError) as e:
                logger.error("fetch_all_symbols: skipping {}: {}", symbol, e)

    logger.info(
        "fetch_all_symbols: {}/{} symbols via {}",
        len(results),
        len(symbols),
        provider.name,
    )
    return results
