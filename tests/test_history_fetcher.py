"""
Tests for tw_stock_pilot/data/history_fetcher.py.

Uses httpx.MockTransport to stand in for the Yahoo chart API.

Tests cover:
- Parsing chart payloads into sorted, de-duplicated bars in Taipei dates
- Dropping rows with null prices
- .TW → .TWO suffix fallback and total failure
- Retry on 5xx
- Quote parsing
- validate_history() ordering and range checks
- Provider factory and fetch_all_symbols()
"""

from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pandas as pd
import pytest

from tw_stock_pilot.data.history_fetcher import (
    HistoryFetchError,
    HistoryProvider,
    Quote,
    YahooChartProvider,
    create_provider,
    fetch_all_symbols,
    fetch_history,
    frame_to_bars,
    validate_history,
)
from tw_stock_pilot.strategy.models import HistoryOrderError, HistoryValidationError, PriceBar


def _ts(year: int, month: int, day: int, hour: int = 1, minute: int = 30) -> int:
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp())


def _chart(
    timestamps: list[int],
    closes: list[float | None],
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "chart": {
            "result": [
                {
                    "meta": {"exchangeTimezoneName": "Asia/Taipei", **(meta or {})},
                    "timestamp": timestamps,
                    "indicators": {
                        "quote": [
                            {
                                "open": closes,
                                "high": [None if c is None else c + 1 for c in closes],
                                "low": [None if c is None else c - 1 for c in closes],
                                "close": closes,
                                "volume": [1000 for _ in closes],
                            }
                        ]
                    },
                }
            ],
            "error": None,
        }
    }


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def provider() -> YahooChartProvider:
    return YahooChartProvider(max_retries=2, backoff_base=0)


# ── Fetching ─────────────────────────────────────────────────────────────────


class TestFetchHistory:
    """YahooChartProvider.fetch_daily_bars via fetch_history()."""

    async def test_parses_bars(self, provider: YahooChartProvider) -> None:
        payload = _chart([_ts(2026, 1, 5), _ts(2026, 1, 6), _ts(2026, 1, 7)], [580.0, 585.0, 590.0])

        async with _client(lambda request: httpx.Response(200, json=payload)) as client:
            bars = await fetch_history(provider, "2330", client)

        assert [b.date for b in bars] == ["2026-01-05", "2026-01-06", "2026-01-07"]
        assert bars[-1].close == 590.0
        assert bars[-1].high == 591.0
        assert bars[0].volume == 1000

    async def test_drops_null_close(self, provider: YahooChartProvider) -> None:
        payload = _chart([_ts(2026, 1, 5), _ts(2026, 1, 6), _ts(2026, 1, 7)], [580.0, None, 590.0])

        async with _client(lambda request: httpx.Response(200, json=payload)) as client:
            bars = await fetch_history(provider, "2330", client)

        assert [b.date for b in bars] == ["2026-01-05", "2026-01-07"]

    async def test_dates_in_exchange_timezone(self, provider: YahooChartProvider) -> None:
        # 17:00 UTC on the 5th is 01:00 on the 6th in Taipei
        payload = _chart([_ts(2026, 1, 5, hour=17, minute=0)], [580.0])

        async with _client(lambda request: httpx.Response(200, json=payload)) as client:
            bars = await fetch_history(provider, "2330", client)

        assert bars[0].date == "2026-01-06"

    async def test_duplicates_keep_last_and_sort(self, provider: YahooChartProvider) -> None:
        payload = _chart(
            [_ts(2026, 1, 6), _ts(2026, 1, 5), _ts(2026, 1, 6, hour=5)],
            [585.0, 580.0, 586.0],
        )

        async with _client(lambda request: httpx.Response(200, json=payload)) as client:
            bars = await fetch_history(provider, "2330", client)

        assert [(b.date, b.close) for b in bars] == [("2026-01-05", 580.0), ("2026-01-06", 586.0)]

    async def test_falls_back_to_otc_suffix(self, provider: YahooChartProvider) -> None:
        requested: list[str] = []
        payload = _chart([_ts(2026, 1, 5), _ts(2026, 1, 6)], [90.0, 91.0])

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path.rsplit("/", 1)[-1])
            if request.url.path.endswith(".TW"):
                return httpx.Response(404, json={"chart": {"result": None, "error": {}}})
            return httpx.Response(200, json=payload)

        async with _client(handler) as client:
            bars = await fetch_history(provider, "6488", client)

        assert requested == ["6488.TW", "6488.TWO"]
        assert len(bars) == 2

    async def test_all_suffixes_fail(self, provider: YahooChartProvider) -> None:
        async with _client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(HistoryFetchError):
                await fetch_history(provider, "9999", client)

    async def test_retries_server_errors(self, provider: YahooChartProvider) -> None:
        calls = {"n": 0}
        payload = _chart([_ts(2026, 1, 5)], [580.0])

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(503)
            return httpx.Response(200, json=payload)

        async with _client(handler) as client:
            bars = await fetch_history(provider, "2330", client)

        assert calls["n"] == 2
        assert len(bars) == 1

    async def test_passes_range_and_interval(self, provider: YahooChartProvider) -> None:
        seen: dict[str, str] = {}
        payload = _chart([_ts(2026, 1, 5)], [580.0])

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(request.url.params)
            return httpx.Response(200, json=payload)

        async with _client(handler) as client:
            await fetch_history(provider, "2330", client, range_="6mo", interval="1d")

        assert seen == {"interval": "1d", "range": "6mo"}


# ── Quotes ───────────────────────────────────────────────────────────────────


class TestFetchQuote:
    """YahooChartProvider.fetch_quote()."""

    async def test_quote(self, provider: YahooChartProvider) -> None:
        payload = _chart(
            [_ts(2026, 1, 7)],
            [590.0],
            meta={
                "regularMarketPrice": 590.0,
                "chartPreviousClose": 580.0,
                "shortName": "TSMC",
                "currency": "TWD",
            },
        )

        async with _client(lambda request: httpx.Response(200, json=payload)) as client:
            quote = await provider.fetch_quote("2330", client)

        assert quote is not None
        assert quote.name == "TSMC"
        assert quote.change == pytest.approx(10.0)
        assert quote.change_percent == pytest.approx(10 / 580 * 100)
        assert quote.high == 591.0

    async def test_unknown_symbol(self, provider: YahooChartProvider) -> None:
        async with _client(lambda request: httpx.Response(404)) as client:
            assert await provider.fetch_quote("9999", client) is None


# ── Validation ───────────────────────────────────────────────────────────────


class TestValidateHistory:
    """validate_history() at the ingestion boundary."""

    @staticmethod
    def _bar(day: str, close: float = 100.0, **overrides: float) -> PriceBar:
        fields = {"open": close, "high": close + 1, "low": close - 1, "close": close}
        fields.update(overrides)
        return PriceBar(date=day, **fields)

    def test_valid(self) -> None:
        bars = [self._bar("2026-01-05"), self._bar("2026-01-06")]
        assert validate_history(bars) == bars

    def test_duplicate_date(self) -> None:
        with pytest.raises(HistoryOrderError):
            validate_history([self._bar("2026-01-05"), self._bar("2026-01-05")])

    def test_out_of_order(self) -> None:
        with pytest.raises(HistoryOrderError):
            validate_history([self._bar("2026-01-06"), self._bar("2026-01-05")])

    def test_low_above_close(self) -> None:
        with pytest.raises(HistoryValidationError):
            validate_history([self._bar("2026-01-05", low=100.5)])

    def test_high_below_open(self) -> None:
        with pytest.raises(HistoryValidationError):
            validate_history([self._bar("2026-01-05", open=102, high=101)])

    def test_non_positive_close(self) -> None:
        with pytest.raises(HistoryValidationError):
            validate_history([self._bar("2026-01-05", close=0, open=0, high=0, low=0)])

    def test_empty_is_valid(self) -> None:
        assert validate_history([]) == []


# ── Factory / convenience ───────────────────────────────────────────────────


class _StaticProvider(HistoryProvider):
    """Serves prebuilt frames without touching the network."""

    def __init__(self, frames: dict[str, pd.DataFrame]) -> None:
        self._frames = frames

    @property
    def name(self) -> str:
        return "static"

    async def fetch_daily_bars(self, symbol, client, range_="2y", interval="1d"):  # type: ignore[override]
        return self._frames.get(symbol, pd.DataFrame(columns=["date", "open", "high", "low", "close", "volume"]))

    async def fetch_quote(self, symbol, client) -> Quote | None:  # type: ignore[override]
        return None


class TestFactoryAndConvenience:
    """create_provider() and fetch_all_symbols()."""

    def test_create_yahoo(self) -> None:
        assert isinstance(create_provider("yahoo"), YahooChartProvider)

    def test_create_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown history provider"):
            create_provider("bloomberg")

    def test_frame_to_bars(self) -> None:
        df = pd.DataFrame(
            [{"date": "2026-01-05", "open": 1.0, "high": 2.0, "low": 0.5, "close": 1.5, "volume": 10.0}]
        )
        assert frame_to_bars(df) == [
            PriceBar(date="2026-01-05", open=1.0, high=2.0, low=0.5, close=1.5, volume=10.0)
        ]

    async def test_fetch_all_skips_failures(self) -> None:
        good = pd.DataFrame(
            [{"date": "2026-01-05", "open": 1.0, "high": 2.0, "low": 0.5, "close": 1.5, "volume": 10.0}]
        )
        bad = pd.DataFrame(
            [
                {"date": "2026-01-06", "open": 1.0, "high": 2.0, "low": 0.5, "close": 1.5, "volume": 0.0},
                {"date": "2026-01-05", "open": 1.0, "high": 2.0, "low": 0.5, "close": 1.5, "volume": 0.0},
            ]
        )
        provider = _StaticProvider({"2330": good, "2317": bad})

        results = await fetch_all_symbols(provider, ["2330", "2317", "9999"])

        assert list(results) == ["2330"]
        assert results["2330"][0].close == 1.5
