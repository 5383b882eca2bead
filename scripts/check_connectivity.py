"""
Connectivity check — Yahoo chart API and Gemini API key.

Fetches a quote and a short history for one symbol, then validates the Gemini
key from .env and lists the models it can use.

Run with:
    python scripts/check_connectivity.py [SYMBOL]

Reads GEMINI_API_KEY from .env (optional).
"""

import asyncio
import os
import sys

import httpx
from dotenv import load_dotenv
from loguru import logger

from tw_stock_pilot.data.history_fetcher import HistoryFetchError, create_provider, fetch_history
from tw_stock_pilot.decision.gemini_advisor import GeminiAdvisor


async def check_yahoo(symbol: str) -> bool:
    provider = create_provider("yahoo")
    async with httpx.AsyncClient() as client:
        quote = await provider.fetch_quote(symbol, client)
        if quote is None:
            logger.error("Yahoo: no quote for {}", symbol)
            return False
        logger.info(
            "Yahoo: {} {} {:.2f} ({:+.2f}%)",
            quote.symbol,
            quote.name,
            quote.price,
            quote.change_percent,
        )

        try:
            bars = await fetch_history(provider, symbol, client, range_="3mo")
        except HistoryFetchError as e:
            logger.error("Yahoo: {}", e)
            return False
        logger.info("Yahoo: {} bars, {} → {}", len(bars), bars[0].date, bars[-1].date)
    return True


async def check_gemini() -> bool:
    advisor = GeminiAdvisor(api_key=os.getenv("GEMINI_API_KEY", ""))
    if not advisor.has_api_key:
        logger.warning("Gemini: GEMINI_API_KEY not set, skipping")
        return True

    result = await advisor.validate_api_key()
    if not result.valid:
        logger.error("Gemini: key rejected: {}", result.error)
        return False
    logger.info("Gemini: key valid, models: {}", ", ".join(result.available_models) or "none")
    return True


async def main() -> int:
    load_dotenv()
    symbol = sys.argv[1] if len(sys.argv) > 1 else "2330"

    logger.info("=" * 50)
    yahoo_ok = await check_yahoo(symbol)
    gemini_ok = await check_gemini()
    logger.info("=" * 50)
    logger.info("Yahoo: {} | Gemini: {}", "OK" if yahoo_ok else "FAIL", "OK" if gemini_ok else "FAIL")
    return 0 if yahoo_ok and gemini_ok else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
