"""
Signal journal — persistent JSONL log of computed strategy advice.

Every refresh of a symbol's advice is appended, so status changes (e.g.
WATCH_BREAKOUT → BULLISH_CONFIRMED) can be reviewed after the fact.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from loguru import logger

from tw_stock_pilot.strategy.models import StrategyAdvice


class SignalJournal:
    """Append-only JSONL signal journal.

    Usage:
        journal = SignalJournal("data/signal_journal.jsonl")
        journal.log_advice("2330", advice)
        journal.log_event("FETCH_FAILED", {"symbol": "9999"})
        previous = journal.last_status("2330")
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        # symbol → last logged status, loaded from the file on first lookup
        self._last_status: Dict[str, str] | None = None

    def log_advice(self, symbol: str, advice: StrategyAdvice) -> None:
        """Append one advice record for symbol."""
        self._append(
            {
                "type": "ADVICE",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "symbol": symbol,
                **advice.model_dump(mode="json"),
            }
        )
        if self._last_status is not None:
            self._last_status[symbol] = advice.status.value
        logger.debug("Journal: logged {} for {}", advice.status.value, symbol)

    def log_event(self, event_type: str, details: Dict[str, Any] | None = None) -> None:
        """Log a non-advice event (fetch failure, status change, etc.)."""
        self._append(
            {
                "type": event_type,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **(details or {}),
            }
        )

    def read_entries(self, symbol: str | None = None) -> List[Dict[str, Any]]:
        """All ADVICE records, optionally for a single symbol, oldest first."""
        results: List[Dict[str, Any]] = []
        if not self._path.exists():
            return results

        with open(self._path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Journal: skipping malformed line")
                    continue

                if entry.get("type") != "ADVICE":
                    continue
                if symbol is not None and entry.get("symbol") != symbol:
                    continue
                results.append(entry)

        return results

    def last_status(self, symbol: str) -> str | None:
        """Status of the most recent advice logged for symbol."""
        if self._last_status is None:
            self._last_status = {
                e["symbol"]: e["status"]
                for e in self.read_entries()
                if "symbol" in e and "status" in e
            }
        return self._last_status.get(symbol)

    def _append(self, entry: Dict[str, Any]) -> None:
        """Append a JSON line to the journal file."""
        try:
            with open(self._path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            logger.error("Journal: failed to write entry: {}", e)
