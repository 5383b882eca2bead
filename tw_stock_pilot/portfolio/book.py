"""
Portfolio book — transactions and watchlist persisted in the keyed store,
with JSON backup export/import.

Usage:
    book = PortfolioBook(KeyedStore("data/tw_stock_pilot.db"))
    book.add_transaction(Transaction(symbol="2330", side="BUY", shares=1000, price=580, date="2026-02-16"))
    holdings = book.holdings(prices={"2330": 600.0})
    backup = book.export_backup()
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping

from loguru import logger
from pydantic import ValidationError

from tw_stock_pilot.portfolio.ledger import derive_holdings, derive_positions, realized_pl
from tw_stock_pilot.portfolio.schemas import Holding, Transaction
from tw_stock_pilot.portfolio.watchlist import Watchlist, normalize_symbol
from tw_stock_pilot.storage.keyed_store import KeyedStore

TRANSACTIONS_KEY = "transactions"
LEGACY_HOLDINGS_KEY = "holdings"
STOCK_DATA_KEY = "stock_data"
WATCHLIST_KEY = "watchlist"

BACKUP_VERSION = "1.0"


class BackupFormatError(ValueError):
    """Imported backup is missing transactions or holds invalid rows."""


class PortfolioBook:
    """Persistent transaction ledger and watchlist."""

    def __init__(self, store: KeyedStore) -> None:
        self._store = store

    # ── Transactions ────────────────────────────────────────────────

    def transactions(self) -> List[Transaction]:
        return [Transaction(**row) for row in self._store.get(TRANSACTIONS_KEY, [])]

    def _save_transactions(self, transactions: List[Transaction]) -> None:
        self._store.set(TRANSACTIONS_KEY, [t.model_dump() for t in transactions])

    def add_transaction(self, transaction: Transaction) -> Transaction:
        """Append a transaction after checking it keeps the ledger consistent.

        Raises:
            LedgerError: If the transaction sells more shares than held.
        """
        tx = transaction.model_copy(update={"symbol": normalize_symbol(transaction.symbol)})
        updated = self.transactions() + [tx]
        derive_positions(updated)
        self._save_transactions(updated)
        logger.info(
            "PortfolioBook: {} {} {:g} @ {} on {}",
            tx.side,
            tx.symbol,
            tx.shares,
            tx.price,
            tx.date,
        )
        return tx

    def delete_symbol(self, symbol: str) -> int:
        """Remove every transaction of a symbol. Returns how many were removed."""
        normalized = normalize_symbol(symbol)
        current = self.transactions()
        kept = [t for t in current if t.symbol != normalized]
        self._save_transactions(kept)
        removed = len(current) - len(kept)
        logger.info("PortfolioBook: deleted {} transactions for {}", removed, normalized)
        return removed

    def symbols(self) -> List[str]:
        """Distinct symbols in first-seen order."""
        return list(dict.fromkeys(t.symbol for t in self.transactions()))

    def holdings(self, prices: Mapping[str, float] | None = None) -> List[Holding]:
        return derive_holdings(self.transactions(), prices)

    def realized_pl(self, start_date: str, end_date: str) -> float:
        return realized_pl(self.transactions(), start_date, end_date)

    # ── Quote snapshot cache ────────────────────────────────────────

    def stock_data(self) -> Dict[str, Any]:
        return self._store.get(STOCK_DATA_KEY, {})

    def update_stock_data(self, symbol: str, data: Dict[str, Any]) -> None:
        current = self.stock_data()
        current[normalize_symbol(symbol)] = data
        self._store.set(STOCK_DATA_KEY, current)

    # ── Watchlist ───────────────────────────────────────────────────

    def load_watchlist(self) -> Watchlist:
        return Watchlist(**self._store.get(WATCHLIST_KEY, {}))

    def save_watchlist(self, watchlist: Watchlist) -> None:
        self._store.set(WATCHLIST_KEY, watchlist.model_dump())

    # ── Backup ──────────────────────────────────────────────────────

    def export_backup(self) -> Dict[str, Any]:
        """Full backup of transactions and quote snapshots."""
        return {
            "version": BACKUP_VERSION,
            "export_date": datetime.now(timezone.utc).isoformat(),
            "transactions": [t.model_dump() for t in self.transactions()],
            "stock_data": self.stock_data(),
        }

    def import_backup(self, data: Mapping[str, Any]) -> int:
        """Replace all transactions with those of a backup.

        Quote snapshots in the backup are merged over the existing ones.

        Returns:
            Number of imported transactions.

        Raises:
            BackupFormatError: If transactions are missing or invalid.
            LedgerError: If the imported transactions oversell a position.
        """
        rows = data.get("transactions")
        if not isinstance(rows, list):
            raise BackupFormatError("Invalid data format: missing transactions")

        try:
            parsed = [Transaction(**row) for row in rows]
        except (TypeError, ValidationError) as e:
            raise BackupFormatError(f"Invalid transaction in backup: {e}") from e

        transactions = [
            t.model_copy(update={"symbol": normalize_symbol(t.symbol)}) for t in parsed
        ]
        if any(not t.symbol for t in transactions):
            raise BackupFormatError("Invalid transaction in backup: empty symbol")

        derive_positions(transactions)
        self._save_transactions(transactions)

        stock_data = data.get("stock_data")
        if isinstance(stock_data, dict):
            imported = {normalize_symbol(str(k)): v for k, v in stock_data.items()}
            self._store.set(STOCK_DATA_KEY, {**self.stock_data(), **imported})

        logger.info("PortfolioBook: imported {} transactions", len(transactions))
        return len(transactions)

    def migrate_legacy_holdings(self, as_of: str | None = None) -> int:
        """Convert a pre-transaction holdings list into BUY transactions.

        Runs only when no transactions exist yet. Each legacy row
        {symbol, shares, avg_cost} becomes one BUY dated as_of (default today).

        Returns:
            Number of transactions created.
        """
        if self._store.get(TRANSACTIONS_KEY) is not None:
            return 0
        legacy = self._store.get(LEGACY_HOLDINGS_KEY)
        if not legacy:
            return 0

        trade_date = as_of or date.today().isoformat()
        transactions = [
            Transaction(
                id=f"legacy-{i}",
                symbol=normalize_symbol(str(row["symbol"])),
                side="BUY",
                shares=row["shares"],
                price=row["avg_cost"],
                date=trade_date,
            )
            for i, row in enumerate(legacy)
        ]
        self._save_transactions(transactions)
        logger.info("PortfolioBook: migrated {} legacy holdings", len(transactions))
        return len(transactions)
