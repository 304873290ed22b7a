"""
Balance derivation.

balance(account) = base_grant + sum(ledger deltas of account)

The base grant is a policy constant applied uniformly; it is not stored
per account. Balances are recomputed on every read and never cached.
"""

from __future__ import annotations

import sqlite3

from ..store.database import Database
from ..store.ledger_store import LedgerStore


class BalanceCalculator:
    """Derives spendable balances from the ledger."""

    def __init__(self, database: Database, ledger: LedgerStore, base_grant: int = 50) -> None:
        self.database = database
        self.ledger = ledger
        self.base_grant = base_grant

    def compute(self, conn: sqlite3.Connection, account_id: int) -> int:
        """Balance as seen by an open transaction."""
        return self.base_grant + self.ledger.total(conn, account_id)

    async def balance_of(self, account_id: int) -> int:
        return self.base_grant + await self.ledger.sum(account_id)

    async def system_total(self) -> int:
        """Sum of every account's balance.

        Changes only through token redemption, GRANT entries and signups
        (each new account brings the base grant); transfers leave it as is.
        """

        def _total() -> int:
            with self.database.transaction(immediate=False) as conn:
                accounts = conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]
                deltas = conn.execute(
                    "SELECT COALESCE(SUM(delta), 0) FROM ledger_entries"
                ).fetchone()[0]
                return self.base_grant * accounts + int(deltas)

        return await self.database.run(_total)
