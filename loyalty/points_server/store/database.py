"""
SQLite store for the Points Server.

This module owns the single database file that holds:
- Accounts (internal id + public id)
- Ledger entries (append-only signed point deltas)
- Tokens (one-time redeemable codes)

It is the only place that talks to sqlite3 directly about connections
and transaction boundaries. The store, not the application, provides
atomicity and isolation.

Invariants:
    - Every multi-step mutation runs inside one `transaction()` block
    - Write transactions start with BEGIN IMMEDIATE (write lock up front)
    - Any exception inside a transaction rolls it back before propagating
    - sqlite3 errors never leave this module; they become
      TransactionConflictError or StoreUnavailableError
    - ledger_entries rows are never updated or deleted (enforced by trigger)
    - A redeemed token is immutable (enforced by trigger)

How to change safely:
    - Schema changes must be additive; bump SCHEMA_VERSION
    - Keep CHECK constraints in sync with LedgerTag
    - Test rollback paths with injected triggers, not mocks

Table schema:
    accounts:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - public_id TEXT UNIQUE
        - display_name TEXT
        - created_at INTEGER (Unix ms)

    ledger_entries:
        - id INTEGER PRIMARY KEY AUTOINCREMENT (monotonic)
        - account_id INTEGER -> accounts.id
        - delta INTEGER (non-zero)
        - tag TEXT (GRANT | TOKEN_REDEEM | TRANSFER_OUT | TRANSFER_IN)
        - counterparty_id INTEGER -> accounts.id (TRANSFER_* only)
        - reference TEXT (token code or transfer id)
        - created_at INTEGER (Unix ms)

    tokens:
        - code TEXT PRIMARY KEY
        - value INTEGER (> 0)
        - created_at INTEGER
        - redeemed_by INTEGER -> accounts.id
        - redeemed_at INTEGER
        - CHECK both redeemed_* set or neither
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from ..config import StorageConfig
from ..errors import StoreUnavailableError, TransactionConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def now_ms() -> int:
    """Current time as Unix milliseconds."""
    return int(time.time() * 1000)


class Database:
    """Connection and transaction management for the points database.

    Thread safety:
        A connection is created per operation and used on one thread.
        SQLite serializes writers; BEGIN IMMEDIATE makes the wait happen
        at transaction start instead of at the first write.

    Example:
        >>> db = Database("/var/lib/points/points.db")
        >>> await db.initialize()
        >>> with db.transaction() as conn:
        ...     conn.execute("INSERT INTO ...")
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database handle.

        Args:
            db_path: Path to the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @classmethod
    def from_config(cls, storage: StorageConfig) -> Database:
        return cls(
            storage.db_path,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
            cache_size_pages=storage.cache_size_pages,
        )

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection in autocommit mode.

        Yields:
            SQLite connection

        Raises:
            TransactionConflictError: Database stayed locked past the busy timeout
            StoreUnavailableError: Database cannot be opened or a statement failed
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Cannot open points database: {e}", extra={"db_path": str(self.db_path)})
            raise StoreUnavailableError() from e

        conn.row_factory = sqlite3.Row

        try:
            try:
                # Configure connection
                conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
                conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
                if self.wal_mode:
                    conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
                conn.execute("PRAGMA foreign_keys = ON")

                yield conn
            except sqlite3.Error as e:
                raise self._translate(e) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic unit.

        Commits when the block exits normally, rolls back on any exception.

        Args:
            immediate: Take the write lock at BEGIN (required for any block
                that reads and then writes based on what it read)

        Yields:
            Connection with an open transaction

        Raises:
            TransactionConflictError: Lock could not be obtained in time
            StoreUnavailableError: Any other store failure
        """
        with self.connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            except sqlite3.Error as e:
                raise self._translate(e) from e

            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise self._translate(e) from e
            except BaseException:
                self._rollback(conn)
                raise

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run blocking store work on the default executor."""
        return await asyncio.get_running_loop().run_in_executor(
            None, functools.partial(fn, *args)
        )

    def _rollback(self, conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            # Closing the connection discards the transaction anyway
            logger.warning(f"Rollback failed: {e}")

    def _translate(self, error: sqlite3.Error) -> Exception:
        message = str(error).lower()
        if isinstance(error, sqlite3.OperationalError) and (
            "locked" in message or "busy" in message
        ):
            logger.warning("Transaction conflict", extra={"db_error": str(error)})
            return TransactionConflictError()

        logger.error("Points store failure", extra={"db_error": str(error)})
        return StoreUnavailableError()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Accounts (directory)
            CREATE TABLE IF NOT EXISTS accounts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                public_id TEXT NOT NULL UNIQUE,
                display_name TEXT,
                created_at INTEGER NOT NULL
            );

            -- Append-only points ledger
            CREATE TABLE IF NOT EXISTS ledger_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id INTEGER NOT NULL REFERENCES accounts(id),
                delta INTEGER NOT NULL CHECK (delta <> 0),
                tag TEXT NOT NULL
                    CHECK (tag IN ('GRANT', 'TOKEN_REDEEM', 'TRANSFER_OUT', 'TRANSFER_IN')),
                counterparty_id INTEGER REFERENCES accounts(id),
                reference TEXT,
                created_at INTEGER NOT NULL,
                CHECK ((tag IN ('TRANSFER_OUT', 'TRANSFER_IN')) = (counterparty_id IS NOT NULL)),
                CHECK (tag <> 'TRANSFER_OUT' OR delta < 0),
                CHECK (tag NOT IN ('TRANSFER_IN', 'TOKEN_REDEEM') OR delta > 0)
            );

            CREATE INDEX IF NOT EXISTS idx_ledger_account_id
                ON ledger_entries(account_id, id DESC);
            CREATE INDEX IF NOT EXISTS idx_ledger_reference ON ledger_entries(reference);

            CREATE TRIGGER IF NOT EXISTS ledger_entries_no_update
            BEFORE UPDATE ON ledger_entries
            BEGIN
                SELECT RAISE(ABORT, 'ledger_entries is append-only');
            END;

            CREATE TRIGGER IF NOT EXISTS ledger_entries_no_delete
            BEFORE DELETE ON ledger_entries
            BEGIN
                SELECT RAISE(ABORT, 'ledger_entries is append-only');
            END;

            -- One-time redeemable tokens
            CREATE TABLE IF NOT EXISTS tokens (
                code TEXT PRIMARY KEY,
                value INTEGER NOT NULL CHECK (value > 0),
                created_at INTEGER NOT NULL,
                redeemed_by INTEGER REFERENCES accounts(id),
                redeemed_at INTEGER,
                CHECK ((redeemed_by IS NULL) = (redeemed_at IS NULL))
            );

            CREATE INDEX IF NOT EXISTS idx_tokens_redeemed_by ON tokens(redeemed_by);

            CREATE TRIGGER IF NOT EXISTS tokens_no_delete
            BEFORE DELETE ON tokens
            BEGIN
                SELECT RAISE(ABORT, 'tokens are never deleted');
            END;

            CREATE TRIGGER IF NOT EXISTS tokens_redeemed_is_terminal
            BEFORE UPDATE ON tokens
            WHEN OLD.redeemed_by IS NOT NULL
                OR NEW.code <> OLD.code
                OR NEW.value <> OLD.value
            BEGIN
                SELECT RAISE(ABORT, 'token is immutable');
            END;

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        await self.run(self.initialize_sync)

    def initialize_sync(self) -> None:
        with self.connect() as conn:
            self._create_schema(conn)
        logger.info("Initialized points database", extra={"db_path": str(self.db_path)})

    async def get_stats(self) -> dict[str, int]:
        """Get row counts for health and reconciliation output."""
        return await self.run(self._get_stats)

    def _get_stats(self) -> dict[str, int]:
        with self.transaction(immediate=False) as conn:
            stats = {}
            stats["accounts"] = conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]
            stats["ledger_entries"] = conn.execute(
                "SELECT COUNT(*) FROM ledger_entries"
            ).fetchone()[0]
            stats["tokens"] = conn.execute("SELECT COUNT(*) FROM tokens").fetchone()[0]
            stats["tokens_redeemed"] = conn.execute(
                "SELECT COUNT(*) FROM tokens WHERE redeemed_by IS NOT NULL"
            ).fetchone()[0]
            return stats
