"""
Unit tests for the points database.

Tests cover:
- Schema creation
- Transaction commit and rollback
- Store-level guards (append-only ledger, terminal tokens)
- sqlite3 error translation
"""

import sqlite3

import pytest

from loyalty.points_server.errors import StoreUnavailableError, TransactionConflictError
from loyalty.points_server.store.database import Database


class TestDatabase:
    """Tests for Database."""

    @pytest.fixture
    async def db(self, data_dir):
        database = Database(f"{data_dir}/points.db", wal_mode=False, busy_timeout_ms=50)
        await database.initialize()
        return database

    @pytest.fixture
    async def account_id(self, db):
        with db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO accounts (public_id, created_at) VALUES ('AAAA1111', 0)"
            )
            return cursor.lastrowid

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, db):
        await db.initialize()
        stats = await db.get_stats()
        assert stats == {"accounts": 0, "ledger_entries": 0, "tokens": 0, "tokens_redeemed": 0}

    @pytest.mark.asyncio
    async def test_transaction_commits(self, db, account_id):
        stats = await db.get_stats()
        assert stats["accounts"] == 1

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_exception(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("INSERT INTO accounts (public_id, created_at) VALUES ('X', 0)")
                raise RuntimeError("boom")

        stats = await db.get_stats()
        assert stats["accounts"] == 0

    @pytest.mark.asyncio
    async def test_ledger_rejects_update(self, db, account_id):
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO ledger_entries (account_id, delta, tag, created_at) "
                "VALUES (?, 10, 'GRANT', 0)",
                (account_id,),
            )

        with pytest.raises(StoreUnavailableError):
            with db.connect() as conn:
                conn.execute("UPDATE ledger_entries SET delta = 1000")

        with pytest.raises(StoreUnavailableError):
            with db.connect() as conn:
                conn.execute("DELETE FROM ledger_entries")

        stats = await db.get_stats()
        assert stats["ledger_entries"] == 1

    @pytest.mark.asyncio
    async def test_transfer_rows_need_counterparty(self, db, account_id):
        with pytest.raises(StoreUnavailableError):
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO ledger_entries (account_id, delta, tag, created_at) "
                    "VALUES (?, -10, 'TRANSFER_OUT', 0)",
                    (account_id,),
                )

    @pytest.mark.asyncio
    async def test_zero_delta_rejected_by_store(self, db, account_id):
        with pytest.raises(StoreUnavailableError):
            with db.transaction() as conn:
                conn.execute(
                    "INSERT INTO ledger_entries (account_id, delta, tag, created_at) "
                    "VALUES (?, 0, 'GRANT', 0)",
                    (account_id,),
                )

    @pytest.mark.asyncio
    async def test_redeemed_token_is_immutable(self, db, account_id):
        with db.transaction() as conn:
            conn.execute("INSERT INTO tokens (code, value, created_at) VALUES ('T1', 5, 0)")
            conn.execute(
                "UPDATE tokens SET redeemed_by = ?, redeemed_at = 1 WHERE code = 'T1'",
                (account_id,),
            )

        with pytest.raises(StoreUnavailableError):
            with db.connect() as conn:
                conn.execute("UPDATE tokens SET redeemed_by = NULL, redeemed_at = NULL")

        with pytest.raises(StoreUnavailableError):
            with db.connect() as conn:
                conn.execute("DELETE FROM tokens")

    @pytest.mark.asyncio
    async def test_partial_redemption_rejected(self, db, account_id):
        with db.transaction() as conn:
            conn.execute("INSERT INTO tokens (code, value, created_at) VALUES ('T1', 5, 0)")

        with pytest.raises(StoreUnavailableError):
            with db.transaction() as conn:
                conn.execute("UPDATE tokens SET redeemed_by = ? WHERE code = 'T1'", (account_id,))

    @pytest.mark.asyncio
    async def test_locked_database_is_a_conflict(self, db):
        with db.transaction():
            with pytest.raises(TransactionConflictError):
                with db.transaction():
                    pass

    @pytest.mark.asyncio
    async def test_store_errors_are_chained(self, db):
        with pytest.raises(StoreUnavailableError) as exc_info:
            with db.connect() as conn:
                conn.execute("SELECT * FROM no_such_table")

        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
        assert "no_such_table" not in exc_info.value.message

    def test_unopenable_path_is_unavailable(self, data_dir):
        blocker = f"{data_dir}/file"
        with open(blocker, "w") as f:
            f.write("x")

        database = Database(f"{blocker}/points.db")
        with pytest.raises(StoreUnavailableError):
            with database.connect():
                pass
