"""
Unit tests for the append-only ledger store.

Tests cover:
- Appending entries and validation
- Sum and history ordering
- Transfer pairing reconciliation
"""

import pytest

from loyalty.points_server.errors import (
    InvalidDeltaError,
    InvalidLedgerEntryError,
    PointsError,
    UnknownAccountError,
)
from loyalty.points_server.store import ledger_store
from loyalty.points_server.store.ledger_store import LedgerTag


class TestLedgerStore:
    """Tests for LedgerStore."""

    @pytest.fixture
    def ledger(self, points):
        return points.ledger

    @pytest.fixture
    async def alice(self, points):
        return await points.directory.create_account("Alice")

    @pytest.fixture
    async def bob(self, points):
        return await points.directory.create_account("Bob")

    @pytest.mark.asyncio
    async def test_append_and_sum(self, ledger, alice):
        entry = await ledger.append(alice.account_id, 10, LedgerTag.GRANT, reference="welcome")
        await ledger.append(alice.account_id, -3, LedgerTag.GRANT)

        assert entry.delta == 10
        assert entry.tag is LedgerTag.GRANT
        assert entry.reference == "welcome"
        assert await ledger.sum(alice.account_id) == 7

    @pytest.mark.asyncio
    async def test_sum_of_empty_ledger_is_zero(self, ledger, alice):
        assert await ledger.sum(alice.account_id) == 0
        assert await ledger.history(alice.account_id) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delta", [0, True, 1.5, "10", None])
    async def test_invalid_delta_rejected(self, ledger, alice, delta):
        with pytest.raises(InvalidDeltaError):
            await ledger.append(alice.account_id, delta, LedgerTag.GRANT)
        assert await ledger.history(alice.account_id) == []

    @pytest.mark.asyncio
    async def test_transfer_tags_cannot_be_appended_alone(self, ledger, alice, bob):
        with pytest.raises(InvalidLedgerEntryError):
            await ledger.append(alice.account_id, -5, LedgerTag.TRANSFER_OUT, bob.account_id)
        with pytest.raises(InvalidLedgerEntryError):
            await ledger.append(alice.account_id, 5, LedgerTag.TRANSFER_IN)

    @pytest.mark.asyncio
    async def test_counterparty_only_on_transfers(self, ledger, alice, bob):
        with pytest.raises(InvalidLedgerEntryError):
            await ledger.append(alice.account_id, 5, LedgerTag.GRANT, bob.account_id)

    @pytest.mark.asyncio
    async def test_unknown_tag_rejected(self, ledger, alice):
        with pytest.raises(InvalidLedgerEntryError) as exc_info:
            await ledger.append(alice.account_id, 5, "BONUS")
        assert isinstance(exc_info.value, PointsError)
        assert exc_info.value.to_dict()["error_code"] == "INVALID_LEDGER_ENTRY"
        assert await ledger.history(alice.account_id) == []

    @pytest.mark.asyncio
    async def test_unknown_account_rejected(self, ledger):
        with pytest.raises(UnknownAccountError):
            await ledger.append(9999, 5, LedgerTag.GRANT)

    @pytest.mark.asyncio
    async def test_history_most_recent_first(self, ledger, alice):
        for delta in (1, 2, 3):
            await ledger.append(alice.account_id, delta, LedgerTag.GRANT)

        history = await ledger.history(alice.account_id)
        assert [e.delta for e in history] == [3, 2, 1]

        limited = await ledger.history(alice.account_id, limit=2)
        assert [e.delta for e in limited] == [3, 2]

    @pytest.mark.asyncio
    async def test_history_order_ignores_clock_steps(self, ledger, alice, monkeypatch):
        clock = iter([3000, 2000, 1000])
        monkeypatch.setattr(ledger_store, "now_ms", lambda: next(clock))
        for delta in (1, 2, 3):
            await ledger.append(alice.account_id, delta, LedgerTag.GRANT)

        history = await ledger.history(alice.account_id)

        assert [e.delta for e in history] == [3, 2, 1]
        assert [e.created_at for e in history] == [1000, 2000, 3000]

    @pytest.mark.asyncio
    async def test_history_carries_counterparty(self, points, ledger, alice, bob):
        await points.transfers.transfer(alice.account_id, bob.public_id, 20)

        sent = (await ledger.history(alice.account_id))[0]
        received = (await ledger.history(bob.account_id))[0]

        assert sent.tag is LedgerTag.TRANSFER_OUT
        assert sent.counterparty_id == bob.account_id
        assert sent.counterparty_public_id == bob.public_id
        assert sent.describe() == "20 reward points sent to Bob"
        assert received.describe() == "20 reward points received from Alice"
        assert sent.reference == received.reference

    @pytest.mark.asyncio
    async def test_describe_grant_and_deduction(self, ledger, alice):
        granted = await ledger.append(alice.account_id, 10, LedgerTag.GRANT)
        deducted = await ledger.append(alice.account_id, -4, LedgerTag.GRANT)

        assert granted.describe() == "10 reward points granted"
        assert deducted.describe() == "4 reward points deducted"

    @pytest.mark.asyncio
    async def test_unpaired_transfers_empty_when_healthy(self, points, ledger, alice, bob):
        await points.transfers.transfer(alice.account_id, bob.public_id, 5)
        await points.transfers.transfer(bob.account_id, alice.public_id, 7)

        assert await ledger.unpaired_transfers() == []

    @pytest.mark.asyncio
    async def test_unpaired_transfers_detects_lone_half(self, points, ledger, alice, bob):
        with points.database.transaction() as conn:
            conn.execute(
                "INSERT INTO ledger_entries "
                "(account_id, delta, tag, counterparty_id, reference, created_at) "
                "VALUES (?, -5, 'TRANSFER_OUT', ?, 'forged', 0)",
                (alice.account_id, bob.account_id),
            )

        assert await ledger.unpaired_transfers() == ["forged"]

    @pytest.mark.asyncio
    async def test_unpaired_transfers_detects_mismatched_halves(self, points, ledger, alice, bob):
        carol = await points.directory.create_account("Carol")
        with points.database.transaction() as conn:
            ledger.insert(conn, alice.account_id, -5, LedgerTag.TRANSFER_OUT, bob.account_id, "t1")
            ledger.insert(conn, carol.account_id, 5, LedgerTag.TRANSFER_IN, alice.account_id, "t1")

        assert await ledger.unpaired_transfers() == ["t1"]
