"""
Append-only points ledger.

Every change to an account's points is one immutable row carrying a
signed delta and a categorical tag. Balances are never stored; they are
derived from these rows (see ledger.balance).

Invariants:
    - delta is a non-zero integer
    - Rows are only ever inserted (UPDATE/DELETE abort at the store)
    - TRANSFER_OUT and TRANSFER_IN rows exist only in pairs that share a
      reference, mirror each other's account/counterparty, and cancel out
    - sum() and history() see committed rows only

How to change safely:
    - New tags need the CHECK constraint in database.py updated too
    - Never expose an update or delete path
    - Keep insert_transfer() the only writer of TRANSFER_* rows
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import (
    InvalidAmountError,
    InvalidDeltaError,
    InvalidLedgerEntryError,
    UnknownAccountError,
)
from .database import Database, now_ms

logger = logging.getLogger(__name__)


class LedgerTag(str, Enum):
    """What caused a ledger entry."""

    GRANT = "GRANT"
    TOKEN_REDEEM = "TOKEN_REDEEM"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"


TRANSFER_TAGS = frozenset({LedgerTag.TRANSFER_OUT, LedgerTag.TRANSFER_IN})


def check_delta(delta: Any) -> int:
    """Return delta if it is a non-zero integer, else raise InvalidDeltaError."""
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidDeltaError()
    return delta


def check_tag(tag: Any) -> LedgerTag:
    """Return tag as a LedgerTag, else raise InvalidLedgerEntryError."""
    try:
        return LedgerTag(tag)
    except ValueError as e:
        raise InvalidLedgerEntryError(f"unknown ledger tag: {tag}", tag=str(tag)) from e


def check_points(points: Any, maximum: int | None = None) -> int:
    """Return points if it is a positive integer (within maximum), else raise InvalidAmountError."""
    if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
        raise InvalidAmountError(amount=points)
    if maximum is not None and points > maximum:
        raise InvalidAmountError(f"points must be between 1 and {maximum}", amount=points)
    return points


@dataclass(frozen=True)
class LedgerEntry:
    """One immutable ledger row.

    Attributes:
        entry_id: Monotonic id assigned at insert
        account_id: Owning account
        delta: Signed point change
        tag: Entry category
        counterparty_id: Other side of a transfer (TRANSFER_* only)
        reference: Token code or transfer id
        created_at: Insert timestamp (Unix ms)
        counterparty_public_id: Joined for history display
        counterparty_name: Joined for history display
    """

    entry_id: int
    account_id: int
    delta: int
    tag: LedgerTag
    counterparty_id: int | None
    reference: str | None
    created_at: int
    counterparty_public_id: str | None = None
    counterparty_name: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> LedgerEntry:
        keys = row.keys()
        return cls(
            entry_id=row["id"],
            account_id=row["account_id"],
            delta=row["delta"],
            tag=LedgerTag(row["tag"]),
            counterparty_id=row["counterparty_id"],
            reference=row["reference"],
            created_at=row["created_at"],
            counterparty_public_id=(
                row["counterparty_public_id"] if "counterparty_public_id" in keys else None
            ),
            counterparty_name=row["counterparty_name"] if "counterparty_name" in keys else None,
        )

    def describe(self) -> str:
        """Human-readable history line."""
        points = abs(self.delta)
        other = self.counterparty_name or self.counterparty_public_id
        if self.tag is LedgerTag.TRANSFER_OUT:
            return f"{points} reward points sent to {other}"
        if self.tag is LedgerTag.TRANSFER_IN:
            return f"{points} reward points received from {other}"
        if self.tag is LedgerTag.TOKEN_REDEEM:
            return f"{points} reward points earned from token {self.reference}"
        if self.delta > 0:
            return f"{points} reward points granted"
        return f"{points} reward points deducted"


class LedgerStore:
    """Append and read access to ledger_entries.

    Methods taking `conn` run inside the caller's transaction and are the
    building blocks of redemption and transfer. The async methods each
    run in their own transaction.

    Example:
        >>> ledger = LedgerStore(database)
        >>> await ledger.append(account_id, 10, LedgerTag.GRANT)
        >>> await ledger.sum(account_id)
        10
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    # -- in-transaction primitives ------------------------------------------

    def insert(
        self,
        conn: sqlite3.Connection,
        account_id: int,
        delta: int,
        tag: LedgerTag,
        counterparty_id: int | None = None,
        reference: str | None = None,
    ) -> LedgerEntry:
        """Insert one row on an open transaction."""
        check_delta(delta)
        tag = check_tag(tag)
        now = now_ms()

        cursor = conn.execute(
            """
            INSERT INTO ledger_entries
                (account_id, delta, tag, counterparty_id, reference, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (account_id, delta, tag.value, counterparty_id, reference, now),
        )

        logger.debug(
            "Appended ledger entry",
            extra={"account_id": account_id, "delta": delta, "tag": tag.value},
        )

        return LedgerEntry(
            entry_id=cursor.lastrowid,
            account_id=account_id,
            delta=delta,
            tag=tag,
            counterparty_id=counterparty_id,
            reference=reference,
            created_at=now,
        )

    def insert_transfer(
        self,
        conn: sqlite3.Connection,
        sender_id: int,
        recipient_id: int,
        points: int,
        transfer_id: str,
    ) -> tuple[LedgerEntry, LedgerEntry]:
        """Insert both halves of a transfer on an open transaction."""
        out_entry = self.insert(
            conn, sender_id, -points, LedgerTag.TRANSFER_OUT, recipient_id, transfer_id
        )
        in_entry = self.insert(
            conn, recipient_id, points, LedgerTag.TRANSFER_IN, sender_id, transfer_id
        )
        return out_entry, in_entry

    def total(self, conn: sqlite3.Connection, account_id: int) -> int:
        """Sum of deltas for an account on an open connection."""
        row = conn.execute(
            "SELECT COALESCE(SUM(delta), 0) FROM ledger_entries WHERE account_id = ?",
            (account_id,),
        ).fetchone()
        return int(row[0])

    def entries(
        self,
        conn: sqlite3.Connection,
        account_id: int,
        limit: int | None = None,
    ) -> list[LedgerEntry]:
        """Entries for an account, most recent first."""
        cursor = conn.execute(
            """
            SELECT e.*, c.public_id AS counterparty_public_id,
                   c.display_name AS counterparty_name
            FROM ledger_entries e
            LEFT JOIN accounts c ON c.id = e.counterparty_id
            WHERE e.account_id = ?
            ORDER BY e.id DESC
            LIMIT ?
            """,
            (account_id, -1 if limit is None else limit),
        )
        return [LedgerEntry.from_row(row) for row in cursor.fetchall()]

    # -- standalone operations ----------------------------------------------

    async def append(
        self,
        account_id: int,
        delta: int,
        tag: LedgerTag,
        counterparty_id: int | None = None,
        reference: str | None = None,
    ) -> LedgerEntry:
        """Append a single entry in its own transaction.

        Transfer rows cannot be appended one at a time; use the transfer
        protocol, which writes both halves atomically.

        Raises:
            InvalidDeltaError: delta is zero or not an integer
            UnknownAccountError: account does not exist
            InvalidLedgerEntryError: unknown or transfer tag, or a counterparty given
                for a non-transfer entry
        """
        check_delta(delta)
        tag = check_tag(tag)
        if tag in TRANSFER_TAGS:
            raise InvalidLedgerEntryError(
                "transfer entries are only written in pairs by the transfer protocol", tag.value
            )
        if counterparty_id is not None:
            raise InvalidLedgerEntryError(f"{tag.value} entries carry no counterparty", tag.value)

        def _append() -> LedgerEntry:
            with self.database.transaction() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM accounts WHERE id = ?", (account_id,)
                ).fetchone()
                if not exists:
                    raise UnknownAccountError()
                return self.insert(conn, account_id, delta, tag, None, reference)

        return await self.database.run(_append)

    async def sum(self, account_id: int) -> int:
        """Sum of all committed deltas for an account."""

        def _sum() -> int:
            with self.database.connect() as conn:
                return self.total(conn, account_id)

        return await self.database.run(_sum)

    async def history(self, account_id: int, limit: int | None = None) -> list[LedgerEntry]:
        """Committed entries for an account, most recent first."""

        def _history() -> list[LedgerEntry]:
            with self.database.connect() as conn:
                return self.entries(conn, account_id, limit)

        return await self.database.run(_history)

    async def unpaired_transfers(self) -> list[str | None]:
        """Transfer references whose rows do not form one mirrored OUT/IN pair.

        Returns:
            Offending references (None stands for rows with no reference).
            Empty for a healthy ledger.
        """

        def _scan() -> list[str | None]:
            with self.database.connect() as conn:
                cursor = conn.execute(
                    """
                    SELECT reference FROM ledger_entries
                    WHERE tag IN ('TRANSFER_OUT', 'TRANSFER_IN')
                    GROUP BY reference
                    HAVING reference IS NULL
                        OR COUNT(*) <> 2
                        OR SUM(tag = 'TRANSFER_OUT') <> 1
                        OR SUM(delta) <> 0
                        OR MAX(CASE WHEN tag = 'TRANSFER_OUT' THEN account_id END)
                           IS NOT MAX(CASE WHEN tag = 'TRANSFER_IN' THEN counterparty_id END)
                        OR MAX(CASE WHEN tag = 'TRANSFER_IN' THEN account_id END)
                           IS NOT MAX(CASE WHEN tag = 'TRANSFER_OUT' THEN counterparty_id END)
                    """
                )
                return [row[0] for row in cursor.fetchall()]

        return await self.database.run(_scan)
