"""
Account directory for the Points Server.

Maps a short public account identifier to the internal account id the
ledger is keyed by. Profile data beyond an optional display name lives
elsewhere; the core only needs existence checks and resolution.

Invariants:
    - Public ids are fixed-length, drawn from A-Z0-9, unique
    - Public ids are immutable once assigned
    - Accounts are never deleted
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
import string
from dataclasses import dataclass
from typing import Any

from ..errors import AccountDirectoryError
from .database import Database, now_ms

logger = logging.getLogger(__name__)

PUBLIC_ID_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class Account:
    """A ledger participant.

    Attributes:
        account_id: Internal identity (ledger key)
        public_id: Stable public identifier shown to other accounts
        display_name: Optional name used in history lines
        created_at: Signup timestamp (Unix ms)
    """

    account_id: int
    public_id: str
    display_name: str | None
    created_at: int

    @property
    def label(self) -> str:
        return self.display_name or self.public_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.public_id,
            "displayName": self.display_name,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Account:
        return cls(
            account_id=row["id"],
            public_id=row["public_id"],
            display_name=row["display_name"],
            created_at=row["created_at"],
        )


class AccountDirectory:
    """Signup and identifier resolution.

    The `lookup`/`fetch` helpers take an open connection so the ledger
    protocols can resolve accounts inside their own transaction.
    """

    def __init__(
        self,
        database: Database,
        public_id_length: int = 8,
        max_retries: int = 20,
    ) -> None:
        self.database = database
        self.public_id_length = public_id_length
        self.max_retries = max_retries

    def generate_public_id(self) -> str:
        return "".join(secrets.choice(PUBLIC_ID_ALPHABET) for _ in range(self.public_id_length))

    async def create_account(self, display_name: str | None = None) -> Account:
        """Create an account with a fresh, collision-checked public id.

        Raises:
            AccountDirectoryError: No free public id found within max_retries
        """
        return await self.database.run(self._create_account, display_name)

    def _create_account(self, display_name: str | None) -> Account:
        if display_name is not None:
            display_name = display_name.strip() or None

        with self.database.transaction() as conn:
            for _ in range(self.max_retries):
                public_id = self.generate_public_id()
                if self.lookup(conn, public_id) is None:
                    break
            else:
                raise AccountDirectoryError("could not allocate a unique public id")

            now = now_ms()
            cursor = conn.execute(
                "INSERT INTO accounts (public_id, display_name, created_at) VALUES (?, ?, ?)",
                (public_id, display_name, now),
            )
            account = Account(
                account_id=cursor.lastrowid,
                public_id=public_id,
                display_name=display_name,
                created_at=now,
            )

        logger.info("Created account", extra={"public_id": public_id})
        return account

    def lookup(self, conn: sqlite3.Connection, public_id: Any) -> Account | None:
        """Resolve a public id on an open connection."""
        if not isinstance(public_id, str) or not public_id.strip():
            return None
        row = conn.execute(
            "SELECT * FROM accounts WHERE public_id = ?", (public_id.strip(),)
        ).fetchone()
        return Account.from_row(row) if row else None

    def fetch(self, conn: sqlite3.Connection, account_id: int) -> Account | None:
        """Load an account by internal id on an open connection."""
        row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        return Account.from_row(row) if row else None

    async def resolve_by_public_id(self, public_id: str) -> int | None:
        """Resolve a public id to the internal account id, or None."""
        account = await self.get_by_public_id(public_id)
        return account.account_id if account else None

    async def get_by_public_id(self, public_id: str) -> Account | None:
        def _get() -> Account | None:
            with self.database.connect() as conn:
                return self.lookup(conn, public_id)

        return await self.database.run(_get)

    async def get(self, account_id: int) -> Account | None:
        def _get() -> Account | None:
            with self.database.connect() as conn:
                return self.fetch(conn, account_id)

        return await self.database.run(_get)

    async def exists(self, account_id: int) -> bool:
        return await self.get(account_id) is not None

    async def count(self) -> int:
        def _count() -> int:
            with self.database.connect() as conn:
                return conn.execute("SELECT COUNT(*) FROM accounts").fetchone()[0]

        return await self.database.run(_count)
