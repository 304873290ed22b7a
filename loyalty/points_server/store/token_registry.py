"""
Token registry: one-time redeemable codes worth a fixed number of points.

Lifecycle:
    Unredeemed --redeem(by account)--> Redeemed (terminal)

Redemption is one transaction:
    1. look up the token (TokenNotFoundError)
    2. reject if already redeemed (AlreadyRedeemedError, with redeemed_at)
    3. UPDATE ... WHERE code = ? AND redeemed_by IS NULL  (compare-and-set)
    4. require rowcount == 1, else another redeemer won (AlreadyRedeemedError)
    5. append a TOKEN_REDEEM ledger entry of +value to the claimant
If step 5 fails, step 3 is rolled back with it.

Invariants:
    - redeemed_by and redeemed_at are set together or not at all
    - The affected-row count of the conditional update is the only
      success signal; there is no separate read-then-write
    - Issuance is idempotent per code: an existing code is skipped

How to change safely:
    - Never replace the conditional UPDATE with a read-check-write
    - Keep the ledger append inside the same transaction as the claim
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..errors import (
    AlreadyRedeemedError,
    DuplicateTokenCodeError,
    InvalidIssuanceRequestError,
    InvalidTokenCodeError,
    TokenNotFoundError,
    UnknownClaimantError,
)
from .accounts import AccountDirectory
from .database import Database, now_ms
from .ledger_store import LedgerStore, LedgerTag, check_points

if TYPE_CHECKING:
    from ..ledger.balance import BalanceCalculator

logger = logging.getLogger(__name__)

MAX_CODE_LENGTH = 64


def normalize_code(code: Any) -> str:
    """Trim and validate a token code.

    Raises:
        InvalidTokenCodeError: Not a string, empty, too long or has inner whitespace
    """
    if not isinstance(code, str) or not code.strip():
        raise InvalidTokenCodeError("code is required")
    code = code.strip()
    if len(code) > MAX_CODE_LENGTH:
        raise InvalidTokenCodeError(
            f"code must be at most {MAX_CODE_LENGTH} characters", token_code=code[:MAX_CODE_LENGTH]
        )
    if any(c.isspace() for c in code):
        raise InvalidTokenCodeError("code must not contain whitespace", token_code=code)
    return code


@dataclass(frozen=True)
class Token:
    """A redeemable code.

    Attributes:
        code: The redeemable key
        value: Points granted on redemption
        created_at: Issue timestamp (Unix ms)
        redeemed_by: Claimant account id, once redeemed
        redeemed_at: Redemption timestamp, once redeemed
    """

    code: str
    value: int
    created_at: int
    redeemed_by: int | None = None
    redeemed_at: int | None = None

    @property
    def is_redeemed(self) -> bool:
        return self.redeemed_by is not None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Token:
        return cls(
            code=row["code"],
            value=row["value"],
            created_at=row["created_at"],
            redeemed_by=row["redeemed_by"],
            redeemed_at=row["redeemed_at"],
        )


@dataclass
class IssueResult:
    """Outcome of a bulk issue call.

    Attributes:
        inserted: Codes that were created by this call
        skipped: Codes that already existed (or repeated within the batch)
    """

    inserted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


@dataclass(frozen=True)
class RedemptionResult:
    """Outcome of a successful redemption.

    Attributes:
        code: Redeemed token code
        points_earned: Token value credited
        claimant_id: Redeeming account
        redeemed_at: Redemption timestamp (Unix ms)
        balance_after: Claimant balance inside the committing transaction
        entry_id: The TOKEN_REDEEM ledger entry
    """

    code: str
    points_earned: int
    claimant_id: int
    redeemed_at: int
    balance_after: int
    entry_id: int


class TokenRegistry:
    """Issues and redeems tokens.

    Example:
        >>> registry = TokenRegistry(database, ledger, balances, directory)
        >>> await registry.issue({"7741552201"}, value_per_code=5)
        >>> result = await registry.redeem("7741552201", account_id)
        >>> result.points_earned
        5
    """

    def __init__(
        self,
        database: Database,
        ledger: LedgerStore,
        balances: BalanceCalculator,
        directory: AccountDirectory,
    ) -> None:
        self.database = database
        self.ledger = ledger
        self.balances = balances
        self.directory = directory

    async def issue(
        self,
        codes: Iterable[str] | None = None,
        value_per_code: int | None = None,
        *,
        values: Mapping[str, int] | None = None,
        strict: bool = False,
    ) -> IssueResult:
        """Insert tokens, skipping codes that already exist.

        Args:
            codes: Codes to issue, all worth value_per_code
            value_per_code: Points per code
            values: Per-code values instead of codes + value_per_code
            strict: Raise DuplicateTokenCodeError on the first existing code
                and roll the whole batch back

        Returns:
            IssueResult with inserted and skipped codes

        Raises:
            InvalidTokenCodeError: A code is malformed (nothing written)
            InvalidAmountError: A value is not a positive integer (nothing written)
            InvalidIssuanceRequestError: Neither or both of codes/values given
        """
        batch = self._prepare_batch(codes, value_per_code, values)

        def _issue() -> IssueResult:
            with self.database.transaction() as conn:
                return self.insert_batch(conn, batch, strict)

        result = await self.database.run(_issue)

        logger.info(
            "Issued tokens",
            extra={"inserted": result.inserted_count, "skipped": result.skipped_count},
        )
        return result

    def insert_batch(
        self,
        conn: sqlite3.Connection,
        batch: list[tuple[str, int]],
        strict: bool = False,
    ) -> IssueResult:
        """Insert validated (code, value) pairs on an open transaction."""
        result = IssueResult()
        now = now_ms()
        for code, value in batch:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO tokens (code, value, created_at) VALUES (?, ?, ?)",
                (code, value, now),
            )
            if cursor.rowcount == 1:
                result.inserted.append(code)
            elif strict:
                raise DuplicateTokenCodeError(code)
            else:
                result.skipped.append(code)
        return result

    def _prepare_batch(
        self,
        codes: Iterable[str] | None,
        value_per_code: int | None,
        values: Mapping[str, int] | None,
    ) -> list[tuple[str, int]]:
        if values is not None:
            if codes is not None or value_per_code is not None:
                raise InvalidIssuanceRequestError(
                    "give either codes with value_per_code or per-code values", field_name="values"
                )
            return [(normalize_code(code), check_points(value)) for code, value in values.items()]

        if codes is None or isinstance(codes, str):
            raise InvalidIssuanceRequestError("codes must be a collection of strings", "codes")
        value = check_points(value_per_code)
        return [(normalize_code(code), value) for code in codes]

    async def redeem(self, code: str, claimant_account_id: int) -> RedemptionResult:
        """Redeem a token for an account, crediting its value to the ledger.

        Raises:
            InvalidTokenCodeError: code is empty or malformed
            UnknownClaimantError: claimant account does not exist
            TokenNotFoundError: no token with this code
            AlreadyRedeemedError: token was redeemed before, or concurrently
        """
        code = normalize_code(code)

        def _redeem() -> RedemptionResult:
            with self.database.transaction() as conn:
                if self.directory.fetch(conn, claimant_account_id) is None:
                    raise UnknownClaimantError()

                row = conn.execute("SELECT * FROM tokens WHERE code = ?", (code,)).fetchone()
                if row is None:
                    raise TokenNotFoundError(code)

                token = Token.from_row(row)
                if token.is_redeemed:
                    raise AlreadyRedeemedError(token.redeemed_at)

                redeemed_at = now_ms()
                cursor = conn.execute(
                    """
                    UPDATE tokens SET redeemed_by = ?, redeemed_at = ?
                    WHERE code = ? AND redeemed_by IS NULL AND redeemed_at IS NULL
                    """,
                    (claimant_account_id, redeemed_at, code),
                )
                if cursor.rowcount != 1:
                    prior = conn.execute(
                        "SELECT redeemed_at FROM tokens WHERE code = ?", (code,)
                    ).fetchone()
                    raise AlreadyRedeemedError(prior["redeemed_at"] if prior else None)

                entry = self.ledger.insert(
                    conn,
                    claimant_account_id,
                    token.value,
                    LedgerTag.TOKEN_REDEEM,
                    reference=code,
                )
                balance = self.balances.compute(conn, claimant_account_id)

            return RedemptionResult(
                code=code,
                points_earned=token.value,
                claimant_id=claimant_account_id,
                redeemed_at=redeemed_at,
                balance_after=balance,
                entry_id=entry.entry_id,
            )

        try:
            result = await self.database.run(_redeem)
        except AlreadyRedeemedError:
            logger.info("Token already redeemed", extra={"token_code": code})
            raise

        logger.info(
            "Redeemed token",
            extra={
                "token_code": code,
                "account_id": claimant_account_id,
                "points": result.points_earned,
            },
        )
        return result

    async def get(self, code: str) -> Token | None:
        code = normalize_code(code)

        def _get() -> Token | None:
            with self.database.connect() as conn:
                row = conn.execute("SELECT * FROM tokens WHERE code = ?", (code,)).fetchone()
                return Token.from_row(row) if row else None

        return await self.database.run(_get)
