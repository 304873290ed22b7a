"""
Caller-facing operations of the Points Server.

PointsServicer is the one facade the HTTP surface and the admin CLI talk
to. Callers arrive already authenticated and identify themselves by
public account id; the servicer resolves that id, delegates to the
ledger protocols and shapes the result into plain dicts.

Invariants:
    - Internal account ids never appear in a response
    - Failures propagate as PointsError subclasses; nothing is swallowed
    - Balances in responses are computed inside the committing transaction
"""

from __future__ import annotations

import logging
from typing import Any

from .._version import __version__
from ..config import ServerConfig
from ..errors import PointsError, UnknownClaimantError
from ..ledger import BalanceCalculator, TokenIssuer, TransferProtocol
from ..store import AccountDirectory, Database, LedgerStore, TokenRegistry
from ..store.ledger_store import LedgerEntry
from ..store.token_registry import IssueResult

logger = logging.getLogger(__name__)


def entry_to_dict(entry: LedgerEntry) -> dict[str, Any]:
    """History line for one ledger entry."""
    return {
        "id": entry.entry_id,
        "delta": entry.delta,
        "tag": entry.tag.value,
        "counterparty": entry.counterparty_public_id,
        "createdAt": entry.created_at,
        "text": entry.describe(),
    }


def issue_result_to_dict(result: IssueResult, points_per_code: int) -> dict[str, Any]:
    return {
        "insertedCount": result.inserted_count,
        "skippedCount": result.skipped_count,
        "pointsPerCode": points_per_code,
        "codes": result.inserted,
        "skippedCodes": result.skipped,
    }


class PointsServicer:
    """Redeem, transfer, balance/history and issuance for callers.

    Attributes:
        database: Points database
        directory: Account directory
        ledger: Ledger store
        balances: Balance calculator
        registry: Token registry
        transfers: Transfer protocol
        issuer: Bulk token issuer
        history_limit: Default history page size
    """

    def __init__(
        self,
        database: Database,
        directory: AccountDirectory,
        ledger: LedgerStore,
        balances: BalanceCalculator,
        registry: TokenRegistry,
        transfers: TransferProtocol,
        issuer: TokenIssuer,
        history_limit: int = 100,
    ) -> None:
        self.database = database
        self.directory = directory
        self.ledger = ledger
        self.balances = balances
        self.registry = registry
        self.transfers = transfers
        self.issuer = issuer
        self.history_limit = history_limit

    @classmethod
    def from_config(cls, config: ServerConfig) -> PointsServicer:
        """Wire every component from configuration."""
        database = Database.from_config(config.storage)
        directory = AccountDirectory(
            database,
            public_id_length=config.directory.public_id_length,
            max_retries=config.directory.max_retries,
        )
        ledger = LedgerStore(database)
        balances = BalanceCalculator(database, ledger, base_grant=config.policy.base_grant)
        registry = TokenRegistry(database, ledger, balances, directory)
        return cls(
            database=database,
            directory=directory,
            ledger=ledger,
            balances=balances,
            registry=registry,
            transfers=TransferProtocol(database, directory, ledger, balances),
            issuer=TokenIssuer(registry, config.issuance),
            history_limit=config.policy.history_limit,
        )

    async def _resolve_caller(self, public_id: str) -> int:
        account_id = await self.directory.resolve_by_public_id(public_id)
        if account_id is None:
            raise UnknownClaimantError(public_id)
        return account_id

    async def create_account(self, display_name: str | None = None) -> dict[str, Any]:
        account = await self.directory.create_account(display_name)
        return account.to_dict()

    async def redeem(self, code: str, claimant_public_id: str) -> dict[str, Any]:
        """Redeem a token for the calling account."""
        account_id = await self._resolve_caller(claimant_public_id)
        result = await self.registry.redeem(code, account_id)
        return {
            "userId": claimant_public_id.strip(),
            "redeemedCode": result.code,
            "pointsEarned": result.points_earned,
            "totalPoints": result.balance_after,
        }

    async def transfer(
        self,
        sender_public_id: str,
        recipient_public_id: str,
        amount: int,
    ) -> dict[str, Any]:
        """Send points from the calling account to another account."""
        sender_id = await self._resolve_caller(sender_public_id)
        result = await self.transfers.transfer(sender_id, recipient_public_id, amount)
        return {
            "fromUserId": result.sender.public_id,
            "toUserId": result.recipient.public_id,
            "points": result.points,
            "senderBalanceAfter": result.sender_balance_after,
            "receiverBalanceAfter": result.recipient_balance_after,
            "transferId": result.transfer_id,
        }

    async def get_points(self, public_id: str, limit: int | None = None) -> dict[str, Any]:
        """Balance and most-recent-first history, read from one snapshot."""
        account_id = await self._resolve_caller(public_id)
        limit = self.history_limit if limit is None else limit

        def _read() -> tuple[int, list[LedgerEntry]]:
            with self.database.transaction(immediate=False) as conn:
                return (
                    self.balances.compute(conn, account_id),
                    self.ledger.entries(conn, account_id, limit),
                )

        balance, entries = await self.database.run(_read)
        return {
            "userId": public_id.strip(),
            "totalPoints": balance,
            "history": [entry_to_dict(entry) for entry in entries],
        }

    async def issue_tokens(self, codes: list[str], value_per_code: int | None = None) -> dict[str, Any]:
        """Issue caller-supplied codes; existing codes are reported as skipped."""
        value = self.issuer.config.default_value if value_per_code is None else value_per_code
        result = await self.issuer.issue_codes(codes, value)
        return issue_result_to_dict(result, value)

    async def generate_tokens(
        self,
        count: int | None = None,
        value_per_code: int | None = None,
        length: int | None = None,
        alphabet: str = "numeric",
    ) -> dict[str, Any]:
        """Generate and issue `count` fresh random codes."""
        value = self.issuer.config.default_value if value_per_code is None else value_per_code
        result = await self.issuer.generate_and_issue(count, value, length, alphabet)
        return issue_result_to_dict(result, value)

    async def health(self) -> dict[str, Any]:
        """Get server health status."""
        components = {}
        stats: dict[str, int] = {}

        try:
            stats = await self.database.get_stats()
            components["storage"] = "healthy"
        except PointsError as e:
            logger.warning(f"Health check failed: {e.message}")
            components["storage"] = "unhealthy"

        return {
            "healthy": all(v == "healthy" for v in components.values()),
            "version": __version__,
            "components": components,
            "stats": stats,
        }
