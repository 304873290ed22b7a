"""
Peer-to-peer point transfers.

A transfer moves points between two accounts as one transaction that
writes a TRANSFER_OUT row for the sender and a TRANSFER_IN row for the
recipient, both tagged with the same transfer id.

Preconditions, checked in order:
    1. points is a positive integer           -> InvalidAmountError
    2. recipient public id resolves            -> UnknownRecipientError
    3. recipient differs from sender           -> SelfTransferRejectedError
    4. sender balance >= points                -> InsufficientBalanceError

Invariants:
    - Both rows commit together or neither does
    - The balance check and the debit happen under the same write lock
      (BEGIN IMMEDIATE), so concurrent transfers cannot both spend the
      same pre-debit balance
    - The sender balance is re-derived after the debit and must not be
      negative at COMMIT
    - Transfers are zero-sum: system_total() is unchanged

How to change safely:
    - Never split the check and the appends across transactions
    - Keep the precondition order; callers branch on the first failure
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from ..errors import (
    InsufficientBalanceError,
    SelfTransferRejectedError,
    UnknownAccountError,
    UnknownRecipientError,
)
from ..store.accounts import Account, AccountDirectory
from ..store.database import Database
from ..store.ledger_store import LedgerStore, check_points
from .balance import BalanceCalculator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a committed transfer.

    Attributes:
        transfer_id: Reference shared by both ledger rows
        sender: Sending account
        recipient: Receiving account
        points: Amount moved
        sender_balance_after: Sender balance inside the committing transaction
        recipient_balance_after: Recipient balance inside the committing transaction
        out_entry_id: Sender's TRANSFER_OUT row
        in_entry_id: Recipient's TRANSFER_IN row
    """

    transfer_id: str
    sender: Account
    recipient: Account
    points: int
    sender_balance_after: int
    recipient_balance_after: int
    out_entry_id: int
    in_entry_id: int


class TransferProtocol:
    """Atomic two-sided ledger mutation.

    Example:
        >>> protocol = TransferProtocol(database, directory, ledger, balances)
        >>> result = await protocol.transfer(sender_id, "AB12CD34", 20)
        >>> result.sender_balance_after
        30
    """

    def __init__(
        self,
        database: Database,
        directory: AccountDirectory,
        ledger: LedgerStore,
        balances: BalanceCalculator,
    ) -> None:
        self.database = database
        self.directory = directory
        self.ledger = ledger
        self.balances = balances

    async def transfer(self, from_account_id: int, to_public_id: str, points: int) -> TransferResult:
        """Move points from an account to the account with the given public id.

        Args:
            from_account_id: Internal id of the sender
            to_public_id: Public id of the recipient
            points: Positive number of points to move

        Returns:
            TransferResult with both post-transfer balances

        Raises:
            InvalidAmountError: points is not a positive integer
            UnknownAccountError: sender does not exist
            UnknownRecipientError: recipient does not resolve
            SelfTransferRejectedError: recipient is the sender
            InsufficientBalanceError: sender balance is below points
            TransactionConflictError: write lock not obtained in time
        """
        check_points(points)
        return await self.database.run(self._transfer, from_account_id, to_public_id, points)

    def _transfer(self, from_account_id: int, to_public_id: str, points: int) -> TransferResult:
        with self.database.transaction() as conn:
            sender = self.directory.fetch(conn, from_account_id)
            if sender is None:
                raise UnknownAccountError("sender account not found")

            recipient = self.directory.lookup(conn, to_public_id)
            if recipient is None:
                raise UnknownRecipientError(to_public_id)

            if recipient.account_id == sender.account_id:
                raise SelfTransferRejectedError()

            balance = self.balances.compute(conn, sender.account_id)
            if balance < points:
                raise InsufficientBalanceError(balance, points)

            transfer_id = uuid.uuid4().hex
            out_entry, in_entry = self.ledger.insert_transfer(
                conn, sender.account_id, recipient.account_id, points, transfer_id
            )

            sender_after = self.balances.compute(conn, sender.account_id)
            if sender_after < 0:
                raise InsufficientBalanceError(balance, points)
            recipient_after = self.balances.compute(conn, recipient.account_id)

        logger.info(
            "Transferred points",
            extra={
                "transfer_id": transfer_id,
                "from_public_id": sender.public_id,
                "to_public_id": recipient.public_id,
                "points": points,
            },
        )

        return TransferResult(
            transfer_id=transfer_id,
            sender=sender,
            recipient=recipient,
            points=points,
            sender_balance_after=sender_after,
            recipient_balance_after=recipient_after,
            out_entry_id=out_entry.entry_id,
            in_entry_id=in_entry.entry_id,
        )
