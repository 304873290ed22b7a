"""
Error types for the Points Server.

Every failure the core can report is a typed, local outcome:
- PointsError: Base exception
- InvalidAmountError / InvalidDeltaError: Bad point quantities
- InvalidLedgerEntryError: Entry shape not allowed on a raw append
- UnknownAccountError and its Recipient/Claimant variants
- SelfTransferRejectedError / InsufficientBalanceError: Transfer preconditions
- TokenNotFoundError / AlreadyRedeemedError / DuplicateTokenCodeError
- InvalidTokenCodeError / InvalidIssuanceRequestError: Issuance input
- TransactionConflictError / StoreUnavailableError: Store-level failures

Invariants:
    - All errors inherit from PointsError
    - `code` is stable and safe to branch on
    - `details` never carries row ids or store internals, only values the
      caller can use about its own state (e.g. its balance)
    - None of these errors implies partially applied state
"""

from __future__ import annotations

from typing import Any


class PointsError(Exception):
    """Base exception for all Points Server errors.

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        details: Additional caller-safe context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "POINTS_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "error_code": self.code, **self.details}


class InvalidAmountError(PointsError):
    """Point amount is not a positive integer."""

    def __init__(self, message: str = "points must be a positive integer", amount: Any = None) -> None:
        super().__init__(message, code="INVALID_AMOUNT")
        self.amount = amount


class InvalidDeltaError(PointsError):
    """Ledger delta is zero or not an integer."""

    def __init__(self, message: str = "ledger delta must be a non-zero integer") -> None:
        super().__init__(message, code="INVALID_DELTA")


class UnknownAccountError(PointsError):
    """Account identifier does not resolve.

    Raised when:
    - An internal account id does not exist
    - A public id does not resolve (see the two subclasses)
    """

    def __init__(
        self,
        message: str = "account not found",
        code: str = "UNKNOWN_ACCOUNT",
    ) -> None:
        super().__init__(message, code=code)


class UnknownRecipientError(UnknownAccountError):
    """Transfer recipient public id does not resolve."""

    def __init__(self, public_id: str | None = None) -> None:
        super().__init__("receiver not found for given uid", code="UNKNOWN_RECIPIENT")
        self.public_id = public_id


class UnknownClaimantError(UnknownAccountError):
    """Calling account does not resolve."""

    def __init__(self, public_id: str | None = None) -> None:
        super().__init__("account not found for caller", code="UNKNOWN_CLAIMANT")
        self.public_id = public_id


class SelfTransferRejectedError(PointsError):
    """Sender and recipient are the same account."""

    def __init__(self) -> None:
        super().__init__("cannot send points to yourself", code="SELF_TRANSFER_REJECTED")


class InsufficientBalanceError(PointsError):
    """Sender balance is below the requested amount.

    Attributes:
        balance: The balance the check was made against
        requested: The requested amount
    """

    def __init__(self, balance: int, requested: int) -> None:
        super().__init__(
            "insufficient points",
            code="INSUFFICIENT_BALANCE",
            details={"balance": balance, "requested": requested},
        )
        self.balance = balance
        self.requested = requested


class TokenNotFoundError(PointsError):
    """No token exists for the given code."""

    def __init__(self, code: str | None = None) -> None:
        super().__init__("invalid token code", code="TOKEN_NOT_FOUND")
        self.token_code = code


class AlreadyRedeemedError(PointsError):
    """Token has already been redeemed.

    Attributes:
        redeemed_at: When the winning redemption happened (Unix ms)
    """

    def __init__(self, redeemed_at: int | None = None) -> None:
        super().__init__(
            "token already redeemed",
            code="ALREADY_REDEEMED",
            details={"redeemed_at": redeemed_at},
        )
        self.redeemed_at = redeemed_at


class DuplicateTokenCodeError(PointsError):
    """Token code already exists.

    Bulk issuance reports duplicates as skipped; this is raised only when
    the caller asks for strict issuance.
    """

    def __init__(self, token_code: str) -> None:
        super().__init__(
            f"token code already exists: {token_code}",
            code="DUPLICATE_TOKEN_CODE",
            details={"token_code": token_code},
        )
        self.token_code = token_code


class InvalidTokenCodeError(PointsError):
    """Token code is empty, too long or contains whitespace."""

    def __init__(self, message: str, token_code: str | None = None) -> None:
        super().__init__(message, code="INVALID_TOKEN_CODE")
        self.token_code = token_code


class InvalidIssuanceRequestError(PointsError):
    """Bulk issuance parameters are out of range."""

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message, code="INVALID_ISSUANCE_REQUEST", details={"field": field_name})
        self.field_name = field_name


class InvalidLedgerEntryError(PointsError):
    """Ledger entry shape is not allowed on this write path.

    Raised for an unknown tag, a counterparty on a non-transfer entry, or a
    TRANSFER_* entry appended outside the transfer protocol.
    """

    def __init__(self, message: str, tag: str | None = None) -> None:
        super().__init__(message, code="INVALID_LEDGER_ENTRY", details={"tag": tag})
        self.tag = tag


class AccountDirectoryError(PointsError):
    """Account directory could not complete a signup."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="ACCOUNT_DIRECTORY_ERROR")


class TransactionConflictError(PointsError):
    """Store could not obtain or commit the transaction; the caller may retry."""

    def __init__(self, message: str = "transaction conflict, retry the request") -> None:
        super().__init__(message, code="TRANSACTION_CONFLICT")


class StoreUnavailableError(PointsError):
    """Store failed; the operation was fully rolled back."""

    def __init__(self, message: str = "points store unavailable") -> None:
        super().__init__(message, code="STORE_UNAVAILABLE")
