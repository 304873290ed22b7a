"""
Unit tests for the error taxonomy.
"""

from loyalty.points_server.errors import (
    AlreadyRedeemedError,
    InsufficientBalanceError,
    InvalidAmountError,
    PointsError,
    StoreUnavailableError,
    TransactionConflictError,
    UnknownAccountError,
    UnknownClaimantError,
    UnknownRecipientError,
)


class TestPointsError:
    """Tests for error codes and serialization."""

    def test_all_errors_are_points_errors(self):
        for error in (
            InvalidAmountError(),
            UnknownRecipientError("AB12CD34"),
            TransactionConflictError(),
            StoreUnavailableError(),
        ):
            assert isinstance(error, PointsError)

    def test_unknown_variants_share_base(self):
        assert isinstance(UnknownRecipientError(), UnknownAccountError)
        assert isinstance(UnknownClaimantError(), UnknownAccountError)
        assert UnknownRecipientError().code == "UNKNOWN_RECIPIENT"
        assert UnknownClaimantError().code == "UNKNOWN_CLAIMANT"

    def test_insufficient_balance_reports_balance(self):
        error = InsufficientBalanceError(balance=35, requested=1000)
        assert error.to_dict() == {
            "error": "insufficient points",
            "error_code": "INSUFFICIENT_BALANCE",
            "balance": 35,
            "requested": 1000,
        }

    def test_already_redeemed_carries_timestamp(self):
        error = AlreadyRedeemedError(redeemed_at=1700000000000)
        assert error.redeemed_at == 1700000000000
        assert error.to_dict()["redeemed_at"] == 1700000000000

    def test_store_errors_are_generic(self):
        """Store failures never describe store internals."""
        assert StoreUnavailableError().to_dict() == {
            "error": "points store unavailable",
            "error_code": "STORE_UNAVAILABLE",
        }
