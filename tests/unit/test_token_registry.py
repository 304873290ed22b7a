"""
Unit tests for the token registry.

Tests cover:
- Bulk issuance (idempotent, strict, per-code values)
- Code validation
- One-time redemption and its failure kinds
- Rollback when the ledger append fails
"""

import pytest

from loyalty.points_server.errors import (
    AlreadyRedeemedError,
    DuplicateTokenCodeError,
    InvalidAmountError,
    InvalidIssuanceRequestError,
    InvalidTokenCodeError,
    StoreUnavailableError,
    TokenNotFoundError,
    UnknownClaimantError,
)
from loyalty.points_server.store.ledger_store import LedgerTag
from loyalty.points_server.store.token_registry import normalize_code
from tests.helpers import add_trigger, ledger_rows


class TestTokenIssue:
    """Tests for TokenRegistry.issue."""

    @pytest.fixture
    def registry(self, points):
        return points.registry

    @pytest.mark.asyncio
    async def test_issue_codes(self, registry):
        result = await registry.issue(["1001", "1002"], 5)

        assert result.inserted == ["1001", "1002"]
        assert result.skipped_count == 0
        token = await registry.get("1001")
        assert token.value == 5
        assert not token.is_redeemed

    @pytest.mark.asyncio
    async def test_reissue_is_skipped(self, points, registry):
        await registry.issue(["1001"], 5)
        result = await registry.issue(["1001", "1002"], 9)

        assert result.inserted == ["1002"]
        assert result.skipped == ["1001"]
        assert (await registry.get("1001")).value == 5
        assert (await points.database.get_stats())["tokens"] == 2

    @pytest.mark.asyncio
    async def test_repeat_within_batch_is_skipped(self, registry):
        result = await registry.issue(["1001", " 1001 "], 5)
        assert result.inserted == ["1001"]
        assert result.skipped == ["1001"]

    @pytest.mark.asyncio
    async def test_strict_duplicate_rolls_back_batch(self, points, registry):
        await registry.issue(["1001"], 5)

        with pytest.raises(DuplicateTokenCodeError) as exc_info:
            await registry.issue(["2002", "1001"], 5, strict=True)

        assert exc_info.value.token_code == "1001"
        assert await registry.get("2002") is None

    @pytest.mark.asyncio
    async def test_per_code_values(self, registry):
        result = await registry.issue(values={"A": 1, "B": 20})

        assert result.inserted_count == 2
        assert (await registry.get("B")).value == 20

    @pytest.mark.asyncio
    async def test_bad_code_rejects_whole_batch(self, points, registry):
        with pytest.raises(InvalidTokenCodeError):
            await registry.issue(["GOOD1", "has space"], 5)

        assert (await points.database.get_stats())["tokens"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [0, -5, 2.5, True])
    async def test_bad_value_rejected(self, registry, value):
        with pytest.raises(InvalidAmountError):
            await registry.issue(["1001"], value)

    @pytest.mark.asyncio
    async def test_bare_string_rejected(self, registry):
        with pytest.raises(InvalidIssuanceRequestError):
            await registry.issue("1001", 5)

    @pytest.mark.asyncio
    async def test_values_and_value_per_code_are_exclusive(self, registry):
        with pytest.raises(InvalidIssuanceRequestError):
            await registry.issue(["1001"], 5, values={"1002": 5})


class TestNormalizeCode:
    """Tests for token code validation."""

    def test_trims(self):
        assert normalize_code("  7741552201\n") == "7741552201"

    @pytest.mark.parametrize("code", ["", "   ", None, 12345, "a b", "x" * 65])
    def test_rejects(self, code):
        with pytest.raises(InvalidTokenCodeError):
            normalize_code(code)

    def test_max_length_accepted(self):
        assert normalize_code("x" * 64) == "x" * 64


class TestTokenRedeem:
    """Tests for TokenRegistry.redeem."""

    @pytest.fixture
    def registry(self, points):
        return points.registry

    @pytest.fixture
    async def alice(self, points):
        account = await points.directory.create_account("Alice")
        await points.registry.issue(["7741552201"], 5)
        return account

    @pytest.mark.asyncio
    async def test_redeem_credits_ledger(self, points, registry, alice):
        result = await registry.redeem("7741552201", alice.account_id)

        assert result.points_earned == 5
        assert result.balance_after == 55
        assert await points.balances.balance_of(alice.account_id) == 55

        rows = ledger_rows(points.database, alice.account_id)
        assert len(rows) == 1
        assert rows[0]["tag"] == LedgerTag.TOKEN_REDEEM.value
        assert rows[0]["reference"] == "7741552201"

        token = await registry.get("7741552201")
        assert token.redeemed_by == alice.account_id
        assert token.redeemed_at == result.redeemed_at

    @pytest.mark.asyncio
    async def test_redeem_trims_code(self, registry, alice):
        result = await registry.redeem("  7741552201 ", alice.account_id)
        assert result.code == "7741552201"

    @pytest.mark.asyncio
    async def test_unknown_token(self, registry, alice):
        with pytest.raises(TokenNotFoundError):
            await registry.redeem("0000000000", alice.account_id)

    @pytest.mark.asyncio
    async def test_second_redeem_reports_first(self, points, registry, alice):
        bob = await points.directory.create_account("Bob")
        first = await registry.redeem("7741552201", alice.account_id)

        with pytest.raises(AlreadyRedeemedError) as exc_info:
            await registry.redeem("7741552201", bob.account_id)

        assert exc_info.value.redeemed_at == first.redeemed_at
        assert await points.balances.balance_of(bob.account_id) == 50

    @pytest.mark.asyncio
    async def test_unknown_claimant(self, points, registry, alice):
        with pytest.raises(UnknownClaimantError):
            await registry.redeem("7741552201", 9999)
        assert not (await registry.get("7741552201")).is_redeemed

    @pytest.mark.asyncio
    async def test_lost_claim_is_already_redeemed(self, points, registry, alice):
        """A conditional update that changes no row means another redeemer won."""
        add_trigger(
            points.database,
            "CREATE TRIGGER lose_race BEFORE UPDATE ON tokens BEGIN SELECT RAISE(IGNORE); END",
        )

        with pytest.raises(AlreadyRedeemedError):
            await registry.redeem("7741552201", alice.account_id)

        assert ledger_rows(points.database, alice.account_id) == []

    @pytest.mark.asyncio
    async def test_failed_ledger_append_unclaims_token(self, points, registry, alice):
        add_trigger(
            points.database,
            "CREATE TRIGGER fail_credit BEFORE INSERT ON ledger_entries "
            "WHEN NEW.tag = 'TOKEN_REDEEM' BEGIN SELECT RAISE(ABORT, 'forced'); END",
        )

        with pytest.raises(StoreUnavailableError):
            await registry.redeem("7741552201", alice.account_id)

        token = await registry.get("7741552201")
        assert token.redeemed_by is None
        assert token.redeemed_at is None
        assert await points.balances.balance_of(alice.account_id) == 50
