"""
Bulk token issuance.

Generates batches of random, unique token codes and hands them to the
token registry. Codes that already exist are skipped by the registry;
generate_and_issue() replaces them with fresh candidates so a request
for N codes yields N new tokens.
"""

from __future__ import annotations

import logging
import secrets
import string

from ..config import IssuanceConfig
from ..errors import InvalidIssuanceRequestError
from ..store.ledger_store import check_points
from ..store.token_registry import IssueResult, TokenRegistry

logger = logging.getLogger(__name__)

ALPHABETS = {
    "numeric": string.digits,
    "alphanumeric": string.ascii_uppercase + string.digits,
}


class TokenIssuer:
    """Validates issuance requests and generates codes."""

    def __init__(self, registry: TokenRegistry, config: IssuanceConfig | None = None) -> None:
        self.registry = registry
        self.config = config or IssuanceConfig()

    def check_count(self, count: object) -> int:
        if isinstance(count, bool) or not isinstance(count, int):
            raise InvalidIssuanceRequestError("count must be an integer", "count")
        if not 1 <= count <= self.config.max_count:
            raise InvalidIssuanceRequestError(
                f"count must be between 1 and {self.config.max_count}", "count"
            )
        return count

    def check_length(self, length: object) -> int:
        if isinstance(length, bool) or not isinstance(length, int):
            raise InvalidIssuanceRequestError("length must be an integer", "length")
        if not self.config.min_length <= length <= self.config.max_length:
            raise InvalidIssuanceRequestError(
                f"length must be between {self.config.min_length} and {self.config.max_length}",
                "length",
            )
        return length

    def check_alphabet(self, alphabet: str) -> str:
        if alphabet not in ALPHABETS:
            raise InvalidIssuanceRequestError(
                f"alphabet must be one of: {', '.join(sorted(ALPHABETS))}", "alphabet"
            )
        return ALPHABETS[alphabet]

    def check_value(self, value: object) -> int:
        return check_points(value, maximum=self.config.max_value)

    def generate_codes(
        self,
        count: int | None = None,
        length: int | None = None,
        alphabet: str = "numeric",
    ) -> list[str]:
        """Generate `count` distinct random codes.

        Raises:
            InvalidIssuanceRequestError: count, length or alphabet out of range
        """
        count = self.check_count(self.config.default_count if count is None else count)
        length = self.check_length(self.config.default_length if length is None else length)
        chars = self.check_alphabet(alphabet)

        if len(chars) ** length < count:
            raise InvalidIssuanceRequestError("code space too small for the requested count", "length")

        codes: set[str] = set()
        while len(codes) < count:
            codes.add("".join(secrets.choice(chars) for _ in range(length)))
        return sorted(codes)

    async def issue_codes(self, codes: list[str], value_per_code: int | None = None) -> IssueResult:
        """Issue caller-supplied codes, all worth the same value."""
        if isinstance(codes, str) or not codes:
            raise InvalidIssuanceRequestError("codes must be a non-empty list", "codes")
        if len(codes) > self.config.max_count:
            raise InvalidIssuanceRequestError(
                f"at most {self.config.max_count} codes per request", "codes"
            )
        value = self.check_value(self.config.default_value if value_per_code is None else value_per_code)
        return await self.registry.issue(codes, value)

    async def generate_and_issue(
        self,
        count: int | None = None,
        value_per_code: int | None = None,
        length: int | None = None,
        alphabet: str = "numeric",
    ) -> IssueResult:
        """Generate and issue exactly `count` new tokens.

        Candidates that collide with existing codes are reported as skipped
        and replaced, for at most `generation_rounds` rounds. All rounds run
        in one transaction: when the code space runs out nothing is issued.

        Raises:
            InvalidAmountError: value out of range
            InvalidIssuanceRequestError: count/length/alphabet out of range, or
                no free codes left after the last round
        """
        count = self.check_count(self.config.default_count if count is None else count)
        value = self.check_value(self.config.default_value if value_per_code is None else value_per_code)
        length = self.check_length(self.config.default_length if length is None else length)
        self.check_alphabet(alphabet)

        def _generate() -> IssueResult:
            with self.registry.database.transaction() as conn:
                total = IssueResult()
                seen: set[str] = set()
                for _ in range(self.config.generation_rounds):
                    missing = count - total.inserted_count
                    if missing == 0:
                        break
                    candidates = [
                        code
                        for code in self.generate_codes(missing, length, alphabet)
                        if code not in seen
                    ]
                    seen.update(candidates)
                    if not candidates:
                        continue
                    result = self.registry.insert_batch(conn, [(code, value) for code in candidates])
                    total.inserted.extend(result.inserted)
                    total.skipped.extend(result.skipped)

                if total.inserted_count < count:
                    logger.warning(
                        "Token code space exhausted",
                        extra={"requested": count, "free": total.inserted_count, "length": length},
                    )
                    raise InvalidIssuanceRequestError(
                        f"only {total.inserted_count} of {count} codes are free at this length; "
                        "use longer codes",
                        "length",
                    )
                return total

        total = await self.registry.database.run(_generate)

        logger.info(
            "Generated tokens",
            extra={"inserted": total.inserted_count, "skipped": total.skipped_count},
        )
        return total
