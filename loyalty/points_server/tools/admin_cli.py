"""
Admin CLI for the Points Server.

This tool works directly on the points database:
- init: Create the database schema
- create-account: Create an account and print its public id
- issue: Issue given codes, or generate random ones
- balance: Show an account's balance and history
- check: Reconcile the ledger (unpaired transfers, system total)

Usage:
    points-admin init
    points-admin create-account --name Alice
    points-admin issue --value 5 --codes 7741552201 7741552202
    points-admin issue --value 5 --count 100 --length 12
    points-admin balance AB12CD34 --limit 20
    points-admin check

Invariants:
    - Output is JSON on stdout
    - Failures print {"error", "error_code"} and exit non-zero
    - check exits 1 when the ledger is not reconciled

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any

from ..api.servicer import PointsServicer
from ..config import ServerConfig
from ..errors import PointsError

logger = logging.getLogger(__name__)


class AdminCLI:
    """Operator commands over a PointsServicer.

    Example:
        >>> cli = AdminCLI(PointsServicer.from_config(config))
        >>> await cli.check()
        {'healthy': True, 'unpaired_transfers': [], ...}
    """

    def __init__(self, servicer: PointsServicer) -> None:
        self.servicer = servicer

    async def init(self) -> dict[str, Any]:
        await self.servicer.database.initialize()
        return {"initialized": str(self.servicer.database.db_path)}

    async def create_account(self, name: str | None = None) -> dict[str, Any]:
        return await self.servicer.create_account(name)

    async def issue(
        self,
        value: int,
        codes: list[str] | None = None,
        count: int | None = None,
        length: int | None = None,
        alphabet: str = "numeric",
    ) -> dict[str, Any]:
        if codes:
            return await self.servicer.issue_tokens(codes, value)
        return await self.servicer.generate_tokens(count, value, length, alphabet)

    async def balance(self, public_id: str, limit: int | None = None) -> dict[str, Any]:
        return await self.servicer.get_points(public_id, limit)

    async def check(self) -> dict[str, Any]:
        """Reconcile the ledger.

        Healthy means every transfer id has exactly one mirrored OUT/IN pair
        and no account balance is negative.
        """
        unpaired = await self.servicer.ledger.unpaired_transfers()
        total = await self.servicer.balances.system_total()
        stats = await self.servicer.database.get_stats()
        negative = await self._negative_balances()

        return {
            "healthy": not unpaired and not negative,
            "unpaired_transfers": unpaired,
            "negative_balances": negative,
            "system_total": total,
            "stats": stats,
        }

    async def _negative_balances(self) -> list[str]:
        base_grant = self.servicer.balances.base_grant

        def _scan() -> list[str]:
            with self.servicer.database.connect() as conn:
                cursor = conn.execute(
                    """
                    SELECT a.public_id FROM accounts a
                    LEFT JOIN ledger_entries e ON e.account_id = a.id
                    GROUP BY a.id
                    HAVING ? + COALESCE(SUM(e.delta), 0) < 0
                    """,
                    (base_grant,),
                )
                return [row[0] for row in cursor.fetchall()]

        return await self.servicer.database.run(_scan)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Points Server admin tool")
    parser.add_argument("--data-dir", help="Override DATA_DIR")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the database schema")

    account_parser = subparsers.add_parser("create-account", help="Create an account")
    account_parser.add_argument("--name", help="Display name")

    issue_parser = subparsers.add_parser("issue", help="Issue tokens")
    issue_parser.add_argument("--value", type=int, required=True, help="Points per code")
    source = issue_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--codes", nargs="+", help="Codes to issue")
    source.add_argument("--count", type=int, help="Number of codes to generate")
    issue_parser.add_argument("--length", type=int, help="Generated code length")
    issue_parser.add_argument(
        "--alphabet", choices=["numeric", "alphanumeric"], default="numeric"
    )

    balance_parser = subparsers.add_parser("balance", help="Show balance and history")
    balance_parser.add_argument("public_id", help="Account public id")
    balance_parser.add_argument("--limit", type=int, help="History entries to show")

    subparsers.add_parser("check", help="Reconcile the ledger")

    return parser


async def _run(args: argparse.Namespace, config: ServerConfig) -> dict[str, Any]:
    cli = AdminCLI(PointsServicer.from_config(config))
    if args.command != "init":
        await cli.servicer.database.initialize()

    if args.command == "init":
        return await cli.init()
    if args.command == "create-account":
        return await cli.create_account(args.name)
    if args.command == "issue":
        return await cli.issue(args.value, args.codes, args.count, args.length, args.alphabet)
    if args.command == "balance":
        return await cli.balance(args.public_id, args.limit)
    return await cli.check()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if args.data_dir:
        config = dataclasses.replace(
            config, storage=dataclasses.replace(config.storage, data_dir=args.data_dir)
        )

    try:
        result = asyncio.run(_run(args, config))
    except PointsError as e:
        print(json.dumps(e.to_dict(), indent=2))
        return 1

    print(json.dumps(result, indent=2, sort_keys=True))
    if args.command == "check" and not result["healthy"]:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
