"""
Store module for the Points Server.

This module owns everything persisted in the points database:
- Database: connections, schema and the transaction boundary
- AccountDirectory: public id <-> internal id resolution
- LedgerStore: append-only signed point deltas
- TokenRegistry: one-time redeemable codes

Invariants:
    - All multi-step mutations run inside one Database.transaction()
    - sqlite3 errors are translated to PointsError subclasses here
    - Nothing in this module caches balances or token state

How to change safely:
    - Schema changes must be additive; bump Database.SCHEMA_VERSION
    - Test rollback paths with injected triggers
"""

from .accounts import Account, AccountDirectory
from .database import Database, now_ms
from .ledger_store import LedgerEntry, LedgerStore, LedgerTag
from .token_registry import IssueResult, RedemptionResult, Token, TokenRegistry

__all__ = [
    "Account",
    "AccountDirectory",
    "Database",
    "now_ms",
    "LedgerEntry",
    "LedgerStore",
    "LedgerTag",
    "IssueResult",
    "RedemptionResult",
    "Token",
    "TokenRegistry",
]
