"""
Points Server - ledger and redemption core for a loyalty-points economy.

Accounts accrue points by redeeming one-time tokens and may move points
to one another. Everything here is built on:
- An append-only ledger of signed point deltas (the source of truth)
- A balance that is always derived, never stored
- A token registry with compare-and-set redemption
- Two-sided transfers committed as a single transaction

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Caller    │────▶│    HTTP     │────▶│  PointsServicer │
    │ (auth'd id) │     │  (FastAPI)  │     │                 │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                        ┌────────────────────┬───────┴────────────┐
                        ▼                    ▼                    ▼
                 ┌─────────────┐     ┌──────────────┐     ┌──────────────┐
                 │TokenRegistry│     │TransferProto.│     │BalanceCalc.  │
                 └──────┬──────┘     └──────┬───────┘     └──────┬───────┘
                        │                   │                    │
                        ▼                   ▼                    ▼
                 ┌─────────────────────────────────────────────────────┐
                 │   SQLite (accounts, ledger_entries, tokens)         │
                 └─────────────────────────────────────────────────────┘

Invariants:
    - balance(a) == base_grant + sum(ledger deltas of a), always
    - Ledger rows are never updated or deleted
    - A token transitions from unredeemed to redeemed exactly once
    - Both halves of a transfer commit together or not at all

How to change safely:
    - Never add a stored balance column; derive it
    - Every multi-step mutation goes through Database.transaction()
    - Changing the base grant changes every balance retroactively
"""

from ._version import __version__

__all__ = ["__version__"]
