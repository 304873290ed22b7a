"""
Ledger protocols built on the store.

- BalanceCalculator: base grant + sum of ledger deltas
- TransferProtocol: atomic two-sided transfers
- TokenIssuer: bulk code generation and issuance

Invariants:
    - Balances are derived on every read, never stored
    - Transfers are zero-sum
"""

from .balance import BalanceCalculator
from .issuance import TokenIssuer
from .transfer import TransferProtocol, TransferResult

__all__ = [
    "BalanceCalculator",
    "TokenIssuer",
    "TransferProtocol",
    "TransferResult",
]
