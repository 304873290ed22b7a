"""
CLI tools for Points Server administration.

This module provides command-line tools for:
- admin: schema init, account creation, token issuance, balance lookup
  and ledger reconciliation

Invariants:
    - Tools work offline (no running server required)
    - Reconciliation never writes
"""

from .admin_cli import AdminCLI

__all__ = ["AdminCLI"]
