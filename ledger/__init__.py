"""
Transaction ledger for lead payouts.

This module provides:
- Append-only transaction rows with forward-only status
- Balance derivation, from a materialized view or by scanning the ledger
"""

from .models import (
    AccountBalance,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from .service import BalanceCalculator, TransactionLedger

__all__ = [
    "AccountBalance",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "BalanceCalculator",
    "TransactionLedger",
]
