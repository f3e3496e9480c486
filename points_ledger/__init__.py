"""
Points Ledger for Bet Reports and Reward Codes

This module provides:
- Balances kept as integer minor units, changed only by atomic SQL increments
- Bet report lifecycle: pending → approved / rejected, credited exactly once
- Single-use reward codes, redeemed at most once even under concurrency
- Analysis purchases that debit points (configurable overdraft)
- An append-only journal of every balance change
"""

from .errors import (
    ConflictError,
    InsufficientBalanceError,
    LedgerServiceError,
    NotFoundError,
    RedemptionError,
    RedemptionFailure,
    StorageError,
    ValidationError,
)
from .models import (
    BetReport,
    BetStatus,
    EntryType,
    LedgerEntry,
    RedemptionResult,
    RewardCode,
    UserBalance,
)
from .service import LedgerService
from .store import LedgerStore

__all__ = [
    "BetReport",
    "BetStatus",
    "ConflictError",
    "EntryType",
    "InsufficientBalanceError",
    "LedgerEntry",
    "LedgerService",
    "LedgerServiceError",
    "LedgerStore",
    "NotFoundError",
    "RedemptionError",
    "RedemptionFailure",
    "RedemptionResult",
    "RewardCode",
    "StorageError",
    "UserBalance",
    "ValidationError",
]
