from enum import Enum
from typing import Optional


class LedgerServiceError(Exception):
    pass


class ValidationError(LedgerServiceError):
    pass


class InsufficientBalanceError(ValidationError):
    pass


class NotFoundError(LedgerServiceError):
    pass


class ConflictError(LedgerServiceError):
    pass


class StorageError(LedgerServiceError):
    pass


class RedemptionFailure(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    ALREADY_USED = "ALREADY_USED"
    EXPIRED = "EXPIRED"


class RedemptionError(LedgerServiceError):
    """Routine redemption outcome: the code cannot be consumed."""

    def __init__(self, code: str, reason: RedemptionFailure, message: Optional[str] = None):
        self.code = code
        self.reason = reason
        super().__init__(message or f"Reward code {code!r} cannot be redeemed: {reason.value}")
