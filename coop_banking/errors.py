"""
Engine Error Taxonomy

Typed failures returned at every operation boundary. Business-rule
rejections derive from EngineError (a ValueError); storage unavailability
is a separate infrastructure error that callers may retry.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Kinds of engine failure"""
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INSUFFICIENT_RESOURCE = "insufficient_resource"
    INVALID_INPUT = "invalid_input"
    DUPLICATE_RESOURCE = "duplicate_resource"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class EngineError(ValueError):
    """Base class for business-rule rejections"""

    kind: ErrorKind = ErrorKind.INVALID_INPUT
    retryable: bool = False

    def __init__(self, message: str, entity_id: Optional[str] = None, amount: Any = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id
        self.amount = amount

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation of the failure"""
        amount = self.amount
        if amount is not None and not isinstance(amount, (int, Decimal, str)):
            amount = getattr(amount, 'amount', amount)
        return {
            "error": self.kind.value,
            "code": type(self).__name__,
            "message": self.message,
            "entity_id": self.entity_id,
            "amount": str(amount) if amount is not None else None,
            "retryable": self.retryable,
        }


class NotFoundError(EngineError):
    kind = ErrorKind.NOT_FOUND


class InvalidStateError(EngineError):
    kind = ErrorKind.INVALID_STATE


class InsufficientResourceError(EngineError):
    kind = ErrorKind.INSUFFICIENT_RESOURCE


class InvalidInputError(EngineError):
    kind = ErrorKind.INVALID_INPUT


class DuplicateResourceError(EngineError):
    kind = ErrorKind.DUPLICATE_RESOURCE


class ConcurrencyConflictError(EngineError):
    """Optimistic version mismatch; safe to retry after a fresh read"""
    kind = ErrorKind.CONCURRENCY_CONFLICT
    retryable = True


class StorageUnavailableError(Exception):
    """The durable store could not be reached; nothing was committed"""

    kind = ErrorKind.STORAGE_UNAVAILABLE
    retryable = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind.value,
            "code": type(self).__name__,
            "message": self.message,
            "entity_id": None,
            "amount": None,
            "retryable": True,
        }


# Members

class MemberNotFound(NotFoundError):
    pass


class MemberInactive(InvalidStateError):
    pass


# Account ledger

class AccountNotFound(NotFoundError):
    pass


class AccountNotActive(InvalidStateError):
    pass


class InvalidAmount(InvalidInputError):
    pass


class InsufficientFunds(InsufficientResourceError):
    pass


class SameParty(InvalidInputError):
    """Source and destination of a movement are identical"""


# Loans

class LoanNotFound(NotFoundError):
    pass


class BorrowerHasActiveLoan(InvalidStateError):
    pass


class BorrowerInactive(InvalidStateError):
    pass


class LoanAlreadyClosed(InvalidStateError):
    pass


class OverpaymentExceedsOutstanding(InsufficientResourceError):
    pass


# Deposits

class DepositNotFound(NotFoundError):
    pass


class NotActive(InvalidStateError):
    pass


class NotYetDue(InvalidStateError):
    pass


# Shares and dividends

class InsufficientShares(InsufficientResourceError):
    pass


class DividendNotFound(NotFoundError):
    pass


class DuplicateDividend(DuplicateResourceError):
    pass


class InvalidTransition(InvalidStateError):
    pass
