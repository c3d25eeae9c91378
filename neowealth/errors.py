"""
Error Taxonomy

Every engine failure is one of a small, closed set of kinds.
Callers (the HTTP layer, jobs) map kinds to status codes and messages
without inspecting exception text.

DESIGN DECISION: Engines RAISE these for invalid input.
Flows CATCH them at the boundary and turn them into a failed Result.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Closed set of failure categories."""
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ALREADY_EXISTS = "already_exists"
    ALREADY_MEMBER = "already_member"
    CONFLICT = "conflict"
    INTERNAL = "internal"


# Status codes the HTTP layer should use for each kind
HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INSUFFICIENT_BALANCE: 400,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.ALREADY_MEMBER: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


class NeoWealthError(Exception):
    """Base exception for all domain errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_message: str = "Something went wrong"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]


class NotFoundError(NeoWealthError):
    """Entity absent or not owned by the caller."""
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class WalletNotFoundError(NotFoundError):
    default_message = "Wallet not found"


class InvalidInputError(NeoWealthError):
    """Input failed validation."""
    kind = ErrorKind.INVALID_INPUT
    default_message = "Invalid input"


class InvalidAmountError(InvalidInputError):
    default_message = "Amount must be greater than zero"


class InsufficientBalanceError(NeoWealthError):
    """Spend or transfer exceeds the available NeoCoins."""
    kind = ErrorKind.INSUFFICIENT_BALANCE
    default_message = "Insufficient NeoCoins"

    def __init__(self, available, requested, message: Optional[str] = None):
        self.available = available
        self.requested = requested
        super().__init__(
            message,
            details={"available": str(available), "requested": str(requested)},
        )


class AlreadyExistsError(NeoWealthError):
    kind = ErrorKind.ALREADY_EXISTS
    default_message = "Already exists"


class AlreadyMemberError(AlreadyExistsError):
    kind = ErrorKind.ALREADY_MEMBER
    default_message = "User is already in an active hive"


class ConflictError(NeoWealthError):
    kind = ErrorKind.CONFLICT
    default_message = "Request conflicts with current state"


class HiveFullError(ConflictError):
    default_message = "Hive is full"


class InternalError(NeoWealthError):
    """Unexpected failure in a dependency."""
    kind = ErrorKind.INTERNAL
