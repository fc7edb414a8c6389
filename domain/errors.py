"""
Domain error taxonomy for ticket sales, payment reconciliation and check-in.

Every error carries an ErrorCode and a user-safe message. The API layer maps
error classes to HTTP status codes; services never build HTTP responses.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .ticket import TicketLifecycle


class ErrorCode(str, Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    INVENTORY_UNAVAILABLE = "INVENTORY_UNAVAILABLE"
    PROMO_REJECTED = "PROMO_REJECTED"
    DUPLICATE_TICKET_ID = "DUPLICATE_TICKET_ID"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    STATE_CONFLICT = "STATE_CONFLICT"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    PAYMENT_INITIATION_FAILED = "PAYMENT_INITIATION_FAILED"
    PAYMENT_TIMEOUT = "PAYMENT_TIMEOUT"
    UNAUTHORIZED = "UNAUTHORIZED"


class TicketingError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(TicketingError):
    """Malformed request input (missing buyer fields, bad phone number, ...)."""

    code = ErrorCode.VALIDATION_FAILED


class EventNotFound(TicketingError):
    code = ErrorCode.EVENT_NOT_FOUND

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class InventoryErrorReason(str, Enum):
    DEADLINE_PASSED = "DeadlinePassed"
    SOLD_OUT = "SoldOut"
    INSUFFICIENT_REMAINING = "InsufficientRemaining"
    INVALID_QUANTITY = "InvalidQuantity"


class InventoryError(TicketingError):
    """Raised before any ticket row exists; no writes were performed."""

    code = ErrorCode.INVENTORY_UNAVAILABLE

    def __init__(self, reason: InventoryErrorReason, message: str, remaining: Optional[int] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.remaining = remaining


class PromoErrorReason(str, Enum):
    NOT_FOUND = "NotFound"
    INACTIVE = "Inactive"
    EXPIRED = "Expired"
    LIMIT_REACHED = "LimitReached"


class PromoError(TicketingError):
    code = ErrorCode.PROMO_REJECTED

    def __init__(self, reason: PromoErrorReason, code: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.promo_code = code


class DuplicateTicketId(TicketingError):
    code = ErrorCode.DUPLICATE_TICKET_ID

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Ticket id already exists: {ticket_id}")
        self.ticket_id = ticket_id


class TicketNotFound(TicketingError):
    code = ErrorCode.TICKET_NOT_FOUND

    def __init__(self, ticket_id: str) -> None:
        super().__init__("Ticket not found")
        self.ticket_id = ticket_id


class StateConflict(TicketingError):
    """
    The stored ticket no longer matches the state the caller expected.

    `actual` is the state observed after re-reading the row, so callers can
    report what really happened instead of a generic failure.
    """

    code = ErrorCode.STATE_CONFLICT

    def __init__(
        self,
        ticket_id: str,
        expected: "TicketLifecycle",
        actual: "TicketLifecycle",
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message
            or f"Ticket {ticket_id} is {actual.value}, expected {expected.value}"
        )
        self.ticket_id = ticket_id
        self.expected = expected
        self.actual = actual


class IllegalTransition(TicketingError):
    code = ErrorCode.ILLEGAL_TRANSITION

    def __init__(self, source: "TicketLifecycle", target: "TicketLifecycle") -> None:
        super().__init__(f"Transition {source.value} -> {target.value} is not allowed")
        self.source = source
        self.target = target


class PaymentInitiationFailed(TicketingError):
    """The gateway rejected or could not be reached; the ticket is marked failed."""

    code = ErrorCode.PAYMENT_INITIATION_FAILED

    def __init__(self, ticket_id: str, reason: str) -> None:
        super().__init__("Payment failed, please retry")
        self.ticket_id = ticket_id
        self.reason = reason


class PaymentTimeout(TicketingError):
    """
    No terminal payment state yet. Not a failure.

    attempts: Gateway polls spent, when the poll budget ran out
    waited_seconds: Length of the caller's wait, when a bounded wait ended first
    """

    code = ErrorCode.PAYMENT_TIMEOUT

    def __init__(
        self,
        ticket_id: str,
        attempts: Optional[int] = None,
        waited_seconds: Optional[float] = None,
    ) -> None:
        super().__init__("Payment may still be processing")
        self.ticket_id = ticket_id
        self.attempts = attempts
        self.waited_seconds = waited_seconds


class Unauthorized(TicketingError):
    code = ErrorCode.UNAUTHORIZED

    def __init__(self, message: str = "Staff access required") -> None:
        super().__init__(message)


__all__ = [
    "ErrorCode",
    "TicketingError",
    "ValidationError",
    "EventNotFound",
    "InventoryErrorReason",
    "InventoryError",
    "PromoErrorReason",
    "PromoError",
    "DuplicateTicketId",
    "TicketNotFound",
    "StateConflict",
    "IllegalTransition",
    "PaymentInitiationFailed",
    "PaymentTimeout",
    "Unauthorized",
]
