"""
Domain: Tickets and their lifecycle.

A ticket is stored with two columns, `payment_status` and `status`, but only
six combinations are reachable. The domain folds them into a single
TicketLifecycle so that an illegal pair (e.g. pending + checked_in) cannot be
represented:

    PENDING_PAYMENT  (pending,   valid)        initial
    PAYMENT_FAILED   (failed,    valid)        terminal
    VALID            (completed, valid)
    CHECKED_IN       (completed, checked_in)   terminal
    TRANSFERRED      (completed, transferred)  terminal
    REVOKED          (completed, revoked)      terminal

Allowed edges:

    PENDING_PAYMENT -> VALID | PAYMENT_FAILED
    VALID           -> CHECKED_IN | TRANSFERRED | REVOKED

A ticket row is created once and never deleted; only lifecycle and the
fields that accompany a transition change.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from .time import require_utc_timestamp

SIMULATED_TRANSACTION_PREFIX = "SIMULATED-"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TicketStatus(str, Enum):
    VALID = "valid"
    CHECKED_IN = "checked_in"
    TRANSFERRED = "transferred"
    REVOKED = "revoked"


class TicketLifecycle(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_FAILED = "payment_failed"
    VALID = "valid"
    CHECKED_IN = "checked_in"
    TRANSFERRED = "transferred"
    REVOKED = "revoked"

    @property
    def payment_status(self) -> PaymentStatus:
        return _COLUMNS[self][0]

    @property
    def status(self) -> TicketStatus:
        return _COLUMNS[self][1]

    @property
    def is_payment_terminal(self) -> bool:
        return self is not TicketLifecycle.PENDING_PAYMENT

    def can_transition_to(self, target: "TicketLifecycle") -> bool:
        return target in _EDGES.get(self, frozenset())

    @staticmethod
    def from_columns(payment_status: str, status: Optional[str]) -> "TicketLifecycle":
        """Fold the stored column pair into a lifecycle. Unreachable pairs raise ValueError."""

        key = (PaymentStatus(payment_status), TicketStatus(status or TicketStatus.VALID.value))
        try:
            return _BY_COLUMNS[key]
        except KeyError:
            raise ValueError(f"Unreachable ticket state: payment_status={key[0].value}, status={key[1].value}") from None


_COLUMNS: Dict[TicketLifecycle, Tuple[PaymentStatus, TicketStatus]] = {
    TicketLifecycle.PENDING_PAYMENT: (PaymentStatus.PENDING, TicketStatus.VALID),
    TicketLifecycle.PAYMENT_FAILED: (PaymentStatus.FAILED, TicketStatus.VALID),
    TicketLifecycle.VALID: (PaymentStatus.COMPLETED, TicketStatus.VALID),
    TicketLifecycle.CHECKED_IN: (PaymentStatus.COMPLETED, TicketStatus.CHECKED_IN),
    TicketLifecycle.TRANSFERRED: (PaymentStatus.COMPLETED, TicketStatus.TRANSFERRED),
    TicketLifecycle.REVOKED: (PaymentStatus.COMPLETED, TicketStatus.REVOKED),
}

_BY_COLUMNS: Dict[Tuple[PaymentStatus, TicketStatus], TicketLifecycle] = {
    columns: lifecycle for lifecycle, columns in _COLUMNS.items()
}

_EDGES: Dict[TicketLifecycle, FrozenSet[TicketLifecycle]] = {
    TicketLifecycle.PENDING_PAYMENT: frozenset({TicketLifecycle.VALID, TicketLifecycle.PAYMENT_FAILED}),
    TicketLifecycle.VALID: frozenset(
        {TicketLifecycle.CHECKED_IN, TicketLifecycle.TRANSFERRED, TicketLifecycle.REVOKED}
    ),
}


@dataclass(frozen=True, slots=True)
class Ticket:
    """
    One purchase of `quantity` admissions to an event.

    `ticket_id` is the business key shown to buyers and staff. `qr_token` is
    the scan payload; it embeds the ticket id but carries a keyed nonce that
    cannot be derived from the id alone.
    """

    ticket_id: str
    event_id: str
    buyer_name: str
    buyer_email: str
    buyer_phone: str
    quantity: int
    total_amount: Decimal
    lifecycle: TicketLifecycle
    qr_token: str
    created_at: datetime

    user_id: Optional[str] = None
    promo_code: Optional[str] = None
    discount_applied: Decimal = Decimal("0.00")

    # Gateway correlation
    payment_phone: Optional[str] = None
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    transaction_id: Optional[str] = None
    receipt_number: Optional[str] = None
    failure_reason: Optional[str] = None

    checked_in_at: Optional[datetime] = None

    transfer_token: Optional[str] = None
    transferred_to: Optional[str] = None
    transferred_at: Optional[datetime] = None

    revoked_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        for name in ("checked_in_at", "transferred_at", "revoked_at"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)
        if self.quantity < 1:
            raise ValueError("quantity must be >= 1")
        if self.total_amount < 0:
            raise ValueError("total_amount must be >= 0")

    @property
    def payment_status(self) -> PaymentStatus:
        return self.lifecycle.payment_status

    @property
    def status(self) -> TicketStatus:
        return self.lifecycle.status

    @property
    def checked_in(self) -> bool:
        return self.lifecycle is TicketLifecycle.CHECKED_IN

    @property
    def is_simulated(self) -> bool:
        """True when the payment was settled by the simulated gateway, not a real charge."""

        return bool(self.transaction_id and self.transaction_id.startswith(SIMULATED_TRANSACTION_PREFIX))


__all__ = [
    "SIMULATED_TRANSACTION_PREFIX",
    "PaymentStatus",
    "TicketStatus",
    "TicketLifecycle",
    "Ticket",
]
