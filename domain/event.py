"""
Domain: Events and their sellable inventory.

Rules implemented here:
- An event is either OPEN (no capacity, optional sales deadline) or FIXED
  (capacity `max_tickets`, required).
- For OPEN events the sales deadline, when set, must precede the event date.
- `tickets_sold` only counts completed sales and never decreases.
- `tickets_reserved` counts quantity held by purchases whose payment is still
  pending. For FIXED events sold + reserved never exceeds max_tickets.

Availability is checked in a fixed order: quantity, deadline, capacity.
The first failing rule wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from .errors import InventoryError, InventoryErrorReason
from .time import require_utc_timestamp

MIN_QUANTITY_PER_PURCHASE = 1
MAX_QUANTITY_PER_PURCHASE = 10


class TicketType(str, Enum):
    OPEN = "open"
    FIXED = "fixed"


@dataclass(frozen=True, slots=True)
class Event:
    """Read model of an event as far as ticket sales are concerned."""

    event_id: str
    title: str
    unit_price: Decimal
    ticket_type: TicketType
    tickets_sold: int = 0
    tickets_reserved: int = 0
    max_tickets: Optional[int] = None
    ticket_deadline: Optional[datetime] = None
    event_date: Optional[datetime] = None
    creator_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.unit_price < 0:
            raise ValueError("unit_price must be >= 0")
        if self.tickets_sold < 0 or self.tickets_reserved < 0:
            raise ValueError("ticket counters must be >= 0")
        if self.ticket_type is TicketType.FIXED and self.max_tickets is None:
            raise ValueError("max_tickets is required for fixed events")
        if self.ticket_deadline is not None:
            require_utc_timestamp("ticket_deadline", self.ticket_deadline)
        if self.event_date is not None:
            require_utc_timestamp("event_date", self.event_date)
        if (
            self.ticket_type is TicketType.OPEN
            and self.ticket_deadline is not None
            and self.event_date is not None
            and self.ticket_deadline >= self.event_date
        ):
            raise ValueError("ticket_deadline must precede the event date")

    @property
    def remaining(self) -> Optional[int]:
        """Seats still purchasable, or None for open events."""

        if self.ticket_type is not TicketType.FIXED or self.max_tickets is None:
            return None
        return max(0, self.max_tickets - self.tickets_sold - self.tickets_reserved)


def validate_quantity(quantity: int) -> None:
    if not MIN_QUANTITY_PER_PURCHASE <= quantity <= MAX_QUANTITY_PER_PURCHASE:
        raise InventoryError(
            InventoryErrorReason.INVALID_QUANTITY,
            f"Quantity must be between {MIN_QUANTITY_PER_PURCHASE} and {MAX_QUANTITY_PER_PURCHASE}",
        )


def check_availability(event: Event, quantity: int, now: datetime) -> None:
    """
    Raise InventoryError if `quantity` tickets cannot be sold for `event` at `now`.

    Pure check against a snapshot. The authoritative capacity check is the
    atomic reservation performed by the event repository.
    """

    require_utc_timestamp("now", now)
    validate_quantity(quantity)

    if (
        event.ticket_type is TicketType.OPEN
        and event.ticket_deadline is not None
        and now > event.ticket_deadline
    ):
        raise InventoryError(
            InventoryErrorReason.DEADLINE_PASSED,
            "Ticket sales for this event have closed",
        )

    remaining = event.remaining
    if remaining is not None and remaining < quantity:
        raise capacity_error(remaining, quantity)


def capacity_error(remaining: int, quantity: int) -> InventoryError:
    if remaining <= 0:
        return InventoryError(InventoryErrorReason.SOLD_OUT, "This event is sold out", remaining=0)
    return InventoryError(
        InventoryErrorReason.INSUFFICIENT_REMAINING,
        f"Only {remaining} ticket(s) remaining, requested {quantity}",
        remaining=remaining,
    )


__all__ = [
    "MIN_QUANTITY_PER_PURCHASE",
    "MAX_QUANTITY_PER_PURCHASE",
    "TicketType",
    "Event",
    "validate_quantity",
    "check_availability",
    "capacity_error",
]
