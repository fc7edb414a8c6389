"""
Inventory and pricing for ticket purchases.

Key Features:
- Ordered availability checks (quantity, deadline, capacity) with typed errors
- Promo validation delegated to the promo ledger
- Atomic seat reservation; a lost race is reported with the fresh remaining count
- No writes happen while quoting
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from domain.errors import EventNotFound
from domain.event import Event, capacity_error, check_availability, validate_quantity
from domain.promo import PromoCode
from domain.time import Clock, utc_now
from repositories.interfaces import EventRepository
from services.pricing_service import PriceBreakdown, calculate_price
from services.promo_service import PromoCodeLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PurchaseQuote:
    """A priced, availability-checked purchase that has not reserved anything yet."""
    event: Event
    quantity: int
    price: PriceBreakdown
    promo: Optional[PromoCode] = None


class InventoryService:
    def __init__(
        self,
        events: EventRepository,
        promo_ledger: PromoCodeLedger,
        clock: Clock = utc_now,
    ) -> None:
        self._events = events
        self._promo_ledger = promo_ledger
        self._clock = clock

    def get_event(self, event_id: str) -> Event:
        event = self._events.get_event(event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event

    def quote(self, event_id: str, quantity: int, promo_code: Optional[str] = None) -> PurchaseQuote:
        """
        Check availability and price a purchase.

        Raises:
            InventoryError: InvalidQuantity, DeadlinePassed, SoldOut, InsufficientRemaining
            EventNotFound: Unknown event
            PromoError: Promo code rejected by the ledger
        """
        validate_quantity(quantity)
        event = self.get_event(event_id)
        check_availability(event, quantity, self._clock())

        promo = None
        if promo_code:
            promo = self._promo_ledger.validate(promo_code, event.event_id)

        return PurchaseQuote(
            event=event,
            quantity=quantity,
            price=calculate_price(event.unit_price, quantity, promo),
            promo=promo,
        )

    def reserve(self, quote: PurchaseQuote) -> None:
        """
        Hold the quoted seats. Raises SoldOut / InsufficientRemaining if
        another purchase took them since the quote was made.
        """
        event_id = quote.event.event_id
        if self._events.reserve_tickets(event_id, quote.quantity):
            return

        fresh = self.get_event(event_id)
        remaining = fresh.remaining if fresh.remaining is not None else 0
        logger.info(
            "Seat reservation lost to a concurrent purchase",
            extra={"event_id": event_id, "requested": quote.quantity, "remaining": remaining},
        )
        raise capacity_error(remaining, quote.quantity)

    def release(self, event_id: str, quantity: int) -> None:
        self._events.release_reservation(event_id, quantity)

    def confirm_sale(self, event_id: str, quantity: int) -> None:
        self._events.confirm_sale(event_id, quantity)


__all__ = ["PurchaseQuote", "InventoryService"]
