"""
In-memory stores for local runs (`TICKETING_STORE=memory`) and tests.

Each store serialises its mutations with a lock so that the conditional
increments and conditional updates behave like the single-statement
operations of the Supabase implementation, including under threads.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from domain.errors import DuplicateTicketId, StateConflict, TicketNotFound
from domain.event import Event, TicketType
from domain.promo import PromoCode
from domain.role import Role
from domain.ticket import Ticket, TicketLifecycle
from repositories.interfaces import (
    EventRepository,
    PromoCodeRepository,
    RoleLookup,
    TicketRepository,
)


class InMemoryEventRepository(EventRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: Dict[str, Event] = {}

    def add(self, event: Event) -> None:
        with self._lock:
            self._events[event.event_id] = event

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            return self._events.get(event_id)

    def reserve_tickets(self, event_id: str, quantity: int) -> bool:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                return False
            if event.ticket_type is TicketType.FIXED and event.max_tickets is not None:
                if event.tickets_sold + event.tickets_reserved + quantity > event.max_tickets:
                    return False
            self._events[event_id] = replace(event, tickets_reserved=event.tickets_reserved + quantity)
            return True

    def confirm_sale(self, event_id: str, quantity: int) -> None:
        with self._lock:
            event = self._events[event_id]
            self._events[event_id] = replace(
                event,
                tickets_sold=event.tickets_sold + quantity,
                tickets_reserved=max(0, event.tickets_reserved - quantity),
            )

    def release_reservation(self, event_id: str, quantity: int) -> None:
        with self._lock:
            event = self._events[event_id]
            self._events[event_id] = replace(
                event, tickets_reserved=max(0, event.tickets_reserved - quantity)
            )


class InMemoryPromoCodeRepository(PromoCodeRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._codes: Dict[Tuple[str, str], PromoCode] = {}

    def add(self, promo: PromoCode) -> None:
        with self._lock:
            self._codes[(promo.code, promo.event_id)] = promo

    def get_promo_code(self, code: str, event_id: str) -> Optional[PromoCode]:
        with self._lock:
            return self._codes.get((code, event_id))

    def record_use(self, code: str, event_id: str) -> bool:
        with self._lock:
            promo = self._codes.get((code, event_id))
            if promo is None or promo.limit_reached:
                return False
            self._codes[(code, event_id)] = replace(promo, current_uses=promo.current_uses + 1)
            return True

    def release_use(self, code: str, event_id: str) -> None:
        with self._lock:
            promo = self._codes.get((code, event_id))
            if promo is not None:
                self._codes[(code, event_id)] = replace(
                    promo, current_uses=max(0, promo.current_uses - 1)
                )


class InMemoryTicketRepository(TicketRepository):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tickets: Dict[str, Ticket] = {}

    def create(self, ticket: Ticket) -> Ticket:
        with self._lock:
            if ticket.ticket_id in self._tickets:
                raise DuplicateTicketId(ticket.ticket_id)
            self._tickets[ticket.ticket_id] = ticket
            return ticket

    def get(self, ticket_id: str) -> Ticket:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def find_by_checkout_request_id(self, checkout_request_id: str) -> Optional[Ticket]:
        with self._lock:
            for ticket in self._tickets.values():
                if ticket.checkout_request_id == checkout_request_id:
                    return ticket
        return None

    def update(self, ticket_id: str, expected: TicketLifecycle, changes: Mapping[str, Any]) -> Ticket:
        with self._lock:
            current = self._tickets.get(ticket_id)
            if current is None:
                raise TicketNotFound(ticket_id)
            if current.lifecycle is not expected:
                raise StateConflict(ticket_id, expected, current.lifecycle)
            updated = replace(current, **dict(changes))
            self._tickets[ticket_id] = updated
            return updated

    def list_pending(self, created_before: datetime) -> List[Ticket]:
        with self._lock:
            return [
                ticket
                for ticket in self._tickets.values()
                if ticket.lifecycle is TicketLifecycle.PENDING_PAYMENT and ticket.created_at < created_before
            ]

    def all(self) -> List[Ticket]:
        with self._lock:
            return list(self._tickets.values())


class InMemoryRoleLookup(RoleLookup):
    def __init__(self, roles: Optional[Mapping[str, Role]] = None) -> None:
        self._lock = threading.Lock()
        self._roles: Dict[str, Role] = dict(roles or {})

    def set_role(self, user_id: str, role: Optional[Role]) -> None:
        with self._lock:
            if role is None:
                self._roles.pop(user_id, None)
            else:
                self._roles[user_id] = role

    def get_role(self, user_id: str) -> Optional[Role]:
        with self._lock:
            return self._roles.get(user_id)


__all__ = [
    "InMemoryEventRepository",
    "InMemoryPromoCodeRepository",
    "InMemoryTicketRepository",
    "InMemoryRoleLookup",
]
