"""Store interfaces (repository pattern).

Services depend on these interfaces only. Each store has a Supabase
implementation and an in-memory one; both honour the same atomicity
contract:

- counter changes (event reservations, promo uses) are single conditional
  increments evaluated by the store, never a read followed by a write;
- ticket updates are conditional on the lifecycle the caller expects.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Mapping, Optional

from domain.event import Event
from domain.promo import PromoCode
from domain.role import Role
from domain.ticket import Ticket, TicketLifecycle


class EventRepository(ABC):
    @abstractmethod
    def get_event(self, event_id: str) -> Optional[Event]:
        """Return the event, or None if it does not exist."""
        ...

    @abstractmethod
    def reserve_tickets(self, event_id: str, quantity: int) -> bool:
        """
        Atomically hold `quantity` seats for a pending purchase.

        Returns False (and changes nothing) if a fixed-capacity event cannot
        fit the quantity.
        """
        ...

    @abstractmethod
    def confirm_sale(self, event_id: str, quantity: int) -> None:
        """Move `quantity` from reserved to sold (tickets_sold += quantity)."""
        ...

    @abstractmethod
    def release_reservation(self, event_id: str, quantity: int) -> None:
        """Give back `quantity` reserved seats after a failed payment."""
        ...


class PromoCodeRepository(ABC):
    @abstractmethod
    def get_promo_code(self, code: str, event_id: str) -> Optional[PromoCode]:
        """Return the code for this event (code already normalised), or None."""
        ...

    @abstractmethod
    def record_use(self, code: str, event_id: str) -> bool:
        """
        Atomically increment current_uses iff the code is under max_uses.

        Returns False when the limit was already reached.
        """
        ...

    @abstractmethod
    def release_use(self, code: str, event_id: str) -> None:
        """Decrement current_uses (never below zero)."""
        ...


class TicketRepository(ABC):
    @abstractmethod
    def create(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket. Raises DuplicateTicketId if the key exists."""
        ...

    @abstractmethod
    def get(self, ticket_id: str) -> Ticket:
        """Raises TicketNotFound."""
        ...

    @abstractmethod
    def find_by_checkout_request_id(self, checkout_request_id: str) -> Optional[Ticket]:
        ...

    @abstractmethod
    def update(self, ticket_id: str, expected: TicketLifecycle, changes: Mapping[str, Any]) -> Ticket:
        """
        Apply `changes` only if the stored lifecycle equals `expected`.

        `changes` uses Ticket field names; `lifecycle` may be among them.
        Raises TicketNotFound, or StateConflict carrying the actual lifecycle.
        """
        ...

    @abstractmethod
    def list_pending(self, created_before: datetime) -> List[Ticket]:
        """Tickets still awaiting payment that were created before the cutoff."""
        ...


class RoleLookup(ABC):
    @abstractmethod
    def get_role(self, user_id: str) -> Optional[Role]:
        """Current role of the user, or None. Must not be cached across requests."""
        ...


__all__ = ["EventRepository", "PromoCodeRepository", "TicketRepository", "RoleLookup"]
