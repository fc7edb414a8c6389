"""
Event repository (persistence).

Reads the price and inventory fields of the `events` table and changes the
ticket counters through server-side functions, so that the capacity check
and the increment happen in one statement:

    reserve_event_tickets(p_event_id, p_quantity) -> boolean
    confirm_event_sale(p_event_id, p_quantity)
    release_event_reservation(p_event_id, p_quantity)

(see supabase/migrations for their definitions).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from supabase import Client  # type: ignore[import-not-found]

from domain.event import Event, TicketType
from repositories._timestamps import parse_optional_utc, parse_utc_datetime
from repositories.interfaces import EventRepository

_EVENTS_TABLE: str = "events"


def _event_date(row: Mapping[str, Any]) -> Optional[datetime]:
    day = row.get("date")
    if not day:
        return None
    return parse_utc_datetime(f"{day}T{row.get('time') or '00:00'}")


def _row_to_event(row: Mapping[str, Any]) -> Event:
    """Convert a Supabase row into an Event."""

    max_tickets = row.get("max_tickets")
    return Event(
        event_id=str(row["id"]),
        title=str(row["title"]),
        unit_price=Decimal(str(row["price"])),
        ticket_type=TicketType(row.get("ticket_type") or TicketType.OPEN.value),
        tickets_sold=int(row.get("tickets_sold") or 0),
        tickets_reserved=int(row.get("tickets_reserved") or 0),
        max_tickets=int(max_tickets) if max_tickets is not None else None,
        ticket_deadline=parse_optional_utc(row.get("ticket_deadline")),
        event_date=_event_date(row),
        creator_id=row.get("creator_id"),
    )


class SupabaseEventRepository(EventRepository):
    def __init__(self, client: Client) -> None:
        self._client = client

    def get_event(self, event_id: str) -> Optional[Event]:
        response = (
            self._client.table(_EVENTS_TABLE)
            .select("*")
            .eq("id", event_id)
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch event: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_event(rows[0])

    def _call(self, function: str, event_id: str, quantity: int) -> Any:
        response = self._client.rpc(
            function, {"p_event_id": event_id, "p_quantity": quantity}
        ).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"{function} failed: {error}")
        return getattr(response, "data", None)

    def reserve_tickets(self, event_id: str, quantity: int) -> bool:
        return bool(self._call("reserve_event_tickets", event_id, quantity))

    def confirm_sale(self, event_id: str, quantity: int) -> None:
        self._call("confirm_event_sale", event_id, quantity)

    def release_reservation(self, event_id: str, quantity: int) -> None:
        self._call("release_event_reservation", event_id, quantity)


__all__ = ["SupabaseEventRepository"]
