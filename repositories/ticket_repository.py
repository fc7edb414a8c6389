"""
Ticket repository (persistence).

The `tickets` table keeps the column names of the original schema
(`mpesa_checkout_request_id`, `qr_code`, ...). This module maps them to Ticket
fields and folds `payment_status` + `status` into a TicketLifecycle.

Updates are conditional: the UPDATE filters on the lifecycle columns the
caller expects, so of two concurrent writers only one matches a row.
"""

from __future__ import annotations

from dataclasses import fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from postgrest.exceptions import APIError
from supabase import Client  # type: ignore[import-not-found]

from domain.errors import DuplicateTicketId, StateConflict, TicketNotFound
from domain.ticket import Ticket, TicketLifecycle
from repositories._timestamps import parse_optional_utc, parse_utc_datetime, to_iso_utc
from repositories.interfaces import TicketRepository

_TICKETS_TABLE: str = "tickets"
_UNIQUE_VIOLATION = "23505"

# Ticket field -> column, where they differ.
_COLUMNS: Dict[str, str] = {
    "qr_token": "qr_code",
    "payment_phone": "mpesa_phone_number",
    "checkout_request_id": "mpesa_checkout_request_id",
    "merchant_request_id": "mpesa_merchant_request_id",
    "transaction_id": "mpesa_transaction_id",
    "failure_reason": "payment_failure_reason",
    "transferred_to": "transferred_to_email",
}


def _to_column_value(name: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_iso_utc(value, name=name)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _to_payload(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate Ticket field changes into a column payload."""

    payload: Dict[str, Any] = {}
    for name, value in changes.items():
        if name == "lifecycle":
            lifecycle = TicketLifecycle(value)
            payload["payment_status"] = lifecycle.payment_status.value
            payload["status"] = lifecycle.status.value
            payload["checked_in"] = lifecycle is TicketLifecycle.CHECKED_IN
            continue
        payload[_COLUMNS.get(name, name)] = _to_column_value(name, value)
    return payload


def _ticket_to_payload(ticket: Ticket) -> Dict[str, Any]:
    return _to_payload({field.name: getattr(ticket, field.name) for field in fields(ticket)})


def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
    """Convert a Supabase row into a Ticket."""

    def col(name: str) -> Any:
        return row.get(_COLUMNS.get(name, name))

    return Ticket(
        ticket_id=str(row["ticket_id"]),
        event_id=str(row["event_id"]),
        buyer_name=str(row["buyer_name"]),
        buyer_email=str(row.get("buyer_email") or ""),
        buyer_phone=str(row.get("buyer_phone") or ""),
        quantity=int(row.get("quantity") or 1),
        total_amount=Decimal(str(row.get("total_amount") or "0")),
        lifecycle=TicketLifecycle.from_columns(row["payment_status"], row.get("status")),
        qr_token=str(col("qr_token") or ""),
        created_at=parse_utc_datetime(row["created_at"]),
        user_id=row.get("user_id"),
        promo_code=row.get("promo_code"),
        discount_applied=Decimal(str(row.get("discount_applied") or "0.00")),
        payment_phone=col("payment_phone"),
        checkout_request_id=col("checkout_request_id"),
        merchant_request_id=col("merchant_request_id"),
        transaction_id=col("transaction_id"),
        receipt_number=row.get("receipt_number"),
        failure_reason=col("failure_reason"),
        checked_in_at=parse_optional_utc(row.get("checked_in_at")),
        transfer_token=row.get("transfer_token"),
        transferred_to=col("transferred_to"),
        transferred_at=parse_optional_utc(row.get("transferred_at")),
        revoked_at=parse_optional_utc(row.get("revoked_at")),
    )


class SupabaseTicketRepository(TicketRepository):
    def __init__(self, client: Client) -> None:
        self._client = client

    def _select_one(self, column: str, value: str) -> Optional[Ticket]:
        response = (
            self._client.table(_TICKETS_TABLE)
            .select("*")
            .eq(column, value)
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch ticket: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_ticket(rows[0])

    def create(self, ticket: Ticket) -> Ticket:
        # Enforce uniqueness proactively to provide a clean, domain-friendly error.
        if self._select_one("ticket_id", ticket.ticket_id) is not None:
            raise DuplicateTicketId(ticket.ticket_id)

        try:
            response = self._client.table(_TICKETS_TABLE).insert(_ticket_to_payload(ticket)).execute()
        except APIError as e:
            # The unique index on ticket_id closes the window between check and insert.
            if str(getattr(e, "code", None)) == _UNIQUE_VIOLATION:
                raise DuplicateTicketId(ticket.ticket_id) from None
            raise RuntimeError(f"Failed to create ticket: {e}") from e

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to create ticket: {error}")
        return ticket

    def get(self, ticket_id: str) -> Ticket:
        ticket = self._select_one("ticket_id", ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def find_by_checkout_request_id(self, checkout_request_id: str) -> Optional[Ticket]:
        return self._select_one(_COLUMNS["checkout_request_id"], checkout_request_id)

    def update(self, ticket_id: str, expected: TicketLifecycle, changes: Mapping[str, Any]) -> Ticket:
        response = (
            self._client.table(_TICKETS_TABLE)
            .update(_to_payload(changes))
            .eq("ticket_id", ticket_id)
            .eq("payment_status", expected.payment_status.value)
            .eq("status", expected.status.value)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to update ticket: {error}")

        updated_rows = getattr(response, "data", None) or []
        if updated_rows:
            return _row_to_ticket(updated_rows[0])

        # Either no row exists, or another writer moved it first.
        current = self.get(ticket_id)
        raise StateConflict(ticket_id, expected, current.lifecycle)

    def list_pending(self, created_before: datetime) -> List[Ticket]:
        response = (
            self._client.table(_TICKETS_TABLE)
            .select("*")
            .eq("payment_status", TicketLifecycle.PENDING_PAYMENT.payment_status.value)
            .lt("created_at", to_iso_utc(created_before, name="created_before"))
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list pending tickets: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_ticket(row) for row in rows]


__all__ = ["SupabaseTicketRepository"]
