"""
Tests for the ticket record store and the Supabase repositories.

Covers contract rules:
- create() rejects a duplicate business key.
- get() raises TicketNotFound.
- update() is conditional on the expected lifecycle; of many concurrent
  writers expecting the same state exactly one succeeds.
- Supabase rows map to and from Ticket fields (column renames, lifecycle
  folding, UTC timestamps) and conditional updates filter on the expected state.

The Supabase client is replaced by a MagicMock query builder.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from types import SimpleNamespace
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from conftest import NOW, make_ticket
from domain.errors import DuplicateTicketId, StateConflict, TicketNotFound
from domain.role import Role
from domain.ticket import TicketLifecycle
from repositories.event_repository import SupabaseEventRepository
from repositories.in_memory import InMemoryTicketRepository
from repositories.promo_repository import SupabasePromoCodeRepository
from repositories.role_repository import SupabaseRoleLookup
from repositories.ticket_repository import SupabaseTicketRepository


def _response(data: Any) -> SimpleNamespace:
    return SimpleNamespace(data=data, error=None)


def _mock_client() -> MagicMock:
    client = MagicMock()
    query = client.table.return_value
    for method in ("select", "eq", "lt", "limit", "update", "insert"):
        getattr(query, method).return_value = query
    return client


def _ticket_row(**overrides: Any) -> Dict[str, Any]:
    row = {
        "ticket_id": "TKT-0000000000000001",
        "event_id": "evt-1",
        "buyer_name": "Wanjiru Kamau",
        "buyer_email": "wanjiru@example.com",
        "buyer_phone": "0712345678",
        "quantity": 2,
        "total_amount": "2000.00",
        "payment_status": "pending",
        "status": "valid",
        "checked_in": False,
        "qr_code": "TKT-0000000000000001-evt-1-abc",
        "created_at": "2025-06-01T12:00:00Z",
        "mpesa_checkout_request_id": "ws_CO_0001",
        "mpesa_transaction_id": None,
    }
    row.update(overrides)
    return row


# ----------------------------------------------------------------------------
# In-memory store
# ----------------------------------------------------------------------------


def test_in_memory_create_rejects_duplicate() -> None:
    """Verify the business key is unique."""

    store = InMemoryTicketRepository()
    store.create(make_ticket())

    with pytest.raises(DuplicateTicketId):
        store.create(make_ticket())


def test_in_memory_get_missing() -> None:
    """Verify get() of an unknown id raises TicketNotFound."""

    with pytest.raises(TicketNotFound):
        InMemoryTicketRepository().get("TKT-MISSING")


def test_in_memory_update_conflict_reports_actual_state() -> None:
    """Verify a stale expected state raises StateConflict with the stored state."""

    store = InMemoryTicketRepository()
    store.create(make_ticket(lifecycle=TicketLifecycle.VALID))

    with pytest.raises(StateConflict) as exc:
        store.update("TKT-0000000000000001", TicketLifecycle.PENDING_PAYMENT, {"lifecycle": TicketLifecycle.PAYMENT_FAILED})
    assert exc.value.actual is TicketLifecycle.VALID


def test_in_memory_concurrent_updates_single_winner() -> None:
    """Verify only one of many concurrent VALID -> CHECKED_IN writers succeeds."""

    store = InMemoryTicketRepository()
    store.create(make_ticket(lifecycle=TicketLifecycle.VALID))

    def check_in(_: int) -> bool:
        try:
            store.update(
                "TKT-0000000000000001",
                TicketLifecycle.VALID,
                {"lifecycle": TicketLifecycle.CHECKED_IN, "checked_in_at": NOW},
            )
            return True
        except StateConflict:
            return False

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(check_in, range(16)))

    assert results.count(True) == 1
    assert store.get("TKT-0000000000000001").lifecycle is TicketLifecycle.CHECKED_IN


def test_in_memory_list_pending_filters_by_age() -> None:
    """Verify only pending tickets created before the cutoff are listed."""

    store = InMemoryTicketRepository()
    store.create(make_ticket("TKT-OLD", created_at=NOW - timedelta(minutes=30)))
    store.create(make_ticket("TKT-NEW", created_at=NOW))
    store.create(make_ticket("TKT-DONE", created_at=NOW - timedelta(hours=1), lifecycle=TicketLifecycle.VALID))

    pending = store.list_pending(NOW - timedelta(minutes=10))

    assert [ticket.ticket_id for ticket in pending] == ["TKT-OLD"]


# ----------------------------------------------------------------------------
# Supabase tickets
# ----------------------------------------------------------------------------


def test_supabase_row_to_ticket_mapping() -> None:
    """Verify column names, lifecycle folding and UTC parsing when reading a row."""

    client = _mock_client()
    client.table.return_value.execute.return_value = _response(
        [_ticket_row(payment_status="completed", status="checked_in", checked_in_at="2025-06-02T18:30:00+00:00")]
    )

    ticket = SupabaseTicketRepository(client).get("TKT-0000000000000001")

    assert ticket.lifecycle is TicketLifecycle.CHECKED_IN
    assert ticket.qr_token == "TKT-0000000000000001-evt-1-abc"
    assert ticket.checkout_request_id == "ws_CO_0001"
    assert ticket.created_at == NOW
    assert ticket.checked_in_at.tzinfo is not None
    client.table.assert_called_with("tickets")


def test_supabase_get_missing_raises() -> None:
    """Verify an empty result is TicketNotFound."""

    client = _mock_client()
    client.table.return_value.execute.return_value = _response([])

    with pytest.raises(TicketNotFound):
        SupabaseTicketRepository(client).get("TKT-MISSING")


def test_supabase_create_writes_original_columns() -> None:
    """Verify the insert payload uses the table's column names and both status columns."""

    client = _mock_client()
    query = client.table.return_value
    query.execute.side_effect = [_response([]), _response([{}])]

    SupabaseTicketRepository(client).create(make_ticket(payment_phone="254712345678"))

    payload = query.insert.call_args[0][0]
    assert payload["payment_status"] == "pending"
    assert payload["status"] == "valid"
    assert payload["checked_in"] is False
    assert payload["mpesa_phone_number"] == "254712345678"
    assert payload["qr_code"].startswith("TKT-0000000000000001-evt-1-")
    assert payload["total_amount"] == "1000.00"
    assert payload["created_at"] == "2025-06-01T12:00:00+00:00"


def test_supabase_create_existing_id_is_duplicate() -> None:
    """Verify an existing row with the same ticket_id is DuplicateTicketId."""

    client = _mock_client()
    client.table.return_value.execute.return_value = _response([_ticket_row()])

    with pytest.raises(DuplicateTicketId):
        SupabaseTicketRepository(client).create(make_ticket())


def test_supabase_create_unique_violation_is_duplicate() -> None:
    """Verify a unique-index violation on insert is DuplicateTicketId."""

    client = _mock_client()
    client.table.return_value.execute.side_effect = [
        _response([]),
        APIError({"code": "23505", "message": "duplicate key value violates unique constraint"}),
    ]

    with pytest.raises(DuplicateTicketId):
        SupabaseTicketRepository(client).create(make_ticket())


def test_supabase_update_filters_on_expected_state() -> None:
    """Verify the UPDATE is conditional on ticket_id and both status columns."""

    client = _mock_client()
    query = client.table.return_value
    query.execute.return_value = _response(
        [_ticket_row(payment_status="completed", mpesa_transaction_id="QGH7XK2LPA")]
    )

    ticket = SupabaseTicketRepository(client).update(
        "TKT-0000000000000001",
        TicketLifecycle.PENDING_PAYMENT,
        {"lifecycle": TicketLifecycle.VALID, "transaction_id": "QGH7XK2LPA"},
    )

    assert ticket.lifecycle is TicketLifecycle.VALID
    assert query.update.call_args[0][0] == {
        "payment_status": "completed",
        "status": "valid",
        "checked_in": False,
        "mpesa_transaction_id": "QGH7XK2LPA",
    }
    filters = [c.args for c in query.eq.call_args_list]
    assert ("ticket_id", "TKT-0000000000000001") in filters
    assert ("payment_status", "pending") in filters
    assert ("status", "valid") in filters


def test_supabase_update_no_match_is_state_conflict() -> None:
    """Verify an UPDATE matching no row re-reads the ticket and reports its actual state."""

    client = _mock_client()
    client.table.return_value.execute.side_effect = [
        _response([]),
        _response([_ticket_row(payment_status="failed")]),
    ]

    with pytest.raises(StateConflict) as exc:
        SupabaseTicketRepository(client).update(
            "TKT-0000000000000001",
            TicketLifecycle.PENDING_PAYMENT,
            {"lifecycle": TicketLifecycle.VALID},
        )
    assert exc.value.actual is TicketLifecycle.PAYMENT_FAILED


def test_supabase_store_error_raises_runtime_error() -> None:
    """Verify a response carrying an error becomes RuntimeError."""

    client = _mock_client()
    client.table.return_value.execute.return_value = SimpleNamespace(data=None, error="boom")

    with pytest.raises(RuntimeError):
        SupabaseTicketRepository(client).get("TKT-0000000000000001")


# ----------------------------------------------------------------------------
# Supabase events, promo codes, roles
# ----------------------------------------------------------------------------


def test_supabase_event_reservation_uses_rpc() -> None:
    """Verify reservations go through the atomic server-side function."""

    client = MagicMock()
    client.rpc.return_value.execute.return_value = _response(False)

    reserved = SupabaseEventRepository(client).reserve_tickets("evt-1", 2)

    assert reserved is False
    client.rpc.assert_called_once_with("reserve_event_tickets", {"p_event_id": "evt-1", "p_quantity": 2})


def test_supabase_event_row_mapping() -> None:
    """Verify the event date is combined from date and time columns."""

    client = _mock_client()
    client.table.return_value.execute.return_value = _response(
        [
            {
                "id": "evt-1",
                "title": "Nairobi Jazz Night",
                "price": 1500,
                "ticket_type": "fixed",
                "max_tickets": 100,
                "tickets_sold": 40,
                "tickets_reserved": 5,
                "date": "2025-07-01",
                "time": "19:30",
            }
        ]
    )

    event = SupabaseEventRepository(client).get_event("evt-1")

    assert event.remaining == 55
    assert event.event_date.hour == 19 and event.event_date.minute == 30


def test_supabase_promo_record_use_uses_rpc() -> None:
    """Verify promo uses are claimed through the atomic server-side function."""

    client = MagicMock()
    client.rpc.return_value.execute.return_value = _response(True)

    assert SupabasePromoCodeRepository(client).record_use("EARLYBIRD", "evt-1") is True
    client.rpc.assert_called_once_with("record_promo_use", {"p_code": "EARLYBIRD", "p_event_id": "evt-1"})


def test_supabase_role_lookup_strongest_role_wins() -> None:
    """Verify a user holding several roles resolves to the strongest one."""

    client = _mock_client()
    client.table.return_value.execute.return_value = _response([{"role": "user"}, {"role": "staff"}])

    assert SupabaseRoleLookup(client).get_role("user-1") is Role.STAFF


def test_supabase_role_lookup_no_role() -> None:
    """Verify a user without rows has no role."""

    client = _mock_client()
    client.table.return_value.execute.return_value = _response([])

    assert SupabaseRoleLookup(client).get_role("user-1") is None
