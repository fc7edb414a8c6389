"""
Tests for `services/reconciliation_service.py` (ReconciliationScheduler).

Covers contract rules:
- One poll task per ticket; scheduling twice reuses the running task.
- A bounded wait that ends first is a PaymentTimeout carrying the wait length,
  and polling carries on.
- Settled tickets are returned without starting a poll.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import fixed_clock, make_ticket
from domain.errors import PaymentTimeout
from domain.ticket import TicketLifecycle
from services.inventory_service import InventoryService
from services.payment_service import PaymentOrchestrator
from services.promo_service import PromoCodeLedger
from services.reconciliation_service import ReconciliationScheduler
from services.ticket_state_machine import TicketStateMachine

TICKET_ID = "TKT-0000000000000001"


async def _never_wake(seconds: float) -> None:
    await asyncio.Event().wait()


@pytest.fixture
def scheduler(events, promo_codes, tickets, gateway, poll_policy) -> ReconciliationScheduler:
    ledger = PromoCodeLedger(promo_codes, clock=fixed_clock)
    orchestrator = PaymentOrchestrator(
        tickets,
        TicketStateMachine(tickets),
        InventoryService(events, ledger, clock=fixed_clock),
        ledger,
        gateway,
        poll_policy=poll_policy,
        clock=fixed_clock,
        sleep=_never_wake,
    )
    return ReconciliationScheduler(orchestrator)


@pytest.mark.asyncio
async def test_wait_timeout_reports_wait_length(scheduler, tickets) -> None:
    """Verify an expired wait says how long it waited, not a poll attempt count."""

    tickets.create(make_ticket(checkout_request_id="ws_CO_0001"))

    with pytest.raises(PaymentTimeout) as exc:
        await scheduler.wait(TICKET_ID, timeout=0.05)

    assert exc.value.waited_seconds == 0.05
    assert exc.value.attempts is None
    assert scheduler.is_polling(TICKET_ID)
    await scheduler.shutdown()
    assert scheduler.pending_count() == 0


@pytest.mark.asyncio
async def test_wait_returns_settled_ticket_without_polling(scheduler, tickets) -> None:
    tickets.create(make_ticket(lifecycle=TicketLifecycle.VALID))

    ticket = await scheduler.wait(TICKET_ID, timeout=0.05)

    assert ticket.lifecycle is TicketLifecycle.VALID
    assert not scheduler.is_polling(TICKET_ID)


@pytest.mark.asyncio
async def test_schedule_reuses_running_task(scheduler, tickets) -> None:
    tickets.create(make_ticket(checkout_request_id="ws_CO_0001"))

    first = scheduler.schedule(TICKET_ID)
    second = scheduler.schedule(TICKET_ID)

    assert first is second
    assert scheduler.pending_count() == 1
    await scheduler.shutdown()
