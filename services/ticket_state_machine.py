"""
Ticket status state machine.

All lifecycle changes go through `transition`, which
1. refuses edges that TicketLifecycle does not allow, and
2. writes with the store's conditional update, expecting the prior state.

So two concurrent callers can never both move a ticket out of the same state.
The loser receives StateConflict with the state that actually won.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from domain.errors import IllegalTransition, StateConflict
from domain.scan_token import new_transfer_token, receipt_number_for
from domain.ticket import Ticket, TicketLifecycle
from repositories.interfaces import TicketRepository

logger = logging.getLogger(__name__)


class TicketStateMachine:
    def __init__(self, tickets: TicketRepository) -> None:
        self._tickets = tickets

    def transition(
        self,
        ticket_id: str,
        expected: TicketLifecycle,
        target: TicketLifecycle,
        **changes: Any,
    ) -> Ticket:
        if not expected.can_transition_to(target):
            raise IllegalTransition(expected, target)

        payload: Dict[str, Any] = dict(changes)
        payload["lifecycle"] = target
        try:
            ticket = self._tickets.update(ticket_id, expected, payload)
        except StateConflict as conflict:
            logger.info(
                "Ticket transition lost a race",
                extra={
                    "ticket_id": ticket_id,
                    "expected": expected.value,
                    "target": target.value,
                    "actual": conflict.actual.value,
                },
            )
            raise

        logger.info(
            "Ticket %s: %s -> %s", ticket_id, expected.value, target.value,
            extra={"ticket_id": ticket_id},
        )
        return ticket

    # Payment direction

    def complete_payment(self, ticket_id: str, transaction_id: Optional[str]) -> Ticket:
        return self.transition(
            ticket_id,
            TicketLifecycle.PENDING_PAYMENT,
            TicketLifecycle.VALID,
            transaction_id=transaction_id,
            receipt_number=receipt_number_for(ticket_id),
        )

    def fail_payment(self, ticket_id: str, reason: str) -> Ticket:
        return self.transition(
            ticket_id,
            TicketLifecycle.PENDING_PAYMENT,
            TicketLifecycle.PAYMENT_FAILED,
            failure_reason=reason,
        )

    # Admission direction

    def check_in(self, ticket_id: str, now: datetime) -> Ticket:
        return self.transition(
            ticket_id,
            TicketLifecycle.VALID,
            TicketLifecycle.CHECKED_IN,
            checked_in_at=now,
        )

    def transfer(self, ticket_id: str, recipient_email: str, now: datetime) -> Ticket:
        return self.transition(
            ticket_id,
            TicketLifecycle.VALID,
            TicketLifecycle.TRANSFERRED,
            transfer_token=new_transfer_token(),
            transferred_to=recipient_email,
            transferred_at=now,
        )

    def revoke(self, ticket_id: str, now: datetime) -> Ticket:
        return self.transition(
            ticket_id,
            TicketLifecycle.VALID,
            TicketLifecycle.REVOKED,
            revoked_at=now,
        )


__all__ = ["TicketStateMachine"]
