"""
Ticket transfer and revocation.

Both leave VALID and nothing else: a ticket that is unpaid, already used,
already transferred or revoked cannot be handed on or revoked again.
Revocation does not give seats or promo uses back.
"""

from __future__ import annotations

import logging
from typing import Optional

from domain.errors import StateConflict, TicketNotFound, Unauthorized, ValidationError
from domain.role import Caller
from domain.ticket import Ticket, TicketLifecycle
from domain.time import Clock, utc_now
from repositories.interfaces import TicketRepository
from services.ticket_state_machine import TicketStateMachine

logger = logging.getLogger(__name__)


def _same_email(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


class TicketTransferService:
    def __init__(
        self,
        tickets: TicketRepository,
        state_machine: TicketStateMachine,
        clock: Clock = utc_now,
    ) -> None:
        self._tickets = tickets
        self._state_machine = state_machine
        self._clock = clock

    def transfer(self, ticket_id: str, holder_email: str, recipient_email: str) -> Ticket:
        """
        Hand a valid ticket to someone else.

        Raises:
            ValidationError: Missing/invalid recipient, or recipient is the holder
            TicketNotFound: Unknown ticket, or holder_email is not the buyer's
            StateConflict: Ticket is not VALID
        """
        recipient = (recipient_email or "").strip()
        if not recipient or "@" not in recipient:
            raise ValidationError("A valid recipient email is required")
        if _same_email(holder_email or "", recipient):
            raise ValidationError("Cannot transfer ticket to yourself")

        ticket = self._tickets.get(ticket_id)
        if not _same_email(ticket.buyer_email, holder_email or ""):
            # Reported like an unknown id.
            raise TicketNotFound(ticket_id)

        self._require_valid(ticket)
        transferred = self._state_machine.transfer(ticket.ticket_id, recipient, self._clock())
        logger.info(
            "Ticket transferred",
            extra={"ticket_id": ticket_id, "transferred_to": recipient},
        )
        return transferred

    def revoke(self, caller: Optional[Caller], ticket_id: str) -> Ticket:
        """
        Revoke a valid ticket. Admin only.

        Raises:
            Unauthorized: Caller is not an admin
            TicketNotFound: Unknown ticket
            StateConflict: Ticket is not VALID
        """
        if caller is None or not caller.is_admin:
            logger.warning(
                "Revocation attempted without admin role",
                extra={"user_id": caller.user_id if caller else None, "ticket_id": ticket_id},
            )
            raise Unauthorized("Admin access required")

        ticket = self._tickets.get(ticket_id)
        self._require_valid(ticket)
        revoked = self._state_machine.revoke(ticket.ticket_id, self._clock())
        logger.info("Ticket revoked", extra={"ticket_id": ticket_id, "admin_user_id": caller.user_id})
        return revoked

    @staticmethod
    def _require_valid(ticket: Ticket) -> None:
        if ticket.lifecycle is not TicketLifecycle.VALID:
            raise StateConflict(ticket.ticket_id, TicketLifecycle.VALID, ticket.lifecycle)


__all__ = ["TicketTransferService"]
