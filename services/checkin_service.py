"""
Staff check-in at the event entrance.

The caller's role is looked up fresh for every request and checked before any
ticket is read, so unauthorised callers cannot learn whether a ticket exists.

scan()             classify a scanned QR payload or typed ticket id for display
confirm_check_in() re-read the ticket and perform valid -> checked_in
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from domain.errors import StateConflict, TicketNotFound, Unauthorized
from domain.role import Caller
from domain.scan_token import ScanPayload, parse_scan_payload, token_matches
from domain.ticket import PaymentStatus, Ticket, TicketLifecycle
from domain.time import Clock, utc_now
from repositories.interfaces import RoleLookup, TicketRepository
from services.ticket_state_machine import TicketStateMachine

logger = logging.getLogger(__name__)


class ScanClassification(str, Enum):
    INVALID_TICKET = "InvalidTicket"
    REVOKED = "Revoked"
    TRANSFERRED_AWAY = "TransferredAway"
    ALREADY_CHECKED_IN = "AlreadyCheckedIn"
    READY_TO_CHECK_IN = "ReadyToCheckIn"


_CLASSIFICATION = {
    TicketLifecycle.REVOKED: ScanClassification.REVOKED,
    TicketLifecycle.TRANSFERRED: ScanClassification.TRANSFERRED_AWAY,
    TicketLifecycle.CHECKED_IN: ScanClassification.ALREADY_CHECKED_IN,
    TicketLifecycle.VALID: ScanClassification.READY_TO_CHECK_IN,
}

_CONFLICT_MESSAGES = {
    TicketLifecycle.CHECKED_IN: "Already checked in by another scan",
    TicketLifecycle.REVOKED: "This ticket has been revoked",
    TicketLifecycle.TRANSFERRED: "This ticket has been transferred to another holder",
    TicketLifecycle.PENDING_PAYMENT: "Payment for this ticket has not completed",
    TicketLifecycle.PAYMENT_FAILED: "Payment for this ticket failed",
}


def classify(ticket: Ticket) -> ScanClassification:
    if ticket.payment_status is not PaymentStatus.COMPLETED:
        return ScanClassification.INVALID_TICKET
    return _CLASSIFICATION[ticket.lifecycle]


@dataclass(frozen=True, slots=True)
class ScanResult:
    """What the scanner shows. `ticket` is None for unknown or forged payloads."""

    ticket_id: str
    classification: ScanClassification
    ticket: Optional[Ticket] = None

    @property
    def can_check_in(self) -> bool:
        return self.classification is ScanClassification.READY_TO_CHECK_IN


class CheckInValidator:
    def __init__(
        self,
        roles: RoleLookup,
        tickets: TicketRepository,
        state_machine: TicketStateMachine,
        clock: Clock = utc_now,
    ) -> None:
        self._roles = roles
        self._tickets = tickets
        self._state_machine = state_machine
        self._clock = clock

    def resolve_caller(self, user_id: Optional[str]) -> Optional[Caller]:
        """Fresh role lookup on every call. Anonymous callers resolve to None."""

        if not user_id:
            return None
        return Caller(user_id=user_id, role=self._roles.get_role(user_id))

    def _authorize(self, caller: Optional[Caller]) -> None:
        if caller is None or not caller.can_check_in:
            logger.warning(
                "Check-in attempted without staff role",
                extra={"user_id": caller.user_id if caller else None},
            )
            raise Unauthorized()

    def _lookup(self, payload: ScanPayload) -> Optional[Ticket]:
        try:
            ticket = self._tickets.get(payload.ticket_id)
        except TicketNotFound:
            return None
        if payload.token is not None and not token_matches(ticket.qr_token, payload.token):
            logger.warning("Scanned token does not match ticket", extra={"ticket_id": ticket.ticket_id})
            return None
        return ticket

    def scan(self, caller: Optional[Caller], raw: str) -> ScanResult:
        """
        Classify a scanned payload or manually entered ticket id.

        Raises:
            Unauthorized: Caller is not staff or admin (no lookup performed)
            ValidationError: Empty or malformed input
        """
        self._authorize(caller)
        payload = parse_scan_payload(raw)

        ticket = self._lookup(payload)
        if ticket is None:
            return ScanResult(ticket_id=payload.ticket_id, classification=ScanClassification.INVALID_TICKET)

        result = ScanResult(ticket_id=ticket.ticket_id, classification=classify(ticket), ticket=ticket)
        logger.info(
            "Ticket scanned",
            extra={"ticket_id": ticket.ticket_id, "classification": result.classification.value},
        )
        return result

    def confirm_check_in(self, caller: Optional[Caller], raw: str) -> Ticket:
        """
        Check a ticket in, validating its state at this instant.

        Raises:
            Unauthorized: Caller is not staff or admin
            TicketNotFound: Unknown ticket or forged scan token
            StateConflict: The ticket is not ready (another scan won, revoked,
                transferred or unpaid); `actual` carries the current state
        """
        self._authorize(caller)
        payload = parse_scan_payload(raw)

        ticket = self._lookup(payload)
        if ticket is None:
            raise TicketNotFound(payload.ticket_id)

        if ticket.lifecycle is not TicketLifecycle.VALID:
            raise StateConflict(
                ticket.ticket_id,
                TicketLifecycle.VALID,
                ticket.lifecycle,
                _CONFLICT_MESSAGES[ticket.lifecycle],
            )

        try:
            checked_in = self._state_machine.check_in(ticket.ticket_id, self._clock())
        except StateConflict as conflict:
            raise StateConflict(
                conflict.ticket_id,
                conflict.expected,
                conflict.actual,
                _CONFLICT_MESSAGES.get(conflict.actual),
            ) from conflict

        logger.info(
            "Ticket checked in",
            extra={"ticket_id": checked_in.ticket_id, "staff_user_id": caller.user_id},
        )
        return checked_in


__all__ = ["ScanClassification", "ScanResult", "CheckInValidator", "classify"]
