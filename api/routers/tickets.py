"""
Tickets API Endpoints.

Ticket lookup, payment status (optionally waiting on reconciliation),
transfer and revocation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import TicketingServices, get_caller, get_services
from api.models import PaymentStatusResponse, TicketResponse, TransferRequest
from domain.role import Caller

router = APIRouter()

MAX_WAIT_SECONDS = 30.0


@router.get(
    "/tickets/{ticket_id}",
    response_model=TicketResponse,
    summary="Get Ticket",
)
def get_ticket(ticket_id: str, services: TicketingServices = Depends(get_services)):
    return TicketResponse.from_ticket(services.tickets.get(ticket_id))


@router.get(
    "/tickets/{ticket_id}/payment-status",
    response_model=PaymentStatusResponse,
    summary="Payment Status",
    description="Current payment status. With wait_seconds, waits for the payment to settle first."
)
async def get_payment_status(
    ticket_id: str,
    wait_seconds: Optional[float] = Query(default=None, ge=0, le=MAX_WAIT_SECONDS),
    services: TicketingServices = Depends(get_services),
):
    """
    Poll a ticket's payment.

    Without `wait_seconds` this returns immediately. With it, the request
    waits on the server-side reconciliation task; if the payment is still
    pending when the wait ends the response is 202 with
    `"payment_status": "pending"` and a "may still be processing" message.
    Polling carries on after the response either way.
    """
    if wait_seconds:
        ticket = await services.scheduler.wait(ticket_id, wait_seconds)
    else:
        ticket = await services.orchestrator.payment_status(ticket_id)
    return PaymentStatusResponse.from_ticket(ticket)


@router.post(
    "/tickets/{ticket_id}/transfer",
    response_model=TicketResponse,
    summary="Transfer Ticket",
)
def transfer_ticket(
    ticket_id: str,
    request: TransferRequest,
    services: TicketingServices = Depends(get_services),
):
    ticket = services.transfers.transfer(ticket_id, request.holder_email, request.recipient_email)
    return TicketResponse.from_ticket(ticket)


@router.post(
    "/tickets/{ticket_id}/revoke",
    response_model=TicketResponse,
    summary="Revoke Ticket",
    description="Admin only. Revoked tickets can no longer be checked in."
)
def revoke_ticket(
    ticket_id: str,
    caller: Optional[Caller] = Depends(get_caller),
    services: TicketingServices = Depends(get_services),
):
    return TicketResponse.from_ticket(services.transfers.revoke(caller, ticket_id))
