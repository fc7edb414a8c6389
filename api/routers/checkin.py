"""
Check-in API Endpoints.

Staff scan a QR code (or type a ticket id), see its classification, then
confirm. The caller is identified by the X-User-Id header and must hold the
staff or admin role.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from api.dependencies import TicketingServices, get_caller, get_services
from api.models import CheckInResponse, ScanRequest, ScanResponse
from domain.role import Caller

router = APIRouter()


@router.post(
    "/checkin/scan",
    response_model=ScanResponse,
    summary="Scan Ticket",
    description="Classify a ticket: ReadyToCheckIn, AlreadyCheckedIn, TransferredAway, Revoked or InvalidTicket."
)
def scan_ticket(
    request: ScanRequest,
    caller: Optional[Caller] = Depends(get_caller),
    services: TicketingServices = Depends(get_services),
):
    return ScanResponse.from_result(services.checkin.scan(caller, request.payload))


@router.post(
    "/checkin/confirm",
    response_model=CheckInResponse,
    summary="Confirm Check-in",
    description="Check the ticket in. Returns 409 with the ticket's actual state if it is no longer valid."
)
def confirm_check_in(
    request: ScanRequest,
    caller: Optional[Caller] = Depends(get_caller),
    services: TicketingServices = Depends(get_services),
):
    ticket = services.checkin.confirm_check_in(caller, request.payload)
    return CheckInResponse(
        ticket_id=ticket.ticket_id,
        status=ticket.status.value,
        checked_in_at=ticket.checked_in_at,
    )
