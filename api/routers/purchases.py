"""
Purchases API Endpoints.

Endpoint for buying tickets. Payment completes asynchronously; clients follow
up on GET /tickets/{ticket_id}/payment-status.
"""

from fastapi import APIRouter, Depends, status

from api.dependencies import TicketingServices, get_services
from api.models import PurchaseRequest as APIPurchaseRequest, PurchaseResponse
from services.purchase_service import PurchaseRequest

router = APIRouter()


@router.post(
    "/purchases",
    response_model=PurchaseResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Buy Tickets",
    description="Reserve tickets, create a pending ticket and send an M-Pesa payment request to the buyer's phone."
)
async def purchase_tickets(
    request: APIPurchaseRequest,
    services: TicketingServices = Depends(get_services),
):
    """
    Buy tickets for an event.

    **Process:**
    1. Validates buyer details and normalises the phone number
    2. Checks availability and prices the purchase (promo discount applied)
    3. Reserves the tickets and claims the promo use atomically
    4. Creates the ticket with payment status `pending`
    5. Sends the STK push; the buyer authorises on their phone
    6. Starts server-side payment polling

    **Errors:**
    - 400 validation / promo rejected
    - 404 unknown event
    - 409 sold out, deadline passed, not enough remaining, promo limit reached
    - 502 payment request rejected (the ticket is marked failed; retry creates a new ticket)
    """
    result = await services.purchases.purchase(
        PurchaseRequest(
            event_id=request.event_id,
            buyer_name=request.buyer_name,
            buyer_email=request.buyer_email,
            buyer_phone=request.buyer_phone,
            quantity=request.quantity,
            promo_code=request.promo_code,
            user_id=request.user_id,
        )
    )

    return PurchaseResponse(
        ticket_id=result.ticket.ticket_id,
        payment_status=result.ticket.payment_status.value,
        processing=result.processing,
        subtotal=result.price.subtotal,
        discount_applied=result.price.discount_applied,
        total=result.price.total,
        currency=result.price.currency,
        message="Check your phone to authorise the M-Pesa payment.",
    )
