"""
Quotes API Endpoints.

Endpoint for pricing a ticket purchase before buying.
"""

from fastapi import APIRouter, Depends

from api.dependencies import TicketingServices, get_services
from api.models import QuoteRequest, QuoteResponse

router = APIRouter()


@router.post(
    "/quotes",
    response_model=QuoteResponse,
    summary="Calculate Purchase Quote",
    description="Check availability and price a purchase, including any promo discount. Nothing is reserved."
)
def calculate_quote(request: QuoteRequest, services: TicketingServices = Depends(get_services)):
    """
    Calculate a quote for buying `quantity` tickets to an event.

    **Checks, in order:**
    1. Quantity between 1 and 10
    2. Open events: ticket deadline not passed
    3. Fixed events: enough tickets remaining
    4. Promo code (if given) exists for this event, is active, in its validity window and under its limit

    **Example request:**
    ```json
    {"event_id": "8b0c6a9e-...", "quantity": 2, "promo_code": "EARLYBIRD"}
    ```
    """
    quote = services.purchases.quote(request.event_id, request.quantity, request.promo_code)

    return QuoteResponse(
        event_id=quote.event.event_id,
        quantity=quote.quantity,
        subtotal=quote.price.subtotal,
        discount_applied=quote.price.discount_applied,
        total=quote.price.total,
        currency=quote.price.currency,
        remaining=quote.event.remaining,
    )
