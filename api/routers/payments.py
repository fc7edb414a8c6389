"""
Payments API Endpoints.

Receives M-Pesa STK push callbacks. The response only says whether the
callback was received; the payment outcome is recorded on the ticket.
Malformed, unknown and late callbacks are acknowledged so the gateway does not
keep retrying them.
"""

import logging

from fastapi import APIRouter, Depends, Request

from api.dependencies import TicketingServices, get_services
from services.payment_gateway import MalformedCallback, parse_mpesa_callback

logger = logging.getLogger(__name__)

router = APIRouter()

ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}


@router.post(
    "/payments/mpesa/callback",
    summary="M-Pesa Callback",
    description="Daraja STK push result. Always acknowledged unless the ticket store fails."
)
async def mpesa_callback(request: Request, services: TicketingServices = Depends(get_services)):
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Callback body is not JSON")
        return ACCEPTED

    try:
        result = parse_mpesa_callback(body)
    except MalformedCallback as exc:
        logger.warning("Malformed payment callback", extra={"error": str(exc)})
        return ACCEPTED

    outcome = await services.orchestrator.handle_callback(result)
    logger.info(
        "Payment callback processed",
        extra={
            "checkout_request_id": result.correlation_id,
            "result_code": result.result_code,
            "outcome": outcome.value,
        },
    )
    return ACCEPTED
