"""
Mapping of domain errors to HTTP responses.

Services raise TicketingError subclasses and never build responses. Every
error body carries `detail` (user-safe message) and `code`; conflicts also
carry the ticket's actual state.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from domain.errors import (
    DuplicateTicketId,
    EventNotFound,
    IllegalTransition,
    InventoryError,
    InventoryErrorReason,
    PaymentInitiationFailed,
    PaymentTimeout,
    PromoError,
    PromoErrorReason,
    StateConflict,
    TicketingError,
    TicketNotFound,
    Unauthorized,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    EventNotFound: status.HTTP_404_NOT_FOUND,
    TicketNotFound: status.HTTP_404_NOT_FOUND,
    InventoryError: status.HTTP_409_CONFLICT,
    PromoError: status.HTTP_400_BAD_REQUEST,
    DuplicateTicketId: status.HTTP_409_CONFLICT,
    StateConflict: status.HTTP_409_CONFLICT,
    IllegalTransition: status.HTTP_409_CONFLICT,
    PaymentInitiationFailed: status.HTTP_502_BAD_GATEWAY,
    PaymentTimeout: status.HTTP_202_ACCEPTED,
    Unauthorized: status.HTTP_403_FORBIDDEN,
}


def status_code_for(exc: TicketingError) -> int:
    if isinstance(exc, InventoryError) and exc.reason is InventoryErrorReason.INVALID_QUANTITY:
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, PromoError) and exc.reason is PromoErrorReason.LIMIT_REACHED:
        return status.HTTP_409_CONFLICT
    for error_class in type(exc).__mro__:
        if error_class in STATUS_CODES:
            return STATUS_CODES[error_class]
    return status.HTTP_400_BAD_REQUEST


def error_body(exc: TicketingError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"detail": exc.message, "code": exc.code.value}
    if isinstance(exc, InventoryError):
        body["reason"] = exc.reason.value
        if exc.remaining is not None:
            body["remaining"] = exc.remaining
    elif isinstance(exc, PromoError):
        body["reason"] = exc.reason.value
        body["promo_code"] = exc.promo_code
    elif isinstance(exc, StateConflict):
        body["ticket_id"] = exc.ticket_id
        body["actual_state"] = exc.actual.value
        body["payment_status"] = exc.actual.payment_status.value
        body["status"] = exc.actual.status.value
    elif isinstance(exc, (PaymentInitiationFailed, PaymentTimeout)):
        body["ticket_id"] = exc.ticket_id
        body["payment_status"] = "failed" if isinstance(exc, PaymentInitiationFailed) else "pending"
    return body


async def ticketing_error_handler(request: Request, exc: TicketingError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info(
        "Request rejected",
        extra={"path": request.url.path, "code": exc.code.value, "status_code": status_code},
    )
    return JSONResponse(status_code=status_code, content=error_body(exc))


async def store_error_handler(request: Request, exc: RuntimeError) -> JSONResponse:
    logger.exception("Store failure", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


EXCEPTION_HANDLERS = {
    TicketingError: ticketing_error_handler,
    RuntimeError: store_error_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)


__all__ = ["STATUS_CODES", "status_code_for", "error_body", "register_exception_handlers"]
