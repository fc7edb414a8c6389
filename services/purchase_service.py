"""
Purchase service for buying event tickets.

Handles:
- Buyer field and phone validation before anything is reserved
- Availability check and pricing (InventoryService)
- Atomic seat reservation and promo use claim
- Ticket creation and payment initiation (PaymentOrchestrator)
- Handing the pending ticket to the reconciliation scheduler

Store calls run on the default executor so one slow round-trip does not
stall other requests on the event loop.

Transaction strategy:
Nothing is written until every synchronous check has passed. Seats and the
promo use are then claimed with single-statement conditional increments, so
concurrent buyers cannot oversell an event or overuse a code. If a later step
fails before the ticket row exists, both claims are released again. Once the
row exists, the orchestrator owns the claims and releases them when the
payment fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from domain.errors import DuplicateTicketId, PaymentInitiationFailed, PromoError, ValidationError
from domain.phone import normalize_phone
from domain.promo import normalize_code
from domain.scan_token import issue_qr_token, new_ticket_id
from domain.ticket import Ticket, TicketLifecycle
from domain.time import Clock, utc_now
from services.blocking import run_blocking
from services.inventory_service import InventoryService, PurchaseQuote
from services.payment_service import PaymentOrchestrator
from services.pricing_service import PriceBreakdown
from services.promo_service import PromoCodeLedger
from services.reconciliation_service import ReconciliationScheduler

logger = logging.getLogger(__name__)

# Ticket ids are random; a collision is retried with a fresh id.
MAX_TICKET_ID_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class PurchaseRequest:
    """
    Buyer details for one purchase.

    quantity: Number of admissions (1..10)
    promo_code: Optional code, matched case-insensitively
    user_id: Signed-in account, if any
    """
    event_id: str
    buyer_name: str
    buyer_email: str
    buyer_phone: str
    quantity: int
    promo_code: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    """
    Result of an accepted purchase.

    ticket: The pending ticket (payment not settled yet)
    price: Subtotal, discount and total charged
    processing: True while the payment is awaiting the buyer's authorisation
    """
    ticket: Ticket
    price: PriceBreakdown
    processing: bool = True


def _validate_buyer(request: PurchaseRequest) -> str:
    missing = [
        name
        for name in ("buyer_name", "buyer_email", "buyer_phone")
        if not (getattr(request, name) or "").strip()
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if "@" not in request.buyer_email:
        raise ValidationError("buyer_email is not a valid email address")
    return normalize_phone(request.buyer_phone)


class PurchaseService:
    def __init__(
        self,
        inventory: InventoryService,
        promo_ledger: PromoCodeLedger,
        orchestrator: PaymentOrchestrator,
        qr_secret: bytes,
        scheduler: Optional[ReconciliationScheduler] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._inventory = inventory
        self._promo_ledger = promo_ledger
        self._orchestrator = orchestrator
        self._qr_secret = qr_secret
        self._scheduler = scheduler
        self._clock = clock

    def quote(self, event_id: str, quantity: int, promo_code: Optional[str] = None) -> PurchaseQuote:
        """Price a purchase without reserving anything."""

        return self._inventory.quote(event_id, quantity, promo_code)

    async def purchase(self, request: PurchaseRequest) -> PurchaseResult:
        """
        Reserve seats, create a pending ticket and start payment.

        Args:
            request: Buyer details, quantity and optional promo code

        Returns:
            PurchaseResult with the pending ticket

        Raises:
            ValidationError: Missing buyer fields or bad phone number (no writes)
            InventoryError: Quantity, deadline or capacity rejected (no ticket row)
            EventNotFound: Unknown event
            PromoError: Code rejected, including losing the last use to another buyer
            PaymentInitiationFailed: Gateway rejected; the ticket exists and is failed

        Example:
            >>> result = await service.purchase(PurchaseRequest(
            ...     event_id="evt-1", buyer_name="Wanjiru", buyer_email="w@example.com",
            ...     buyer_phone="0712345678", quantity=2))
            >>> result.ticket.payment_status
            <PaymentStatus.PENDING: 'pending'>
        """
        phone = _validate_buyer(request)
        quote = await run_blocking(self._inventory.quote, request.event_id, request.quantity, request.promo_code)

        await run_blocking(self._inventory.reserve, quote)
        promo_code = normalize_code(quote.promo.code) if quote.promo else None
        if promo_code:
            try:
                await run_blocking(self._promo_ledger.record_use, promo_code, quote.event.event_id)
            except PromoError:
                await run_blocking(self._inventory.release, quote.event.event_id, quote.quantity)
                raise

        attempted: List[str] = []
        try:
            ticket = await self._create_and_initiate(request, quote, phone, promo_code, attempted)
        except PaymentInitiationFailed:
            raise
        except Exception:
            if not attempted or not await self._orchestrator.has_ticket(attempted[-1]):
                await self._release_unclaimed(quote, promo_code)
            raise

        logger.info(
            "Purchase accepted",
            extra={
                "ticket_id": ticket.ticket_id,
                "event_id": ticket.event_id,
                "quantity": ticket.quantity,
                "total": str(quote.price.total),
            },
        )

        if self._scheduler is not None:
            self._scheduler.schedule(ticket.ticket_id)

        return PurchaseResult(ticket=ticket, price=quote.price)

    async def _create_and_initiate(
        self,
        request: PurchaseRequest,
        quote: PurchaseQuote,
        phone: str,
        promo_code: Optional[str],
        attempted: List[str],
    ) -> Ticket:
        for attempt in range(1, MAX_TICKET_ID_ATTEMPTS + 1):
            created_at = self._clock()
            ticket_id = new_ticket_id()
            attempted.append(ticket_id)
            ticket = Ticket(
                ticket_id=ticket_id,
                event_id=quote.event.event_id,
                buyer_name=request.buyer_name.strip(),
                buyer_email=request.buyer_email.strip(),
                buyer_phone=request.buyer_phone.strip(),
                quantity=quote.quantity,
                total_amount=quote.price.total,
                lifecycle=TicketLifecycle.PENDING_PAYMENT,
                qr_token=issue_qr_token(self._qr_secret, ticket_id, quote.event.event_id, created_at),
                created_at=created_at,
                user_id=request.user_id,
                promo_code=promo_code,
                discount_applied=quote.price.discount_applied,
                payment_phone=phone,
            )
            try:
                return await self._orchestrator.initiate(ticket)
            except DuplicateTicketId:
                # The existing row belongs to another purchase.
                attempted.pop()
                if attempt == MAX_TICKET_ID_ATTEMPTS:
                    raise
                logger.warning("Ticket id collision, retrying", extra={"ticket_id": ticket_id})
        raise AssertionError("unreachable")

    async def _release_unclaimed(self, quote: PurchaseQuote, promo_code: Optional[str]) -> None:
        """Give back holds when the purchase failed before its ticket row was written."""

        await run_blocking(self._inventory.release, quote.event.event_id, quote.quantity)
        if promo_code:
            await run_blocking(self._promo_ledger.release_use, promo_code, quote.event.event_id)


__all__ = ["PurchaseRequest", "PurchaseResult", "PurchaseService", "MAX_TICKET_ID_ATTEMPTS"]
