"""
Payment gateway orchestrator.

Handles:
- Creating the pending ticket row *before* contacting the gateway
- Recording gateway correlation ids
- Reconciling the outcome from two independent sources, the gateway callback
  and server-side polling, through one idempotent settlement path
- Exactly-once side effects on the transition into completed or failed
- Simulated settlement when no live gateway is configured

Ordering of initiate():
1. create ticket (pending)    -> a record exists whatever the network does
2. call gateway
   - unreachable / rejected   -> mark failed, raise PaymentInitiationFailed
   - any other error          -> mark failed, raise PaymentInitiationFailed
   - accepted                 -> store correlation ids
3. simulated gateway only     -> schedule settlement after a fixed delay

A ticket still pending without a checkout request id was never sent to the
gateway, so no callback or poll can settle it. reconcile_pending fails it once
it is older than the sweep age and gives its holds back.

Settlement side effects fire only for the caller whose conditional update
moved the ticket out of PENDING_PAYMENT. Everyone else sees StateConflict and
does nothing, so repeated callbacks or polls never double count.

Store calls are synchronous and run on the default executor (run_blocking).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Awaitable, Callable, Coroutine, List, Optional, Set

from config import PollPolicy
from domain.errors import PaymentInitiationFailed, PaymentTimeout, StateConflict, TicketNotFound
from domain.phone import normalize_phone
from domain.ticket import PaymentStatus, Ticket, TicketLifecycle
from domain.time import Clock, utc_now
from repositories.interfaces import TicketRepository
from services.blocking import run_blocking
from services.inventory_service import InventoryService
from services.notification_service import LoggingNotifier, Notifier
from services.payment_gateway import (
    GatewayResult,
    GatewayUnavailable,
    PaymentGateway,
    SimulatedGateway,
)
from services.promo_service import PromoCodeLedger
from services.ticket_state_machine import TicketStateMachine

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

NEVER_SENT_REASON = "Payment request was never sent to the gateway"


class CallbackOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_SETTLED = "already_settled"
    UNMATCHED = "unmatched"


class PaymentOrchestrator:
    def __init__(
        self,
        tickets: TicketRepository,
        state_machine: TicketStateMachine,
        inventory: InventoryService,
        promo_ledger: PromoCodeLedger,
        gateway: PaymentGateway,
        notifier: Optional[Notifier] = None,
        poll_policy: PollPolicy = PollPolicy(),
        simulated_settlement_delay: float = 3.0,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._tickets = tickets
        self._state_machine = state_machine
        self._inventory = inventory
        self._promo_ledger = promo_ledger
        self._gateway = gateway
        self._notifier = notifier or LoggingNotifier()
        self._poll_policy = poll_policy
        self._simulated_delay = simulated_settlement_delay
        self._clock = clock
        self._sleep = sleep
        self._background: Set[asyncio.Task] = set()

    @property
    def poll_policy(self) -> PollPolicy:
        return self._poll_policy

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate(self, ticket: Ticket) -> Ticket:
        """
        Create the pending ticket and request payment for `ticket.total_amount`.

        Raises:
            DuplicateTicketId: The ticket id is taken (nothing was sent to the gateway)
            ValidationError: The buyer phone cannot be normalised
            PaymentInitiationFailed: Gateway rejected, unreachable or returned
                something unusable; ticket is now failed and its holds released
        """
        phone = normalize_phone(ticket.payment_phone or ticket.buyer_phone)
        ticket = await run_blocking(
            self._tickets.create,
            replace(ticket, lifecycle=TicketLifecycle.PENDING_PAYMENT, payment_phone=phone),
        )
        amount = int(ticket.total_amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))

        logger.info(
            "Initiating payment",
            extra={"ticket_id": ticket.ticket_id, "amount": amount, "simulated": self._gateway.simulated},
        )

        try:
            response = await self._gateway.initiate_payment(phone, amount, ticket.ticket_id)
        except GatewayUnavailable as exc:
            logger.warning("Payment gateway unreachable", extra={"ticket_id": ticket.ticket_id, "error": str(exc)})
            await self._settle(ticket.ticket_id, failure_reason=str(exc))
            raise PaymentInitiationFailed(ticket.ticket_id, str(exc)) from exc
        except Exception as exc:
            logger.exception("Payment initiation failed", extra={"ticket_id": ticket.ticket_id})
            reason = "Payment request failed"
            await self._settle(ticket.ticket_id, failure_reason=reason)
            raise PaymentInitiationFailed(ticket.ticket_id, reason) from exc

        if not response.accepted:
            reason = response.reason or "Payment request rejected"
            logger.warning("Payment request rejected", extra={"ticket_id": ticket.ticket_id, "reason": reason})
            await self._settle(ticket.ticket_id, failure_reason=reason)
            raise PaymentInitiationFailed(ticket.ticket_id, reason)

        ticket = await run_blocking(
            self._tickets.update,
            ticket.ticket_id,
            TicketLifecycle.PENDING_PAYMENT,
            {
                "checkout_request_id": response.checkout_request_id,
                "merchant_request_id": response.merchant_request_id,
            },
        )

        if response.simulated:
            logger.warning(
                "No live payment gateway configured; ticket %s will be settled by simulation, no money moves",
                ticket.ticket_id,
            )
            self._spawn(self._simulate_settlement(ticket.ticket_id, response.checkout_request_id or ""))

        return ticket

    async def _simulate_settlement(self, ticket_id: str, checkout_request_id: str) -> None:
        await self._sleep(self._simulated_delay)
        result = SimulatedGateway.settlement_for(checkout_request_id)
        await self.apply_result(ticket_id, result)
        logger.warning(
            "Simulated settlement applied",
            extra={"ticket_id": ticket_id, "transaction_id": result.transaction_id},
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def handle_callback(self, result: GatewayResult) -> CallbackOutcome:
        """Apply a gateway push. Unknown or late callbacks are logged, never errors."""

        ticket = await run_blocking(self._tickets.find_by_checkout_request_id, result.correlation_id)
        if ticket is None:
            logger.warning("Callback for unknown checkout request", extra={"checkout_request_id": result.correlation_id})
            return CallbackOutcome.UNMATCHED

        if ticket.lifecycle.is_payment_terminal:
            logger.info(
                "Late callback ignored",
                extra={"ticket_id": ticket.ticket_id, "payment_status": ticket.payment_status.value},
            )
            await self._record_receipt(ticket, result)
            return CallbackOutcome.ALREADY_SETTLED

        before = ticket.lifecycle
        settled = await self.apply_result(ticket.ticket_id, result)
        if settled.lifecycle is before:
            return CallbackOutcome.ALREADY_SETTLED
        await self._record_receipt(settled, result)
        return CallbackOutcome.APPLIED

    async def apply_result(self, ticket_id: str, result: GatewayResult) -> Ticket:
        # The status query carries no receipt; transaction_id stays empty until a callback brings one.
        if result.succeeded:
            return await self._settle(ticket_id, transaction_id=result.transaction_id, succeeded=True)
        return await self._settle(ticket_id, failure_reason=result.description or f"Result code {result.result_code}")

    async def _record_receipt(self, ticket: Ticket, result: GatewayResult) -> None:
        """Store the M-Pesa receipt on a ticket that was completed without one."""

        if (
            not result.succeeded
            or not result.transaction_id
            or ticket.payment_status is not PaymentStatus.COMPLETED
            or ticket.transaction_id
        ):
            return
        try:
            await run_blocking(
                self._tickets.update,
                ticket.ticket_id,
                ticket.lifecycle,
                {"transaction_id": result.transaction_id},
            )
        except StateConflict as conflict:
            # Checked in or transferred meanwhile; the next callback retry can record it.
            logger.info(
                "Receipt not recorded, ticket moved on",
                extra={"ticket_id": ticket.ticket_id, "actual": conflict.actual.value},
            )
            return
        logger.info(
            "Receipt recorded from callback",
            extra={"ticket_id": ticket.ticket_id, "transaction_id": result.transaction_id},
        )

    async def _settle(
        self,
        ticket_id: str,
        transaction_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        succeeded: bool = False,
    ) -> Ticket:
        """
        Move a pending ticket to completed (succeeded) or failed (failure_reason).

        Returns the ticket as stored afterwards. If another source settled it
        first, that state is returned and no side effects run.
        """
        try:
            if succeeded:
                ticket = await run_blocking(self._state_machine.complete_payment, ticket_id, transaction_id)
            else:
                ticket = await run_blocking(
                    self._state_machine.fail_payment, ticket_id, failure_reason or "Payment failed"
                )
        except StateConflict:
            return await run_blocking(self._tickets.get, ticket_id)

        if ticket.lifecycle is TicketLifecycle.VALID:
            await run_blocking(self._inventory.confirm_sale, ticket.event_id, ticket.quantity)
            await self._notify(ticket)
        else:
            await run_blocking(self._inventory.release, ticket.event_id, ticket.quantity)
            if ticket.promo_code:
                await run_blocking(self._promo_ledger.release_use, ticket.promo_code, ticket.event_id)
        return ticket

    async def _notify(self, ticket: Ticket) -> None:
        try:
            event = await run_blocking(self._inventory.get_event, ticket.event_id)
            await self._notifier.ticket_confirmed(ticket, event)
        except Exception:
            logger.exception("Ticket notification failed", extra={"ticket_id": ticket.ticket_id})

    async def payment_status(self, ticket_id: str) -> Ticket:
        return await run_blocking(self._tickets.get, ticket_id)

    async def has_ticket(self, ticket_id: str) -> bool:
        try:
            await run_blocking(self._tickets.get, ticket_id)
        except TicketNotFound:
            return False
        return True

    async def _query_gateway(self, ticket: Ticket) -> Optional[GatewayResult]:
        if not ticket.checkout_request_id or self._gateway.simulated:
            return None
        try:
            return await self._gateway.query_payment(ticket.checkout_request_id)
        except GatewayUnavailable as exc:
            logger.warning("Payment status query failed", extra={"ticket_id": ticket.ticket_id, "error": str(exc)})
            return None

    async def poll_until_settled(self, ticket_id: str) -> Ticket:
        """
        Poll until the payment is terminal or the attempt budget is spent.

        Each attempt re-reads the ticket (a callback may have settled it) and
        otherwise asks the gateway directly.

        Raises:
            PaymentTimeout: Budget exhausted. The ticket stays pending and a later
                callback can still complete it.
        """
        policy = self._poll_policy
        for attempt in range(policy.max_attempts):
            await self._sleep(policy.delay_before(attempt))

            ticket = await run_blocking(self._tickets.get, ticket_id)
            if ticket.lifecycle.is_payment_terminal:
                return ticket

            result = await self._query_gateway(ticket)
            if result is not None:
                return await self.apply_result(ticket_id, result)

        logger.info("Payment poll budget exhausted", extra={"ticket_id": ticket_id, "attempts": policy.max_attempts})
        raise PaymentTimeout(ticket_id, attempts=policy.max_attempts)

    async def reconcile_pending(self, older_than: timedelta) -> List[Ticket]:
        """
        Settle tickets pending for longer than `older_than`.

        Tickets the gateway accepted get one status query each. Tickets that
        never got a checkout request id were never sent, so they are failed
        and their holds released.
        """
        settled: List[Ticket] = []
        stale = await run_blocking(self._tickets.list_pending, self._clock() - older_than)
        for ticket in stale:
            if not ticket.checkout_request_id and not self._gateway.simulated:
                logger.warning("Failing pending ticket that was never sent", extra={"ticket_id": ticket.ticket_id})
                ticket = await self._settle(ticket.ticket_id, failure_reason=NEVER_SENT_REASON)
                if ticket.lifecycle.is_payment_terminal:
                    settled.append(ticket)
                continue

            result = await self._query_gateway(ticket)
            if result is None:
                continue
            ticket = await self.apply_result(ticket.ticket_id, result)
            if ticket.lifecycle.is_payment_terminal:
                settled.append(ticket)
        return settled

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background_done)
        return task

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background payment task failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for scheduled background settlements to finish."""

        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._gateway.aclose()


__all__ = ["CallbackOutcome", "PaymentOrchestrator"]
