"""
Server-side payment polling.

One asyncio task per pending ticket runs PaymentOrchestrator.poll_until_settled.
Tasks are owned by the server, so reconciliation carries on when the buyer's
client disconnects. HTTP handlers that want to wait for an outcome await the
task through `wait`, bounded by their own timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from domain.errors import PaymentTimeout
from domain.ticket import Ticket, TicketLifecycle
from services.payment_service import PaymentOrchestrator

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    def __init__(self, orchestrator: PaymentOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_polling(self, ticket_id: str) -> bool:
        task = self._tasks.get(ticket_id)
        return task is not None and not task.done()

    def schedule(self, ticket_id: str) -> asyncio.Task:
        """Start polling `ticket_id` unless a poll is already running for it."""

        existing = self._tasks.get(ticket_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.get_running_loop().create_task(
            self._orchestrator.poll_until_settled(ticket_id),
            name=f"reconcile-{ticket_id}",
        )
        self._tasks[ticket_id] = task
        task.add_done_callback(lambda done: self._finished(ticket_id, done))
        logger.debug("Payment polling scheduled", extra={"ticket_id": ticket_id})
        return task

    def _finished(self, ticket_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(ticket_id) is task:
            del self._tasks[ticket_id]
        if task.cancelled():
            return

        exc = task.exception()
        if isinstance(exc, PaymentTimeout):
            logger.info("Payment still pending after polling", extra={"ticket_id": ticket_id})
        elif exc is not None:
            logger.error("Payment polling failed", extra={"ticket_id": ticket_id}, exc_info=exc)

    async def wait(self, ticket_id: str, timeout: float) -> Ticket:
        """
        Wait up to `timeout` seconds for a terminal payment state.

        Raises:
            TicketNotFound: Unknown ticket
            PaymentTimeout: Still pending when the wait ended (polling continues)
        """
        ticket = await self._orchestrator.payment_status(ticket_id)
        if ticket.lifecycle is not TicketLifecycle.PENDING_PAYMENT:
            return ticket

        task = self.schedule(ticket_id)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            raise PaymentTimeout(ticket_id, waited_seconds=timeout) from None

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def pending_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())


__all__ = ["ReconciliationScheduler"]
