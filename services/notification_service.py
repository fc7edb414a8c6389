"""
Ticket notifications.

Sent once a ticket's payment completes. Delivery is best effort: the payment
orchestrator logs notifier failures and never rolls payment state back
because of them.
"""

from __future__ import annotations

import html
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from domain.event import Event
from domain.ticket import Ticket

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class Notifier(ABC):
    @abstractmethod
    async def ticket_confirmed(self, ticket: Ticket, event: Optional[Event]) -> None:
        ...


class LoggingNotifier(Notifier):
    async def ticket_confirmed(self, ticket: Ticket, event: Optional[Event]) -> None:
        logger.info(
            "Ticket confirmed",
            extra={
                "ticket_id": ticket.ticket_id,
                "buyer_email": ticket.buyer_email,
                "receipt_number": ticket.receipt_number,
                "simulated": ticket.is_simulated,
            },
        )


def render_ticket_email(ticket: Ticket, event: Optional[Event]) -> str:
    """HTML body of the confirmation e-mail. Buyer and organiser text is escaped."""
    title = event.title if event else "your event"
    lines = [
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">",
        "<h2>Your Event Ticket</h2>",
        f"<h3>{html.escape(title)}</h3>",
        f"<p><strong>Ticket ID:</strong> {html.escape(ticket.ticket_id)}</p>",
        f"<p><strong>Name:</strong> {html.escape(ticket.buyer_name)}</p>",
        f"<p><strong>Quantity:</strong> {ticket.quantity} ticket(s)</p>",
        f"<p><strong>Total Amount:</strong> KSh {ticket.total_amount:,}</p>",
        f"<p><strong>Receipt Number:</strong> {html.escape(ticket.receipt_number or '')}</p>",
        f"<p style=\"font-family: monospace;\">QR Code: {html.escape(ticket.qr_token)}</p>",
        "<p>Show this QR code at the event entrance.</p>",
        "</div>",
    ]
    return "\n".join(lines)


class ResendEmailNotifier(Notifier):
    def __init__(self, api_key: str, sender: str, client: Optional[httpx.AsyncClient] = None) -> None:
        self._api_key = api_key
        self._sender = sender
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def ticket_confirmed(self, ticket: Ticket, event: Optional[Event]) -> None:
        if not ticket.buyer_email:
            return

        title = event.title if event else ticket.event_id
        response = await self._client.post(
            RESEND_API_URL,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "from": self._sender,
                "to": [ticket.buyer_email],
                "subject": f"Your Ticket for {title}",
                "html": render_ticket_email(ticket, event),
            },
        )
        response.raise_for_status()


__all__ = ["Notifier", "LoggingNotifier", "ResendEmailNotifier", "render_ticket_email"]
