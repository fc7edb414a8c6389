"""
Tests for `services/notification_service.py`.

Covers contract rules:
- The confirmation e-mail escapes buyer and event text.
- Resend receives the rendered HTML for the buyer's address.
"""

from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from conftest import make_event, make_ticket
from domain.ticket import TicketLifecycle
from services.notification_service import ResendEmailNotifier, render_ticket_email


def test_ticket_email_escapes_buyer_and_event_text() -> None:
    """Verify markup typed by a buyer or organiser is shown as text, not rendered."""

    ticket = make_ticket(
        buyer_name="<script>alert(1)</script>",
        lifecycle=TicketLifecycle.VALID,
        receipt_number="RCP-0000000000000001",
    )
    event = make_event(title="Jazz & <b>Blues</b>")

    body = render_ticket_email(ticket, event)

    assert "<script>" not in body
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in body
    assert "Jazz &amp; &lt;b&gt;Blues&lt;/b&gt;" in body
    assert "RCP-0000000000000001" in body


@pytest.mark.asyncio
async def test_resend_notifier_posts_escaped_html() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "email-1"})

    notifier = ResendEmailNotifier(
        "re_test",
        "tickets@example.com",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    ticket = make_ticket(buyer_name="O'Neil <Otieno>", lifecycle=TicketLifecycle.VALID)

    await notifier.ticket_confirmed(ticket, make_event())
    await notifier.aclose()

    payload = json.loads(seen[0].content)
    assert payload["to"] == ["wanjiru@example.com"]
    assert payload["subject"] == "Your Ticket for Nairobi Jazz Night"
    assert "O&#x27;Neil &lt;Otieno&gt;" in payload["html"]
    assert seen[0].headers["Authorization"] == "Bearer re_test"
