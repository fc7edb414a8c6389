"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides in-memory stores wired into the
services with a fixed clock and an instant sleep.
"""

import asyncio
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import pytest

# Add the project directory to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import PollPolicy, Settings  # noqa: E402
from domain.event import Event, TicketType  # noqa: E402
from domain.scan_token import issue_qr_token  # noqa: E402
from domain.ticket import Ticket, TicketLifecycle  # noqa: E402
from repositories.in_memory import (  # noqa: E402
    InMemoryEventRepository,
    InMemoryPromoCodeRepository,
    InMemoryRoleLookup,
    InMemoryTicketRepository,
)
from services.payment_gateway import (  # noqa: E402
    GatewayInitiation,
    GatewayResult,
    GatewayUnavailable,
    PaymentGateway,
)

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
QR_SECRET = b"test-qr-secret"


def fixed_clock() -> datetime:
    return NOW


async def instant_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


def make_event(**overrides) -> Event:
    values = dict(
        event_id="evt-1",
        title="Nairobi Jazz Night",
        unit_price=Decimal("1000.00"),
        ticket_type=TicketType.FIXED,
        max_tickets=50,
        event_date=NOW + timedelta(days=30),
    )
    values.update(overrides)
    return Event(**values)


def make_ticket(ticket_id: str = "TKT-0000000000000001", **overrides) -> Ticket:
    event_id = overrides.get("event_id", "evt-1")
    values = dict(
        ticket_id=ticket_id,
        event_id=event_id,
        buyer_name="Wanjiru Kamau",
        buyer_email="wanjiru@example.com",
        buyer_phone="0712345678",
        quantity=1,
        total_amount=Decimal("1000.00"),
        lifecycle=TicketLifecycle.PENDING_PAYMENT,
        qr_token=issue_qr_token(QR_SECRET, ticket_id, event_id, NOW),
        created_at=NOW,
    )
    values.update(overrides)
    return Ticket(**values)


@dataclass
class FakeGateway(PaymentGateway):
    """Scriptable gateway: accepts by default, records every request."""

    accept: bool = True
    unavailable: bool = False
    reason: str = "Insufficient funds"
    query_results: List[Optional[GatewayResult]] = field(default_factory=list)
    requests: List[tuple] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)
    closed: bool = False

    async def initiate_payment(self, phone: str, amount: int, reference: str) -> GatewayInitiation:
        self.requests.append((phone, amount, reference))
        if self.unavailable:
            raise GatewayUnavailable("connection refused")
        if not self.accept:
            return GatewayInitiation(accepted=False, reason=self.reason)
        n = len(self.requests)
        return GatewayInitiation(
            accepted=True,
            checkout_request_id=f"ws_CO_{n:04d}",
            merchant_request_id=f"MR_{n:04d}",
        )

    async def query_payment(self, checkout_request_id: str) -> Optional[GatewayResult]:
        self.queries.append(checkout_request_id)
        if self.query_results:
            return self.query_results.pop(0)
        return None

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def events() -> InMemoryEventRepository:
    store = InMemoryEventRepository()
    store.add(make_event())
    return store


@pytest.fixture
def promo_codes() -> InMemoryPromoCodeRepository:
    return InMemoryPromoCodeRepository()


@pytest.fixture
def tickets() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def roles() -> InMemoryRoleLookup:
    return InMemoryRoleLookup()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def poll_policy() -> PollPolicy:
    return PollPolicy(initial_delay=0, interval=0, backoff=1, max_interval=0, max_attempts=3)


@pytest.fixture
def settings(poll_policy: PollPolicy) -> Settings:
    return Settings(
        store="memory",
        simulated_settlement_delay=0,
        poll_policy=poll_policy,
        qr_token_secret=QR_SECRET,
    )
