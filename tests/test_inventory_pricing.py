"""
Tests for `services/inventory_service.py` and `services/pricing_service.py`.

Covers contract rules:
- quote() checks availability and prices without writing.
- reserve() is atomic: concurrent reservations never exceed max_tickets.
- confirm_sale moves reserved seats into tickets_sold; release gives them back.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from conftest import fixed_clock, make_event
from domain.errors import EventNotFound, InventoryError, InventoryErrorReason, PromoError
from domain.promo import DiscountType, PromoCode
from repositories.in_memory import InMemoryEventRepository, InMemoryPromoCodeRepository
from services.inventory_service import InventoryService
from services.pricing_service import calculate_price
from services.promo_service import PromoCodeLedger


def _service(events: InMemoryEventRepository, promos: InMemoryPromoCodeRepository = None) -> InventoryService:
    ledger = PromoCodeLedger(promos or InMemoryPromoCodeRepository(), clock=fixed_clock)
    return InventoryService(events, ledger, clock=fixed_clock)


def test_price_without_promo() -> None:
    """Verify subtotal = unit_price * quantity and no discount."""

    price = calculate_price(Decimal("1500"), 3)

    assert price.subtotal == Decimal("4500.00")
    assert price.discount_applied == Decimal("0.00")
    assert price.total == Decimal("4500.00")
    assert price.currency == "KES"


def test_price_with_fixed_promo() -> None:
    """Verify a fixed discount is subtracted and reported."""

    promo = PromoCode("SAVE500", "evt-1", DiscountType.FIXED_AMOUNT, Decimal("500"))

    price = calculate_price(Decimal("1000"), 2, promo)

    assert price.total == Decimal("1500.00")
    assert price.discount_applied == Decimal("500.00")


def test_gateway_amount_rounds_to_shillings() -> None:
    """Verify the gateway is sent whole shillings."""

    promo = PromoCode("THIRD", "evt-1", DiscountType.PERCENTAGE, Decimal("33.33"))

    price = calculate_price(Decimal("999"), 1, promo)

    assert price.total == Decimal("666.03")
    assert price.gateway_amount == 666


def test_quote_applies_promo(events: InMemoryEventRepository) -> None:
    """Verify quote delegates promo validation and applies the discount."""

    promos = InMemoryPromoCodeRepository()
    promos.add(PromoCode("EARLYBIRD", "evt-1", DiscountType.PERCENTAGE, Decimal("10")))

    quote = _service(events, promos).quote("evt-1", 2, "earlybird")

    assert quote.price.total == Decimal("1800.00")
    assert quote.promo is not None and quote.promo.code == "EARLYBIRD"


def test_quote_unknown_event(events: InMemoryEventRepository) -> None:
    """Verify an unknown event id is EventNotFound."""

    with pytest.raises(EventNotFound):
        _service(events).quote("missing", 1)


def test_quote_rejected_promo_has_no_side_effects(events: InMemoryEventRepository) -> None:
    """Verify a rejected promo fails the quote and reserves nothing."""

    with pytest.raises(PromoError):
        _service(events).quote("evt-1", 1, "NOPE")
    assert events.get_event("evt-1").tickets_reserved == 0


def test_reserve_confirm_release(events: InMemoryEventRepository) -> None:
    """Verify the reserved -> sold and reserved -> released movements."""

    service = _service(events)

    service.reserve(service.quote("evt-1", 3))
    service.reserve(service.quote("evt-1", 2))
    assert events.get_event("evt-1").tickets_reserved == 5

    service.confirm_sale("evt-1", 3)
    service.release("evt-1", 2)

    event = events.get_event("evt-1")
    assert event.tickets_sold == 3
    assert event.tickets_reserved == 0


def test_reserve_lost_race_reports_fresh_remaining() -> None:
    """Verify a stale quote that can no longer be reserved reports the real remaining count."""

    events = InMemoryEventRepository()
    events.add(make_event(max_tickets=3))
    service = _service(events)

    stale = service.quote("evt-1", 2)
    service.reserve(service.quote("evt-1", 2))

    with pytest.raises(InventoryError) as exc:
        service.reserve(stale)
    assert exc.value.reason is InventoryErrorReason.INSUFFICIENT_REMAINING
    assert exc.value.remaining == 1


def test_concurrent_reservations_never_oversell() -> None:
    """Verify concurrent reservations totalling more than max_tickets stop at capacity."""

    events = InMemoryEventRepository()
    events.add(make_event(max_tickets=10))
    service = _service(events)

    def attempt(_: int) -> bool:
        try:
            service.reserve(service.quote("evt-1", 3))
            return True
        except InventoryError:
            return False

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(attempt, range(10)))

    assert results.count(True) == 3
    event = events.get_event("evt-1")
    assert event.tickets_sold + event.tickets_reserved <= event.max_tickets
