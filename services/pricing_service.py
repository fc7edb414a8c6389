"""
Pricing service for ticket purchases.

Computes what a buyer is charged for `quantity` tickets of an event, with an
optional promo code that has already been validated by the promo ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from domain.promo import PromoCode

CURRENCY = "KES"
_CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class PriceBreakdown:
    """
    Charge for one purchase.

    total = subtotal - discount_applied, and is never negative.
    """
    subtotal: Decimal
    discount_applied: Decimal
    total: Decimal
    currency: str = CURRENCY

    @property
    def gateway_amount(self) -> int:
        """M-Pesa only accepts whole shillings."""
        return int(self.total.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_price(
    unit_price: Decimal,
    quantity: int,
    promo: Optional[PromoCode] = None
) -> PriceBreakdown:
    """
    Calculate the charge for a purchase.

    Args:
        unit_price: Event ticket price
        quantity: Number of tickets (already validated)
        promo: A promo code that passed validation, or None

    Returns:
        PriceBreakdown with subtotal, discount and total

    Example:
        calculate_price(Decimal("1500"), 2, promo)  # 20% promo
        # PriceBreakdown(subtotal=Decimal('3000.00'), discount_applied=Decimal('600.00'), total=Decimal('2400.00'))
    """
    subtotal = (unit_price * quantity).quantize(_CENT, rounding=ROUND_HALF_UP)
    total = promo.apply(subtotal) if promo is not None else subtotal

    return PriceBreakdown(
        subtotal=subtotal,
        discount_applied=subtotal - total,
        total=total,
    )


__all__ = [
    "CURRENCY",
    "PriceBreakdown",
    "calculate_price",
]
