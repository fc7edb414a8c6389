"""
Domain: Promo codes.

A promo code belongs to one event and is matched case-insensitively
(codes are stored upper-case).

Validation order (first failure wins):
1. code exists for the event          -> NotFound
2. is_active                          -> Inactive
3. now within [valid_from, valid_until] (open bounds when unset) -> Expired
4. max_uses unset or current_uses < max_uses -> LimitReached

Passing validation does not consume a use. Consumption is the atomic
`record_use` of the promo repository.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from .errors import PromoError, PromoErrorReason
from .time import require_utc_timestamp

_CENT = Decimal("0.01")


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed"


def normalize_code(code: str) -> str:
    return code.strip().upper()


@dataclass(frozen=True, slots=True)
class PromoCode:
    code: str
    event_id: str
    discount_type: DiscountType
    discount_value: Decimal
    current_uses: int = 0
    max_uses: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.discount_value < 0:
            raise ValueError("discount_value must be >= 0")
        if self.discount_type is DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("percentage discount cannot exceed 100")
        if self.valid_from is not None:
            require_utc_timestamp("valid_from", self.valid_from)
        if self.valid_until is not None:
            require_utc_timestamp("valid_until", self.valid_until)

    @property
    def limit_reached(self) -> bool:
        return self.max_uses is not None and self.current_uses >= self.max_uses

    def ensure_usable(self, now: datetime) -> None:
        """Raise PromoError unless the code can be applied at `now`."""

        require_utc_timestamp("now", now)

        if not self.is_active:
            raise PromoError(PromoErrorReason.INACTIVE, self.code, "This promo code is no longer active")
        if self.valid_from is not None and now < self.valid_from:
            raise PromoError(PromoErrorReason.EXPIRED, self.code, "This promo code is not valid yet")
        if self.valid_until is not None and now > self.valid_until:
            raise PromoError(PromoErrorReason.EXPIRED, self.code, "This promo code has expired")
        if self.limit_reached:
            raise PromoError(
                PromoErrorReason.LIMIT_REACHED, self.code, "This promo code has reached its usage limit"
            )

    def apply(self, subtotal: Decimal) -> Decimal:
        """
        Return the discounted total for `subtotal`, never negative.

        percentage -> subtotal * (1 - value / 100)
        fixed      -> max(0, subtotal - value)
        """

        if self.discount_type is DiscountType.PERCENTAGE:
            total = subtotal * (Decimal(1) - self.discount_value / Decimal(100))
        else:
            total = subtotal - self.discount_value
        return max(Decimal("0.00"), total.quantize(_CENT, rounding=ROUND_HALF_UP))


__all__ = ["DiscountType", "PromoCode", "normalize_code"]
