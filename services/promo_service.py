"""
Promo code ledger.

`validate` is read-only. `record_use` consumes one use through the store's
atomic conditional increment; when two buyers race for the last use exactly
one of them gets it and the other receives LimitReached.
"""

from __future__ import annotations

import logging

from domain.errors import PromoError, PromoErrorReason
from domain.promo import PromoCode, normalize_code
from domain.time import Clock, utc_now
from repositories.interfaces import PromoCodeRepository

logger = logging.getLogger(__name__)


class PromoCodeLedger:
    def __init__(self, promo_codes: PromoCodeRepository, clock: Clock = utc_now) -> None:
        self._promo_codes = promo_codes
        self._clock = clock

    def validate(self, code: str, event_id: str) -> PromoCode:
        """
        Return the promo code if it can be applied to this event right now.

        Raises:
            PromoError: NotFound, Inactive, Expired or LimitReached
        """
        normalized = normalize_code(code)
        promo = self._promo_codes.get_promo_code(normalized, event_id)
        if promo is None:
            raise PromoError(
                PromoErrorReason.NOT_FOUND, normalized, "The promo code is not valid for this event"
            )
        promo.ensure_usable(self._clock())
        return promo

    def record_use(self, code: str, event_id: str) -> None:
        normalized = normalize_code(code)
        if not self._promo_codes.record_use(normalized, event_id):
            logger.info(
                "Promo code use rejected at limit",
                extra={"promo_code": normalized, "event_id": event_id},
            )
            raise PromoError(
                PromoErrorReason.LIMIT_REACHED, normalized, "This promo code has reached its usage limit"
            )

    def release_use(self, code: str, event_id: str) -> None:
        self._promo_codes.release_use(normalize_code(code), event_id)


__all__ = ["PromoCodeLedger"]
