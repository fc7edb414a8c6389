"""
Promo code repository (persistence).

Usage counting goes through `record_promo_use`, a server-side function that
increments `current_uses` only while it is below `max_uses`, in the same
UPDATE. A select-then-update here would let two buyers share the last use.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Optional

from supabase import Client  # type: ignore[import-not-found]

from domain.promo import DiscountType, PromoCode
from repositories._timestamps import parse_optional_utc
from repositories.interfaces import PromoCodeRepository

_PROMO_TABLE: str = "promo_codes"


def _row_to_promo(row: Mapping[str, Any]) -> PromoCode:
    max_uses = row.get("max_uses")
    is_active = row.get("is_active")
    return PromoCode(
        code=str(row["code"]),
        event_id=str(row["event_id"]),
        discount_type=DiscountType(row["discount_type"]),
        discount_value=Decimal(str(row["discount_value"])),
        current_uses=int(row.get("current_uses") or 0),
        max_uses=int(max_uses) if max_uses is not None else None,
        valid_from=parse_optional_utc(row.get("valid_from")),
        valid_until=parse_optional_utc(row.get("valid_until")),
        is_active=True if is_active is None else bool(is_active),
    )


class SupabasePromoCodeRepository(PromoCodeRepository):
    def __init__(self, client: Client) -> None:
        self._client = client

    def get_promo_code(self, code: str, event_id: str) -> Optional[PromoCode]:
        response = (
            self._client.table(_PROMO_TABLE)
            .select("*")
            .eq("code", code)
            .eq("event_id", event_id)
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch promo code: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_promo(rows[0])

    def record_use(self, code: str, event_id: str) -> bool:
        response = self._client.rpc(
            "record_promo_use", {"p_code": code, "p_event_id": event_id}
        ).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to record promo use: {error}")
        return bool(getattr(response, "data", None))

    def release_use(self, code: str, event_id: str) -> None:
        response = self._client.rpc(
            "release_promo_use", {"p_code": code, "p_event_id": event_id}
        ).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to release promo use: {error}")


__all__ = ["SupabasePromoCodeRepository"]
