"""
Domain: ticket identifiers and scan tokens.

- Ticket ids look like `TKT-<16 upper-case hex>`.
- The scan payload printed in the QR code is `{ticket_id}-{event_id}-{nonce}`.
  The nonce is an HMAC-SHA256 over ticket id, event id and creation time,
  truncated to 20 hex characters, so it cannot be reconstructed from the
  ticket id.
- Staff may also type the bare ticket id; both forms resolve to the same
  ticket id.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .errors import ValidationError
from .time import require_utc_timestamp

TICKET_ID_PREFIX = "TKT"
_ID_HEX_LENGTH = 16
_NONCE_LENGTH = 20


def new_ticket_id() -> str:
    return f"{TICKET_ID_PREFIX}-{secrets.token_hex(_ID_HEX_LENGTH // 2).upper()}"


def new_transfer_token() -> str:
    return f"TXF-{secrets.token_urlsafe(9)}"


def receipt_number_for(ticket_id: str) -> str:
    suffix = ticket_id.split("-", 1)[1] if ticket_id.startswith(f"{TICKET_ID_PREFIX}-") else ticket_id
    return f"RCP-{suffix}"


def _nonce(secret: bytes, ticket_id: str, event_id: str, created_at: datetime) -> str:
    message = f"{ticket_id}|{event_id}|{created_at.isoformat()}".encode("utf-8")
    return hmac.new(secret, message, hashlib.sha256).hexdigest()[:_NONCE_LENGTH]


def issue_qr_token(secret: bytes, ticket_id: str, event_id: str, created_at: datetime) -> str:
    require_utc_timestamp("created_at", created_at)
    return f"{ticket_id}-{event_id}-{_nonce(secret, ticket_id, event_id, created_at)}"


@dataclass(frozen=True, slots=True)
class ScanPayload:
    """A parsed scan: the ticket id, plus the full token when one was scanned."""

    ticket_id: str
    token: Optional[str] = None

    @property
    def is_manual_entry(self) -> bool:
        return self.token is None


def parse_scan_payload(raw: str) -> ScanPayload:
    """
    Extract the ticket id from a scanned QR payload or a typed ticket id.

    The ticket id is the leading segment (`TKT-XXXX`); anything after it is
    `-{event_id}-{nonce}` and is kept as the token for verification.
    """

    text = (raw or "").strip()
    if not text:
        raise ValidationError("Enter a ticket ID or scan a QR code")

    prefix = f"{TICKET_ID_PREFIX}-"
    if text.upper().startswith(prefix):
        parts = text.split("-")
        if not parts[1]:
            raise ValidationError("Malformed ticket ID")
        ticket_id = f"{TICKET_ID_PREFIX}-{parts[1].upper()}"
        if len(parts) > 2:
            return ScanPayload(ticket_id=ticket_id, token=text)
        return ScanPayload(ticket_id=ticket_id)

    return ScanPayload(ticket_id=text)


def token_matches(expected: str, scanned: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), scanned.encode("utf-8"))


__all__ = [
    "TICKET_ID_PREFIX",
    "new_ticket_id",
    "new_transfer_token",
    "receipt_number_for",
    "issue_qr_token",
    "ScanPayload",
    "parse_scan_payload",
    "token_matches",
]
