"""
Runtime configuration.

Settings are read from the environment, after loading the project `.env`
file. Nothing here talks to the network; clients are built from these values
elsewhere.
"""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

env_path = Path(__file__).parent / ".env"

DARAJA_SANDBOX_URL = "https://sandbox.safaricom.co.ke"


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


@dataclass(frozen=True, slots=True)
class PollPolicy:
    """Server-side payment polling budget."""

    initial_delay: float = 5.0
    interval: float = 3.0
    backoff: float = 1.5
    max_interval: float = 15.0
    max_attempts: int = 20

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before poll number `attempt` (0-based)."""

        if attempt == 0:
            return self.initial_delay
        return min(self.max_interval, self.interval * (self.backoff ** (attempt - 1)))


@dataclass(frozen=True, slots=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    store: str = "supabase"

    mpesa_consumer_key: Optional[str] = None
    mpesa_consumer_secret: Optional[str] = None
    mpesa_business_shortcode: Optional[str] = None
    mpesa_passkey: Optional[str] = None
    mpesa_base_url: str = DARAJA_SANDBOX_URL
    mpesa_callback_url: Optional[str] = None

    simulated_settlement_delay: float = 3.0
    poll_policy: PollPolicy = PollPolicy()

    qr_token_secret: bytes = b""

    resend_api_key: Optional[str] = None
    ticket_email_from: str = "Events <tickets@example.com>"

    log_level: str = "INFO"

    @property
    def mpesa_configured(self) -> bool:
        return all(
            (
                self.mpesa_consumer_key,
                self.mpesa_consumer_secret,
                self.mpesa_business_shortcode,
                self.mpesa_passkey,
            )
        )

    @staticmethod
    def from_env() -> "Settings":
        load_dotenv(dotenv_path=env_path)

        secret = os.getenv("QR_TOKEN_SECRET")
        return Settings(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY"),
            store=os.getenv("TICKETING_STORE", "supabase").lower(),
            mpesa_consumer_key=os.getenv("MPESA_CONSUMER_KEY"),
            mpesa_consumer_secret=os.getenv("MPESA_CONSUMER_SECRET"),
            mpesa_business_shortcode=os.getenv("MPESA_BUSINESS_SHORTCODE"),
            mpesa_passkey=os.getenv("MPESA_PASSKEY"),
            mpesa_base_url=os.getenv("MPESA_BASE_URL", DARAJA_SANDBOX_URL),
            mpesa_callback_url=os.getenv("MPESA_CALLBACK_URL"),
            simulated_settlement_delay=_float("SIMULATED_SETTLEMENT_DELAY_SECONDS", 3.0),
            poll_policy=PollPolicy(
                initial_delay=_float("PAYMENT_POLL_INITIAL_DELAY_SECONDS", 5.0),
                interval=_float("PAYMENT_POLL_INTERVAL_SECONDS", 3.0),
                backoff=_float("PAYMENT_POLL_BACKOFF", 1.5),
                max_interval=_float("PAYMENT_POLL_MAX_INTERVAL_SECONDS", 15.0),
                max_attempts=_int("PAYMENT_POLL_MAX_ATTEMPTS", 20),
            ),
            # Without a configured secret, tokens issued by this process stop
            # verifying after a restart.
            qr_token_secret=(secret or secrets.token_hex(32)).encode("utf-8"),
            resend_api_key=os.getenv("RESEND_API_KEY"),
            ticket_email_from=os.getenv("TICKET_EMAIL_FROM", "Events <tickets@example.com>"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


__all__ = ["PollPolicy", "Settings", "configure_logging"]
