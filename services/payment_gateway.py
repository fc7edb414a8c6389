"""
Mobile-money payment gateways.

The orchestrator talks to a PaymentGateway and never to HTTP directly:

- MpesaGateway      Safaricom Daraja STK push over httpx
- SimulatedGateway  used when no M-Pesa credentials are configured; it accepts
                    every request and the orchestrator settles it after a
                    delay with a SIMULATED- transaction id

Callbacks arrive as Daraja JSON and are turned into a GatewayResult by
`parse_mpesa_callback`.
"""

from __future__ import annotations

import base64
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import httpx

from domain.ticket import SIMULATED_TRANSACTION_PREFIX

logger = logging.getLogger(__name__)

# Daraja's "request is still being processed" answer to an STK query.
_STILL_PROCESSING = "500.001.1001"


class GatewayUnavailable(Exception):
    """The gateway could not be reached or answered with an unusable response."""


class MalformedCallback(ValueError):
    """A callback body that does not carry a correlation id and result code."""


@dataclass(frozen=True, slots=True)
class GatewayInitiation:
    accepted: bool
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    reason: Optional[str] = None
    simulated: bool = False


@dataclass(frozen=True, slots=True)
class GatewayResult:
    """Authoritative outcome of one payment request."""

    correlation_id: str
    result_code: int
    description: str = ""
    transaction_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


class PaymentGateway(ABC):
    simulated: bool = False

    @abstractmethod
    async def initiate_payment(self, phone: str, amount: int, reference: str) -> GatewayInitiation:
        """
        Ask the customer's phone to authorise `amount`.

        Raises GatewayUnavailable when the gateway cannot be reached.
        """
        ...

    @abstractmethod
    async def query_payment(self, checkout_request_id: str) -> Optional[GatewayResult]:
        """Terminal outcome if the gateway knows it, None while still processing."""
        ...

    async def aclose(self) -> None:
        return None


class SimulatedGateway(PaymentGateway):
    simulated = True

    async def initiate_payment(self, phone: str, amount: int, reference: str) -> GatewayInitiation:
        suffix = secrets.token_hex(6).upper()
        return GatewayInitiation(
            accepted=True,
            checkout_request_id=f"SIM-CHK-{suffix}",
            merchant_request_id=f"SIM-MRC-{suffix}",
            simulated=True,
        )

    async def query_payment(self, checkout_request_id: str) -> Optional[GatewayResult]:
        return None

    @staticmethod
    def settlement_for(checkout_request_id: str) -> GatewayResult:
        return GatewayResult(
            correlation_id=checkout_request_id,
            result_code=0,
            description="Simulated settlement",
            transaction_id=f"{SIMULATED_TRANSACTION_PREFIX}{int(time.time() * 1000)}",
        )


class MpesaGateway(PaymentGateway):
    """Daraja STK push (Lipa na M-Pesa Online)."""

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        business_shortcode: str,
        passkey: str,
        callback_url: str,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._shortcode = business_shortcode
        self._passkey = passkey
        self._callback_url = callback_url
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            response = await self._client.get(
                "/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=(self._consumer_key, self._consumer_secret),
            )
            response.raise_for_status()
            data = response.json()
            token = str(data["access_token"])
            expires_in = int(data.get("expires_in", 3599))
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayUnavailable(f"Failed to get M-Pesa OAuth token: {exc}") from exc
        except (KeyError, TypeError, AttributeError) as exc:
            raise GatewayUnavailable(f"M-Pesa OAuth response has no access token: {exc!r}") from exc

        self._token = token
        # Refresh a minute early.
        self._token_expires_at = time.monotonic() + max(0, expires_in - 60)
        return self._token

    def _password(self, timestamp: str) -> str:
        raw = f"{self._shortcode}{self._passkey}{timestamp}".encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    async def _post(self, path: str, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        token = await self._access_token()
        try:
            response = await self._client.post(
                path, json=dict(payload), headers={"Authorization": f"Bearer {token}"}
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise GatewayUnavailable(f"M-Pesa request to {path} failed: {exc}") from exc
        if not isinstance(data, Mapping):
            raise GatewayUnavailable(f"M-Pesa request to {path} returned {type(data).__name__}, expected an object")
        return data

    async def initiate_payment(self, phone: str, amount: int, reference: str) -> GatewayInitiation:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        data = await self._post(
            "/mpesa/stkpush/v1/processrequest",
            {
                "BusinessShortCode": self._shortcode,
                "Password": self._password(timestamp),
                "Timestamp": timestamp,
                "TransactionType": "CustomerPayBillOnline",
                "Amount": amount,
                "PartyA": phone,
                "PartyB": self._shortcode,
                "PhoneNumber": phone,
                "CallBackURL": self._callback_url,
                "AccountReference": reference,
                "TransactionDesc": f"Payment for ticket {reference}",
            },
        )

        if str(data.get("ResponseCode")) == "0":
            checkout_request_id = data.get("CheckoutRequestID")
            if not checkout_request_id:
                # Without it neither the callback nor a status query can be matched.
                raise GatewayUnavailable("M-Pesa accepted the STK push without a CheckoutRequestID")
            return GatewayInitiation(
                accepted=True,
                checkout_request_id=str(checkout_request_id),
                merchant_request_id=data.get("MerchantRequestID"),
            )
        return GatewayInitiation(
            accepted=False,
            reason=str(data.get("ResponseDescription") or data.get("errorMessage") or "STK Push failed"),
        )

    async def query_payment(self, checkout_request_id: str) -> Optional[GatewayResult]:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        data = await self._post(
            "/mpesa/stkpushquery/v1/query",
            {
                "BusinessShortCode": self._shortcode,
                "Password": self._password(timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": checkout_request_id,
            },
        )

        if data.get("errorCode") == _STILL_PROCESSING or "ResultCode" not in data:
            return None
        try:
            result_code = int(data["ResultCode"])
        except (TypeError, ValueError) as exc:
            raise GatewayUnavailable(f"M-Pesa status query returned ResultCode {data['ResultCode']!r}") from exc
        return GatewayResult(
            correlation_id=checkout_request_id,
            result_code=result_code,
            description=str(data.get("ResultDesc", "")),
        )


def parse_mpesa_callback(body: Mapping[str, Any]) -> GatewayResult:
    """
    Read a Daraja STK callback:

        {"Body": {"stkCallback": {"CheckoutRequestID": ..., "ResultCode": 0,
          "ResultDesc": ..., "CallbackMetadata": {"Item": [{"Name": "MpesaReceiptNumber", "Value": ...}]}}}}
    """
    try:
        callback = body["Body"]["stkCallback"]
        correlation_id = str(callback["CheckoutRequestID"])
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedCallback(f"Invalid callback format: {exc}") from exc

    transaction_id = None
    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    for item in items:
        if isinstance(item, Mapping) and item.get("Name") == "MpesaReceiptNumber":
            transaction_id = str(item.get("Value"))

    return GatewayResult(
        correlation_id=correlation_id,
        result_code=result_code,
        description=str(callback.get("ResultDesc", "")),
        transaction_id=transaction_id,
    )


__all__ = [
    "GatewayUnavailable",
    "MalformedCallback",
    "GatewayInitiation",
    "GatewayResult",
    "PaymentGateway",
    "SimulatedGateway",
    "MpesaGateway",
    "parse_mpesa_callback",
]
