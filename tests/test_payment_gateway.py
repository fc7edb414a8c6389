"""
Tests for `services/payment_gateway.py`.

Covers contract rules:
- STK push is accepted only on ResponseCode "0"; correlation ids are returned.
- Transport failures surface as GatewayUnavailable.
- STK query returns None while Daraja is still processing.
- Callback parsing extracts correlation id, result code and receipt number;
  malformed bodies raise MalformedCallback.
- The simulated gateway marks its settlements SIMULATED-.

Daraja is replaced by an httpx.MockTransport.
"""

from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from services.payment_gateway import (
    GatewayUnavailable,
    MalformedCallback,
    MpesaGateway,
    SimulatedGateway,
    parse_mpesa_callback,
)


def _gateway(handler: Callable[[httpx.Request], httpx.Response]) -> MpesaGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://daraja.test")
    return MpesaGateway(
        consumer_key="key",
        consumer_secret="secret",
        business_shortcode="174379",
        passkey="passkey",
        callback_url="https://tickets.test/api/v1/payments/mpesa/callback",
        base_url="https://daraja.test",
        client=client,
    )


def _daraja(stk_response: dict, seen: List[httpx.Request] = None) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/oauth/v1/generate":
            return httpx.Response(200, json={"access_token": "token-1", "expires_in": "3599"})
        return httpx.Response(200, json=stk_response)

    return handler


@pytest.mark.asyncio
async def test_stk_push_accepted() -> None:
    """Verify ResponseCode 0 yields an accepted initiation with correlation ids."""

    seen: List[httpx.Request] = []
    gateway = _gateway(
        _daraja(
            {"ResponseCode": "0", "CheckoutRequestID": "ws_CO_123", "MerchantRequestID": "MR_456"},
            seen,
        )
    )

    result = await gateway.initiate_payment("254712345678", 1500, "TKT-ABC")

    assert result.accepted
    assert result.checkout_request_id == "ws_CO_123"
    assert result.merchant_request_id == "MR_456"
    assert not result.simulated

    push = seen[-1]
    assert push.url.path == "/mpesa/stkpush/v1/processrequest"
    assert push.headers["Authorization"] == "Bearer token-1"
    body = json.loads(push.content)
    assert body["Amount"] == 1500
    assert body["PhoneNumber"] == "254712345678"
    assert body["AccountReference"] == "TKT-ABC"
    await gateway.aclose()


@pytest.mark.asyncio
async def test_stk_push_rejected() -> None:
    """Verify a non-zero ResponseCode is a rejection carrying the gateway's reason."""

    gateway = _gateway(_daraja({"ResponseCode": "1", "ResponseDescription": "Invalid PhoneNumber"}))

    result = await gateway.initiate_payment("254712345678", 1500, "TKT-ABC")

    assert not result.accepted
    assert result.reason == "Invalid PhoneNumber"
    await gateway.aclose()


@pytest.mark.asyncio
async def test_oauth_token_is_cached() -> None:
    """Verify the access token is fetched once for several requests."""

    seen: List[httpx.Request] = []
    gateway = _gateway(_daraja({"ResponseCode": "0", "CheckoutRequestID": "ws_CO_1"}, seen))

    await gateway.initiate_payment("254712345678", 100, "TKT-1")
    await gateway.initiate_payment("254712345678", 100, "TKT-2")

    oauth_calls = [r for r in seen if r.url.path == "/oauth/v1/generate"]
    assert len(oauth_calls) == 1
    await gateway.aclose()


@pytest.mark.asyncio
async def test_unreachable_gateway() -> None:
    """Verify a transport error is GatewayUnavailable."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _gateway(handler)

    with pytest.raises(GatewayUnavailable):
        await gateway.initiate_payment("254712345678", 100, "TKT-1")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_oauth_response_without_token_is_unavailable() -> None:
    """Verify a 200 OAuth answer with no access_token is GatewayUnavailable, not KeyError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errorMessage": "Invalid Authentication passed"})

    gateway = _gateway(handler)

    with pytest.raises(GatewayUnavailable):
        await gateway.initiate_payment("254712345678", 100, "TKT-1")
    await gateway.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("stk_response", [["unexpected"], "maintenance"])
async def test_non_object_response_is_unavailable(stk_response) -> None:
    """Verify a JSON body that is not an object is GatewayUnavailable."""

    gateway = _gateway(_daraja(stk_response))

    with pytest.raises(GatewayUnavailable):
        await gateway.initiate_payment("254712345678", 100, "TKT-1")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_accepted_push_without_checkout_id_is_unavailable() -> None:
    """Verify an acceptance that cannot be correlated later is not reported as accepted."""

    gateway = _gateway(_daraja({"ResponseCode": "0", "MerchantRequestID": "MR_456"}))

    with pytest.raises(GatewayUnavailable):
        await gateway.initiate_payment("254712345678", 100, "TKT-1")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_query_with_unreadable_result_code_is_unavailable() -> None:
    gateway = _gateway(_daraja({"ResultCode": "n/a", "ResultDesc": "?"}))

    with pytest.raises(GatewayUnavailable):
        await gateway.query_payment("ws_CO_123")
    await gateway.aclose()


@pytest.mark.asyncio
async def test_query_still_processing_returns_none() -> None:
    """Verify Daraja's 'still processing' answer is not treated as an outcome."""

    gateway = _gateway(
        _daraja({"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"})
    )

    assert await gateway.query_payment("ws_CO_123") is None
    await gateway.aclose()


@pytest.mark.asyncio
async def test_query_returns_terminal_result() -> None:
    """Verify a query with ResultCode is a terminal result for the checkout id."""

    gateway = _gateway(_daraja({"ResultCode": "1032", "ResultDesc": "Request cancelled by user"}))

    result = await gateway.query_payment("ws_CO_123")

    assert result is not None
    assert result.correlation_id == "ws_CO_123"
    assert result.result_code == 1032
    assert not result.succeeded
    await gateway.aclose()


def test_parse_success_callback() -> None:
    """Verify the receipt number is taken from CallbackMetadata."""

    body = {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "MR_456",
                "CheckoutRequestID": "ws_CO_123",
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [
                        {"Name": "Amount", "Value": 1500},
                        {"Name": "MpesaReceiptNumber", "Value": "QGH7XK2LPA"},
                        {"Name": "PhoneNumber", "Value": 254712345678},
                    ]
                },
            }
        }
    }

    result = parse_mpesa_callback(body)

    assert result.succeeded
    assert result.correlation_id == "ws_CO_123"
    assert result.transaction_id == "QGH7XK2LPA"


def test_parse_failure_callback() -> None:
    """Verify a failed payment callback has no transaction id."""

    body = {
        "Body": {
            "stkCallback": {
                "CheckoutRequestID": "ws_CO_123",
                "ResultCode": 1,
                "ResultDesc": "The balance is insufficient for the transaction.",
            }
        }
    }

    result = parse_mpesa_callback(body)

    assert not result.succeeded
    assert result.transaction_id is None
    assert "insufficient" in result.description


@pytest.mark.parametrize(
    "body",
    [{}, {"Body": {}}, {"Body": {"stkCallback": {"ResultCode": 0}}}, {"Body": {"stkCallback": {"CheckoutRequestID": "x", "ResultCode": "abc"}}}],
)
def test_parse_malformed_callback(body: dict) -> None:
    """Verify malformed bodies raise MalformedCallback."""

    with pytest.raises(MalformedCallback):
        parse_mpesa_callback(body)


@pytest.mark.asyncio
async def test_simulated_gateway_marks_settlements() -> None:
    """Verify simulated settlements are successful and carry the SIMULATED- marker."""

    gateway = SimulatedGateway()

    initiation = await gateway.initiate_payment("254712345678", 100, "TKT-1")
    settlement = SimulatedGateway.settlement_for(initiation.checkout_request_id)

    assert initiation.accepted and initiation.simulated
    assert settlement.succeeded
    assert settlement.transaction_id.startswith("SIMULATED-")
