"""
Tests for the ledger API client.

The ledger is faked with httpx.MockTransport.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import json
from decimal import Decimal

import httpx
import pytest

from card_claims.client import LedgerClient, truncate_amount, parse_amount, classify_failure, encode_body
from card_claims.config import ClaimConfig
from card_claims.models import ErrorKind


def make_client(handler):
    config = ClaimConfig(api_base="http://ledger.test/", request_timeout_s=5)
    http = httpx.AsyncClient(base_url=config.api_base, transport=httpx.MockTransport(handler))
    return LedgerClient(config, client=http)


def reply(status, body):
    def handler(request):
        return httpx.Response(status, json=body)
    return handler


def test_truncate_amount_never_rounds_up():
    assert truncate_amount(Decimal("1.999999999")) == Decimal("1.99999999")
    assert truncate_amount(Decimal("10")) == Decimal("10.00000000")
    assert truncate_amount(Decimal("-1.999999999")) == Decimal("-1.99999999")
    assert truncate_amount(0.123456789) == Decimal("0.12345678")


def test_parse_amount_fields():
    assert parse_amount({"claimed": "12.5"}) == Decimal("12.5")
    assert parse_amount({"amount": 3}) == Decimal("3")
    assert parse_amount({"value": "0.1"}) == Decimal("0.1")
    assert parse_amount({"claimed": None, "amount": "7"}) == Decimal("7")
    assert parse_amount({"claimed": "abc"}) is None
    assert parse_amount({"claimed": "NaN"}) is None
    assert parse_amount({}) is None


def test_classify_failure():
    assert classify_failure(429, None)[0] == ErrorKind.COOLDOWN_ACTIVE
    assert classify_failure(400, {"error": "COOLDOWN_ACTIVE"})[0] == ErrorKind.COOLDOWN_ACTIVE
    assert classify_failure(200, {"success": False, "error": "card_not_found"})[0] == ErrorKind.NOT_FOUND
    assert classify_failure(404, {"error": "missing"})[0] == ErrorKind.NOT_FOUND
    assert classify_failure(404, None)[0] == ErrorKind.TRANSIENT
    assert classify_failure(503, {"error": "down"})[0] == ErrorKind.TRANSIENT
    assert classify_failure(400, {"error": "INVALID_CARD"}) == (ErrorKind.UNKNOWN, "INVALID_CARD")


@pytest.mark.asyncio
async def test_claim_success_posts_card_code():
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"success": True, "claimed": "100"})

    async with make_client(handler) as client:
        result = await client.claim("A")

    assert seen == [("/api/card/claim", {"cardCode": "A"})]
    assert result.success
    assert result.amount == Decimal("100")


@pytest.mark.asyncio
async def test_claim_success_without_usable_amount():
    async with make_client(reply(200, {"success": True, "claimed": "n/a"})) as client:
        result = await client.claim("A")
    assert result.success
    assert result.amount is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status,body,kind", [
    (429, {"success": False, "error": "COOLDOWN_ACTIVE"}, ErrorKind.COOLDOWN_ACTIVE),
    (200, {"success": False, "error": "COOLDOWN_ACTIVE"}, ErrorKind.COOLDOWN_ACTIVE),
    (404, {"success": False, "error": "CARD_NOT_FOUND"}, ErrorKind.NOT_FOUND),
    (500, {"success": False, "error": "internal"}, ErrorKind.TRANSIENT),
    (400, {"success": False, "error": "BAD_REQUEST"}, ErrorKind.UNKNOWN),
])
async def test_claim_failures_are_classified(status, body, kind):
    async with make_client(reply(status, body)) as client:
        result = await client.claim("A")
    assert not result.success
    assert result.error_kind == kind
    assert result.status_code == status


@pytest.mark.asyncio
async def test_claim_bare_http_error_is_transient():
    def handler(request):
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    async with make_client(handler) as client:
        result = await client.claim("A")
    assert result.error_kind == ErrorKind.TRANSIENT
    assert result.detail == "HTTP 502"


@pytest.mark.asyncio
async def test_claim_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with make_client(handler) as client:
        result = await client.claim("A")
    assert not result.success
    assert result.error_kind == ErrorKind.TRANSIENT
    assert result.status_code is None


@pytest.mark.asyncio
async def test_claim_connection_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        result = await client.claim("A")
    assert result.error_kind == ErrorKind.TRANSIENT
    assert "refused" in result.detail


@pytest.mark.asyncio
async def test_pay_truncates_amount_before_sending():
    sent = []

    def handler(request):
        sent.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"success": True})

    async with make_client(handler) as client:
        result = await client.pay("A", "R", Decimal("0.123456789"))

    assert result.success
    assert result.amount == Decimal("0.12345678")
    assert sent == [("/api/card/pay", {"fromCard": "A", "toCard": "R", "amount": 0.12345678})]


@pytest.mark.asyncio
async def test_pay_skips_request_when_amount_truncates_to_zero():
    sent = []

    def handler(request):
        sent.append(request)
        return httpx.Response(200, json={"success": True})

    async with make_client(handler) as client:
        result = await client.pay("A", "R", Decimal("0.000000009"))

    assert not result.success
    assert result.error_kind == ErrorKind.UNKNOWN
    assert sent == []


@pytest.mark.asyncio
async def test_pay_failure_carries_detail():
    async with make_client(reply(400, {"success": False, "error": "INSUFFICIENT_FUNDS"})) as client:
        result = await client.pay("A", "R", Decimal("1"))
    assert not result.success
    assert result.error_kind == ErrorKind.UNKNOWN
    assert result.detail == "INSUFFICIENT_FUNDS"


@pytest.mark.asyncio
async def test_pay_sends_exact_decimal_for_large_amounts():
    sent = []

    def handler(request):
        assert request.headers["content-type"] == "application/json"
        sent.append(json.loads(request.content, parse_float=Decimal)["amount"])
        return httpx.Response(200, json={"success": True})

    amount = Decimal("9876543210.987654799")
    async with make_client(handler) as client:
        result = await client.pay("A", "R", amount)

    assert result.success
    assert sent == [Decimal("9876543210.98765479")]
    assert sent[0] <= truncate_amount(amount)


def test_encode_body_keeps_decimal_literals():
    body = encode_body({"fromCard": "A", "amount": Decimal("0.10000000")})
    assert body == '{"fromCard":"A","amount":0.10000000}'
