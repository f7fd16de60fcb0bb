"""
Ledger API Client - claim and pay calls against the card ledger.

Every call returns a ClaimResult/PayResult. Transport failures (timeouts,
connection errors, bare HTTP errors) come back in the same shape as
application errors, so callers only ever branch on ErrorKind.
"""
import httpx
import json
import logging
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional
from card_claims.config import ClaimConfig
from card_claims.models import ClaimResult, PayResult, ErrorKind

log = logging.getLogger(__name__)

# Smallest unit the ledger accepts
AMOUNT_PLACES = 8

AMOUNT_FIELDS = ("claimed", "amount", "value")


def truncate_amount(value, places: int = AMOUNT_PLACES) -> Decimal:
    """Truncate toward zero at `places` decimals (never rounds up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)


def parse_amount(data: dict) -> Optional[Decimal]:
    """First usable amount field of a claim response, None if unparsable."""
    for key in AMOUNT_FIELDS:
        raw = data.get(key)
        if raw is None or raw == "" or isinstance(raw, bool):
            continue
        try:
            amount = Decimal(str(raw))
        except InvalidOperation:
            return None
        return amount if amount.is_finite() else None
    return None


def encode_body(payload: dict) -> str:
    """Compact JSON body; Decimal values are written as exact number literals."""
    literals = {}

    def default(obj):
        if isinstance(obj, Decimal):
            token = f"@@decimal{len(literals)}@@"
            literals[token] = format(obj, "f")
            return token
        raise TypeError(f"{type(obj).__name__} is not JSON serializable")

    body = json.dumps(payload, separators=(",", ":"), default=default)
    for token, literal in literals.items():
        body = body.replace(f'"{token}"', literal)
    return body


def _json_body(resp: httpx.Response) -> Optional[dict]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _error_text(data: Optional[dict]) -> str:
    if not data:
        return ""
    err = data.get("error") or data.get("message") or ""
    if isinstance(err, dict):
        err = err.get("code") or err.get("message") or str(err)
    return str(err)


def classify_failure(status_code: int, data: Optional[dict]) -> tuple[ErrorKind, str]:
    """Map an unsuccessful HTTP response to an ErrorKind and detail text."""
    error = _error_text(data)
    upper = error.upper()
    detail = error or f"HTTP {status_code}"

    if status_code == 429 or "COOLDOWN_ACTIVE" in upper:
        return ErrorKind.COOLDOWN_ACTIVE, detail
    if "CARD_NOT_FOUND" in upper or (status_code == 404 and data is not None):
        return ErrorKind.NOT_FOUND, detail
    if status_code >= 500:
        return ErrorKind.TRANSIENT, detail
    if data is None and not 200 <= status_code < 300:
        # No structured body: a proxy or routing error, not a ledger answer
        return ErrorKind.TRANSIENT, detail
    return ErrorKind.UNKNOWN, detail


class LedgerClient:
    """
    Async client for the card ledger.

    Endpoints:
    - POST /card/claim {cardCode}
    - POST /card/pay {fromCard, toCard, amount}
    """

    def __init__(self, config: ClaimConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client or httpx.AsyncClient(
            base_url=config.api_base,
            timeout=config.request_timeout_s,
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def _post(self, path: str, payload: dict):
        """
        POST a JSON payload.

        Returns (response, body, error) where error is a (kind, detail)
        tuple for transport failures and None otherwise.
        """
        try:
            resp = await self.client.post(
                path,
                content=encode_body(payload),
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as e:
            return None, None, (ErrorKind.TRANSIENT, f"timeout: {e}" if str(e) else "timeout")
        except httpx.HTTPError as e:
            return None, None, (ErrorKind.TRANSIENT, str(e) or type(e).__name__)
        return resp, _json_body(resp), None

    async def claim(self, card_code: str) -> ClaimResult:
        """Collect the accrued balance of a card."""
        resp, data, transport_error = await self._post("/card/claim", {"cardCode": card_code})
        if transport_error:
            kind, detail = transport_error
            log.debug(f"claim {card_code}: transport error {detail}")
            return ClaimResult.fail(kind, detail)

        if resp.is_success and data is not None and data.get("success"):
            return ClaimResult.ok(parse_amount(data))

        kind, detail = classify_failure(resp.status_code, data)
        return ClaimResult.fail(kind, detail, resp.status_code)

    async def pay(self, from_card: str, to_card: str, amount) -> PayResult:
        """Transfer `amount` (truncated to the ledger unit) between cards."""
        truncated = truncate_amount(amount)
        if truncated <= 0:
            return PayResult.fail(ErrorKind.UNKNOWN, f"amount {amount} truncates to zero", amount=truncated)

        payload = {"fromCard": from_card, "toCard": to_card, "amount": truncated}
        resp, data, transport_error = await self._post("/card/pay", payload)
        if transport_error:
            kind, detail = transport_error
            return PayResult.fail(kind, detail, amount=truncated)

        if resp.is_success and data is not None and data.get("success"):
            return PayResult.ok(truncated)

        kind, detail = classify_failure(resp.status_code, data)
        return PayResult.fail(kind, detail, resp.status_code, amount=truncated)
