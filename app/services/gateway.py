import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from pydantic import BaseModel, Field

from app.core.config import Settings
from app.core.errors import GatewayError
from app.services import signer


logger = logging.getLogger(__name__)

CHECKOUT_TARGET = "/checkout/v1/payment"
STATUS_TARGET = "/orders/v1/status/{invoice_number}"

# Generic payment-method choice -> DOKU payment_method_types.
# An empty tuple lets the gateway offer every method.
PAYMENT_METHOD_TYPES: Dict[str, Tuple[str, ...]] = {
    "QRIS": ("QRIS",),
    "VIRTUAL_ACCOUNT": (
        "VIRTUAL_ACCOUNT_BCA",
        "VIRTUAL_ACCOUNT_BANK_MANDIRI",
        "VIRTUAL_ACCOUNT_BANK_SYARIAH_MANDIRI",
        "VIRTUAL_ACCOUNT_BRI",
        "VIRTUAL_ACCOUNT_BNI",
        "VIRTUAL_ACCOUNT_BANK_DANAMON",
        "VIRTUAL_ACCOUNT_BANK_PERMATA",
        "VIRTUAL_ACCOUNT_BANK_CIMB",
        "VIRTUAL_ACCOUNT_DOKU",
    ),
    "EWALLET": (
        "EMONEY_OVO",
        "EMONEY_DANA",
        "EMONEY_LINKAJA",
        "EMONEY_SHOPEE_PAY",
    ),
    "RETAIL": (
        "ONLINE_TO_OFFLINE_ALFA",
        "ONLINE_TO_OFFLINE_INDOMARET",
    ),
}

Path = Tuple[str, ...]

_URL_PATHS: Tuple[Path, ...] = (("payment", "url"), ("url",))
_VA_NUMBER: Path = ("payment", "virtual_account_info", "virtual_account_number")
_PAYMENT_CODE: Path = ("payment", "payment_code")
_QR_STRING: Path = ("payment", "qr_checkout_string")

# Where each payment artifact lives in the checkout response, per method
# group, in priority order. Unknown groups try every location.
ARTIFACT_EXTRACTION: Dict[str, Dict[str, Tuple[Path, ...]]] = {
    "QRIS": {
        "payment_url": _URL_PATHS,
        "payment_code": (),
        "qr_payload": (_QR_STRING,),
    },
    "VIRTUAL_ACCOUNT": {
        "payment_url": _URL_PATHS,
        "payment_code": (_VA_NUMBER, _PAYMENT_CODE),
        "qr_payload": (),
    },
    "EWALLET": {
        "payment_url": _URL_PATHS,
        "payment_code": (_PAYMENT_CODE,),
        "qr_payload": (),
    },
    "RETAIL": {
        "payment_url": _URL_PATHS,
        "payment_code": (_PAYMENT_CODE,),
        "qr_payload": (),
    },
}
DEFAULT_EXTRACTION: Dict[str, Tuple[Path, ...]] = {
    "payment_url": _URL_PATHS,
    "payment_code": (_VA_NUMBER, _PAYMENT_CODE),
    "qr_payload": (_QR_STRING,),
}


def payment_method_types(method_group: Optional[str]) -> Tuple[str, ...]:
    if not method_group:
        return ()
    return PAYMENT_METHOD_TYPES.get(method_group.upper(), ())


class GatewayConfig(BaseModel):
    client_id: str
    secret_key: str
    base_url: str
    timeout_seconds: float = 30.0
    currency: str = "IDR"

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayConfig":
        return cls(
            client_id=settings.DOKU_CLIENT_ID or "",
            secret_key=settings.DOKU_SECRET_KEY or "",
            base_url=settings.DOKU_BASE_URL,
            timeout_seconds=settings.DOKU_TIMEOUT_SECONDS,
            currency=settings.DOKU_CURRENCY,
        )


class Customer(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    country: str = "ID"


class OrderSpec(BaseModel):
    invoice_number: str
    amount: int
    currency: str = "IDR"
    payment_due_minutes: int = 1440
    method_group: Optional[str] = None
    payment_method_types: List[str] = Field(default_factory=list)
    customer: Customer

    def to_payload(self) -> Dict[str, Any]:
        return {
            "order": {
                "invoice_number": self.invoice_number,
                "amount": self.amount,
                "currency": self.currency,
            },
            "payment": {
                "payment_due_date": self.payment_due_minutes,
                "payment_method_types": list(self.payment_method_types),
            },
            "customer": self.customer.model_dump(),
        }


class GatewayResult(BaseModel):
    invoice_number: str
    payment_url: Optional[str] = None
    payment_code: Optional[str] = None
    qr_payload: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class GatewayStatus(BaseModel):
    invoice_number: str
    status: str
    raw: Dict[str, Any] = Field(default_factory=dict)

    @property
    def normalized(self) -> str:
        return self.status.strip().lower()


def unwrap(envelope: Dict[str, Any]) -> Dict[str, Any]:
    """The gateway sometimes nests the real payload under ``response``."""
    inner = envelope.get("response")
    if isinstance(inner, dict):
        return inner
    return envelope


def _dig(source: Any, path: Path) -> Any:
    for key in path:
        if not isinstance(source, dict):
            return None
        source = source.get(key)
    return source


def extract_artifact(sources: Sequence[Dict[str, Any]], paths: Tuple[Path, ...]) -> Optional[str]:
    for path in paths:
        for source in sources:
            value = _dig(source, path)
            if value not in (None, ""):
                return str(value)
    return None


def normalize_checkout_response(
    envelope: Dict[str, Any],
    method_group: Optional[str],
    fallback_invoice: str,
) -> GatewayResult:
    payload = unwrap(envelope)
    sources = [payload] if payload is envelope else [payload, envelope]
    rules = ARTIFACT_EXTRACTION.get((method_group or "").upper(), DEFAULT_EXTRACTION)
    echoed_invoice = extract_artifact(sources, (("order", "invoice_number"),))
    return GatewayResult(
        invoice_number=echoed_invoice or fallback_invoice,
        payment_url=extract_artifact(sources, rules["payment_url"]),
        payment_code=extract_artifact(sources, rules["payment_code"]),
        qr_payload=extract_artifact(sources, rules["qr_payload"]),
        raw=envelope,
    )


class GatewayClient:
    """Signed calls to the DOKU Checkout API."""

    def __init__(self, config: GatewayConfig, transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self._transport = transport

    def _headers(self, request_target: str, body_digest: Optional[str]) -> Dict[str, str]:
        request_id = signer.new_request_id()
        timestamp = signer.request_timestamp()
        headers = {
            "Client-Id": self.config.client_id,
            "Request-Id": request_id,
            "Request-Timestamp": timestamp,
            "Signature": signer.sign(
                self.config.client_id,
                request_id,
                timestamp,
                request_target,
                body_digest,
                self.config.secret_key,
            ),
        }
        if body_digest is not None:
            headers["Digest"] = body_digest
            headers["Content-Type"] = "application/json"
        return headers

    def _send(self, method: str, request_target: str, body: Optional[bytes] = None) -> Dict[str, Any]:
        body_digest = signer.digest(body) if body is not None else None
        headers = self._headers(request_target, body_digest)
        logger.info(
            "gateway %s %s request_id=%s", method, request_target, headers["Request-Id"]
        )
        try:
            with httpx.Client(
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = client.request(method, request_target, content=body, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("gateway timeout on %s: %s", request_target, exc)
            raise GatewayError(f"Gateway timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning("gateway network error on %s: %s", request_target, exc)
            raise GatewayError(f"Gateway request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            error_body = data if data is not None else response.text
            logger.error(
                "gateway %s %s returned %s: %s",
                method,
                request_target,
                response.status_code,
                error_body,
            )
            raise GatewayError(
                "Gateway rejected the request",
                status_code=response.status_code,
                body=error_body,
            )

        if not isinstance(data, dict):
            raise GatewayError(
                "Gateway returned an unreadable body",
                status_code=response.status_code,
                body=response.text,
            )
        logger.info("gateway %s %s -> %s", method, request_target, response.status_code)
        return data

    def create_order(self, spec: OrderSpec) -> GatewayResult:
        # Serialized once: these bytes are both hashed and sent
        body = json.dumps(spec.to_payload(), separators=(",", ":")).encode("utf-8")
        envelope = self._send("POST", CHECKOUT_TARGET, body)
        return normalize_checkout_response(envelope, spec.method_group, spec.invoice_number)

    def query_status(self, invoice_number: str) -> GatewayStatus:
        request_target = STATUS_TARGET.format(invoice_number=invoice_number)
        envelope = self._send("GET", request_target)
        payload = unwrap(envelope)
        status = extract_artifact([payload, envelope], (("transaction", "status"),))
        if not status:
            raise GatewayError("Gateway status response has no transaction status", body=envelope)
        return GatewayStatus(invoice_number=invoice_number, status=status, raw=envelope)
