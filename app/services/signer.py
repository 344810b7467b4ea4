"""
Request signing for the DOKU Checkout API.

Every request carries ``Client-Id``, ``Request-Id``, ``Request-Timestamp``
and ``Signature`` headers. Requests with a body also carry ``Digest``,
which must be computed over the exact bytes put on the wire.
"""
import base64
import hashlib
import hmac
import itertools
import time
from datetime import datetime, timezone
from typing import Optional, Union


SIGNATURE_PREFIX = "HMACSHA256="

_request_counter = itertools.count(1)


def _to_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def digest(body: Union[bytes, str]) -> str:
    """Base64 of the raw SHA-256 hash of ``body``."""
    return base64.b64encode(hashlib.sha256(_to_bytes(body)).digest()).decode("ascii")


def string_to_sign(
    client_id: str,
    request_id: str,
    timestamp: str,
    request_target: str,
    body_digest: Optional[str] = None,
) -> str:
    lines = [
        f"Client-Id:{client_id}",
        f"Request-Id:{request_id}",
        f"Request-Timestamp:{timestamp}",
        f"Request-Target:{request_target}",
    ]
    if body_digest is not None:
        lines.append(f"Digest:{body_digest}")
    return "\n".join(lines)


def sign(
    client_id: str,
    request_id: str,
    timestamp: str,
    request_target: str,
    body_digest: Optional[str],
    secret_key: str,
) -> str:
    """
    Build the ``Signature`` header value.

    Pass ``body_digest=None`` for bodiless requests (status queries): the
    ``Digest`` line is then left out of the signed string entirely.
    """
    component = string_to_sign(client_id, request_id, timestamp, request_target, body_digest)
    mac = hmac.new(_to_bytes(secret_key), component.encode("utf-8"), hashlib.sha256).digest()
    return SIGNATURE_PREFIX + base64.b64encode(mac).decode("ascii")


def verify(
    signature: str,
    client_id: str,
    request_id: str,
    timestamp: str,
    request_target: str,
    body_digest: Optional[str],
    secret_key: str,
) -> bool:
    expected = sign(client_id, request_id, timestamp, request_target, body_digest, secret_key)
    return hmac.compare_digest(expected.encode("utf-8"), _to_bytes(signature or ""))


def new_request_id() -> str:
    # Millisecond timestamp plus a process-wide counter: unique per process
    return f"REQ-{int(time.time() * 1000)}-{next(_request_counter)}"


def request_timestamp(now: Optional[datetime] = None) -> str:
    """UTC timestamp with second precision and a ``Z`` suffix."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%SZ")
