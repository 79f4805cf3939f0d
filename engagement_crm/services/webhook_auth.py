# engagement_crm/services/webhook_auth.py
from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Union

SIGNATURE_VERSION = "v0"
DEFAULT_TOLERANCE = timedelta(minutes=5)


@dataclass(frozen=True)
class Authenticated:
    timestamp: datetime


@dataclass(frozen=True)
class Rejected:
    reason: str


AuthResult = Union[Authenticated, Rejected]


def compute_signature(raw_body: bytes, timestamp: str, secret: bytes) -> str:
    """
    Return the `v0=<hex>` signature the provider computes for a delivery.

    The signed message is `v0:{timestamp}:{raw body}`.
    """
    message = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + raw_body
    digest = hmac.new(secret, message, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def authenticate(
    raw_body: bytes,
    signature_header: str | None,
    timestamp_header: str | None,
    secret: bytes,
    *,
    now: datetime | None = None,
    tolerance: timedelta = DEFAULT_TOLERANCE,
) -> AuthResult:
    """
    Validate that a lifecycle webhook was signed by the provider.

    Rules
    -----
    - A secret must be configured; an empty secret rejects everything.
    - The timestamp header is epoch seconds (milliseconds are tolerated) and
      must be within `tolerance` of `now` in either direction.
    - The signature header must equal `compute_signature(...)`, compared in
      constant time.

    Pure validation: never raises, never mutates state.
    """
    if not secret:
        return Rejected("webhook secret not configured")

    if not signature_header or not timestamp_header:
        return Rejected("missing signature or timestamp header")

    timestamp = _parse_timestamp(timestamp_header)
    if timestamp is None:
        return Rejected("unparseable timestamp header")

    current = now or datetime.now(tz=timezone.utc)
    if abs(current - timestamp) > tolerance:
        return Rejected("timestamp outside tolerance window")

    expected = compute_signature(raw_body, timestamp_header.strip(), secret)
    provided = signature_header.strip()
    if not hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8")):
        return Rejected("signature mismatch")

    return Authenticated(timestamp=timestamp)


def build_url_validation_response(plain_token: str, secret: bytes) -> dict[str, str]:
    """
    Answer the provider's one-time endpoint ownership challenge.
    """
    encrypted = hmac.new(secret, plain_token.encode("utf-8"), hashlib.sha256).hexdigest()
    return {"plainToken": plain_token, "encryptedToken": encrypted}


def _parse_timestamp(value: str) -> datetime | None:
    try:
        raw = float(value.strip())
    except ValueError:
        return None

    # Milliseconds since epoch are ~1e12; seconds are ~1e9.
    if raw > 1e11:
        raw = raw / 1000.0

    try:
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
