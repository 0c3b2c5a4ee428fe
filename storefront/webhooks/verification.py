"""Webhook signature verification using constant-time HMAC over the raw body.

Security contract:
- Verification runs over the exact bytes received; the body is parsed only
  after the signature matches
- All comparisons use hmac.compare_digest() (constant-time)
- Timestamp tolerance (default 300s) rejects replayed and future-dated events
- Multiple v1 signatures are accepted (secret rotation)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time

from storefront.errors import SignatureInvalid, SignatureMissing
from storefront.models import VerifiedEvent

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"

DEFAULT_TOLERANCE_SECONDS = 300


def _parse_header(signature_header: str) -> tuple[int, list[str]]:
    """Split ``t=<ts>,v1=<sig>[,v1=<sig>...]`` into timestamp and v1 signatures."""
    timestamp_str = None
    v1_sigs: list[str] = []
    for item in signature_header.split(","):
        kv = item.strip().split("=", 1)
        if len(kv) != 2:
            continue
        key, value = kv
        if key == "t":
            timestamp_str = value
        elif key == "v1":
            v1_sigs.append(value)

    if not timestamp_str:
        raise SignatureInvalid("Signature header has no timestamp")
    try:
        timestamp = int(timestamp_str)
    except ValueError:
        raise SignatureInvalid("Signature timestamp is not an integer") from None
    if not v1_sigs:
        raise SignatureInvalid("Signature header has no v1 signature")
    return timestamp, v1_sigs


def _expected_signature(raw_body: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def compute_signature_header(
    raw_body: bytes, secret: str, timestamp: int | None = None
) -> str:
    """Build a valid signature header for ``raw_body`` (test and CLI helper)."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={_expected_signature(raw_body, secret, ts)}"


def _parse_event(raw_body: bytes) -> VerifiedEvent:
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise SignatureInvalid("Signed payload is not valid JSON") from None

    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise SignatureInvalid("Signed payload is not an event object")

    data = payload.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    event_id = payload.get("id")
    return VerifiedEvent(
        id=str(event_id) if event_id is not None else "",
        type=payload["type"],
        data=obj if isinstance(obj, dict) else {},
        created=payload.get("created"),
    )


def verify(
    raw_body: bytes,
    signature_header: str | None,
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> VerifiedEvent:
    """Verify a webhook and return the parsed event.

    Args:
        raw_body: Raw request body bytes, exactly as received
        signature_header: Value of the Stripe-Signature header
        secret: Shared webhook signing secret
        tolerance_seconds: Maximum allowed clock distance of the signed timestamp
        now: Current unix time (defaults to time.time())

    Raises:
        SignatureMissing: No signature header
        SignatureInvalid: Bad format, mismatch, stale timestamp or bad payload
    """
    if not signature_header:
        raise SignatureMissing("Signature missing")
    if not secret:
        # Fail closed on an empty secret
        raise SignatureInvalid("No webhook secret configured")

    timestamp, v1_sigs = _parse_header(signature_header)

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        logger.warning("Webhook timestamp outside tolerance: %s", timestamp)
        raise SignatureInvalid("Signature timestamp outside tolerance")

    expected = _expected_signature(raw_body, secret, timestamp).encode("ascii")
    # Header values may carry any latin-1 text; compare as bytes
    if not any(
        hmac.compare_digest(expected, sig.encode("utf-8", "surrogateescape"))
        for sig in v1_sigs
    ):
        raise SignatureInvalid("No matching signature")

    return _parse_event(raw_body)
