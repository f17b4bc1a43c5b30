"""
Signature verification for inbound webhooks.

Both webhook sources sign with HMAC-SHA256 and a shared secret:

    Payment gateway:  Stripe scheme, header "t=1700000000,v1=<hex>[,v1=<hex>...]"
                      checked with stripe.WebhookSignature.verify_header
    Print partner:    hex(HMAC(secret, raw_body))
                      header: "<hex>"

RAW BYTES ONLY:
    Every function here takes the request body exactly as received.
    Re-serializing parsed JSON can change key order or whitespace and
    invalidate the signature, so callers must pass request.get_data().

Comparison is constant time on both paths.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union

import stripe

from logging_config import get_logger


logger = get_logger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

BytesLike = Union[bytes, bytearray, str]


def _to_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


def compute_signature(payload: BytesLike, secret: str) -> str:
    """Hex HMAC-SHA256 of payload keyed with the UTF-8 encoded secret."""
    return hmac.new(_to_bytes(secret), _to_bytes(payload), hashlib.sha256).hexdigest()


def verify(raw_body: BytesLike, signature_header: Optional[str], secret: str) -> bool:
    """
    Verify a hex HMAC-SHA256 signature over the untouched request bytes.

    Args:
        raw_body: Request body exactly as received
        signature_header: Hex digest supplied by the sender
        secret: Shared secret

    Returns:
        True only if the signature matches
    """
    if not signature_header or not secret:
        return False

    expected = compute_signature(raw_body, secret)
    provided = signature_header.strip().lower()
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii", "replace"))


def verify_payment_signature(
    raw_body: BytesLike,
    signature_header: Optional[str],
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """
    Verify a payment gateway signature (signed payload is "timestamp.body").

    Args:
        raw_body: Request body exactly as received
        signature_header: Value of the Stripe-Signature header
        secret: Endpoint signing secret
        tolerance_seconds: Max age of the timestamp; 0 disables the check

    Returns:
        True if any v1 signature matches and the timestamp is fresh
    """
    if not signature_header or not secret:
        return False

    # The library formats the signed payload as text
    try:
        payload = _to_bytes(raw_body).decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Payment webhook body is not UTF-8")
        return False

    try:
        stripe.WebhookSignature.verify_header(
            payload, signature_header, secret, tolerance=tolerance_seconds or None
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning(f"Payment signature rejected: {exc}")
        return False
    return True


def verify_partner_signature(
    raw_body: BytesLike,
    signature_header: Optional[str],
    secret: str
) -> bool:
    """Verify a print partner signature (signed payload is the body alone)."""
    return verify(raw_body, signature_header, secret)
