"""Webhook signature verification.

The messaging gateway signs every webhook delivery with
base64(HMAC-SHA256(channel_secret, raw_body)) and sends it in a request
header. Verification must use the exact raw bytes received, before any
JSON decoding.

Provides:
- compute_signature: Expected base64 signature for a body
- verify_signature: Constant-time check of a provided signature
"""

import base64
import hmac
from hashlib import sha256
from typing import Optional, Union


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(secret: Union[str, bytes], raw_body: bytes) -> str:
    """Compute base64(HMAC_SHA256(secret, raw_body)).

    Do not log the result; it is as sensitive as a one-time credential.
    """
    digest = hmac.new(_as_bytes(secret), raw_body, sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    secret: Union[str, bytes],
    raw_body: bytes,
    provided_signature_b64: Optional[str],
) -> bool:
    """Verify a webhook signature.

    The header is compared as received against the expected base64 text,
    so padding bits, surrounding whitespace and alternative encodings of
    the same digest are all rejected. Never raises on bad input: a
    missing, non-ASCII or wrong-length signature simply fails.

    Args:
        secret: Shared channel secret (must be non-empty)
        raw_body: Exact request body bytes
        provided_signature_b64: Value of the signature header

    Returns:
        True only if the signature matches
    """
    if not secret or not provided_signature_b64:
        return False

    expected = compute_signature(secret, raw_body).encode("ascii")

    try:
        provided = provided_signature_b64.encode("ascii")
    except UnicodeEncodeError:
        return False

    # constant-time compare
    return hmac.compare_digest(expected, provided)
