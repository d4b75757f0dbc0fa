"""
Webhook signature verification

The POS signs each delivery with HMAC-SHA256 over the registered
notification URL followed by the exact raw request body, base64 encoded.
Comparison is constant-time and any failure verifies as False.
"""

import base64
import hashlib
import hmac
from typing import Optional


def compute_signature(body: bytes, secret: str, notification_url: str) -> str:
    """Base64 HMAC-SHA256 of notification_url + body"""
    digest = hmac.new(
        secret.encode("utf-8"),
        notification_url.encode("utf-8") + body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_signature(
    body: bytes,
    signature: Optional[str],
    secret: Optional[str],
    notification_url: str,
) -> bool:
    """
    Check a delivery's signature header.

    Args:
        body: Raw request body, byte for byte as received
        signature: Value of the signature header
        secret: Shared signature key
        notification_url: URL registered with the POS for this subscription

    Returns:
        True only if the signature matches
    """
    if not signature or not secret:
        return False

    try:
        expected = compute_signature(body, secret, notification_url)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
    except Exception:
        return False
