"""
HMAC-SHA256 verification of webhook deliveries.

The signature header carries `sha256=<hex>` computed over the raw request
body with the shared webhook secret. Comparison is constant-time and happens
before the body is parsed.
"""

import hashlib
import hmac
from typing import Optional

from ..exceptions import WebhookAuthenticationError

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    """Raise WebhookAuthenticationError unless `signature` matches `raw_body`."""
    if not signature:
        raise WebhookAuthenticationError("No signature provided")

    trusted = compute_signature(raw_body, secret).encode("ascii")
    untrusted = signature.strip().encode("utf-8")
    if not hmac.compare_digest(trusted, untrusted):
        raise WebhookAuthenticationError("Invalid signature")
