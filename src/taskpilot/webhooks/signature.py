"""GitHub webhook HMAC-SHA256 signatures."""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Signature header value GitHub sends for raw_body."""
    digest = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, raw_body: bytes, signature_header: str | None) -> bool:
    """Check an X-Hub-Signature-256 header against the raw request body.

    The comparison is constant-time. A missing or malformed header never
    verifies.
    """
    if not secret or not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(compute_signature(secret, raw_body), signature_header)
