from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-delhivery-signature"


def _as_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def compute_signature(raw_body: Union[bytes, str], secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of the body, keyed with the shared webhook secret."""
    return hmac.new(_as_bytes(secret), _as_bytes(raw_body), hashlib.sha256).hexdigest()


def verify_signature(raw_body: Union[bytes, str], header_signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Verify a Delhivery webhook signature against the exact request body.

    With no secret configured verification is skipped (fail-open, meant for
    local/staging); a configured secret with no header always fails.
    """
    if not secret:
        logger.warning("DELHIVERY_WEBHOOK_SECRET not set, skipping webhook signature verification")
        return True

    computed = compute_signature(raw_body, secret)
    if not header_signature:
        logger.error("Missing %s header on Delhivery webhook (computed=%s)", SIGNATURE_HEADER, computed)
        return False

    received = str(header_signature)
    if not hmac.compare_digest(computed.encode("utf-8"), received.encode("utf-8")):
        logger.error("Delhivery webhook signature mismatch: received=%s computed=%s", received, computed)
        return False
    return True
