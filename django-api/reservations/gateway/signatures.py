"""HMAC-SHA256 signatures on gateway status notifications.

The gateway signs the raw request body with the shared webhook secret and
sends the hex digest in the ``x-gateway-signature`` header.
"""

import hashlib
import hmac

SIGNATURE_HEADER = "HTTP_X_GATEWAY_SIGNATURE"


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify(secret: str, body: bytes, signature: str | None) -> bool:
    """Check a notification signature in constant time. An empty secret verifies nothing."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign(secret, body), signature.strip().lower())
