"""Hashing utilities: quote pricing signatures and cache keys.

Security:
- Pricing signatures use HMAC-SHA256 over the canonical JSON of the quote
  terms, so a client cannot alter a total or a date and keep a valid token.
- Secret key required from environment.
"""

import base64
import hashlib
import hmac
import json
import os
from typing import Any


def _get_quote_signing_secret() -> bytes:
    """Get HMAC secret for pricing signatures.

    Raises:
        RuntimeError: If QUOTE_SIGNING_SECRET is not configured.
    """
    secret = os.environ.get("QUOTE_SIGNING_SECRET")
    if not secret:
        raise RuntimeError(
            "QUOTE_SIGNING_SECRET not configured. "
            "Generate with: openssl rand -hex 32"
        )
    return secret.encode()


def canonical_json(terms: dict[str, Any]) -> str:
    """Serialize terms deterministically (sorted keys, no whitespace)."""
    return json.dumps(terms, sort_keys=True, separators=(",", ":"), default=str)


def sign_pricing(terms: dict[str, Any]) -> str:
    """Generate the pricing signature for a quote's binding terms.

    Returns:
        Base64url-encoded HMAC digest without padding.
    """
    secret = _get_quote_signing_secret()
    digest = hmac.new(secret, canonical_json(terms).encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def verify_pricing(terms: dict[str, Any], signature: str) -> bool:
    """Check a signature against the terms in constant time.

    Compares bytes, so a client-supplied value with non-ASCII characters is
    a mismatch rather than a TypeError.
    """
    expected = sign_pricing(terms).encode()
    return hmac.compare_digest(expected, (signature or "").encode("utf-8", "surrogatepass"))


def stable_key(*parts: Any) -> str:
    """SHA-256 hex digest of colon-joined parts (deterministic cache keys)."""
    raw = ":".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode()).hexdigest()
