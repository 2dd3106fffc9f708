"""
HMAC-SHA256 helpers for provider callbacks.

Two independent channels authenticate a delivery: the provider-native
signature header over the raw body, and a ``cb_sig`` token over the job id
that we embed in the callback URL at dispatch time (relays sometimes strip
custom headers but keep the query string).
"""

import hashlib
import hmac
from typing import Mapping, Optional, Sequence


def hmac_hex(secret: str, message: bytes | str) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def callback_token(secret: str, job_id: str) -> str:
    return hmac_hex(secret, job_id)


def _strip_scheme(value: str) -> str:
    value = value.strip()
    return value[7:] if value.lower().startswith("sha256=") else value


def header_signature(headers: Mapping[str, str], names: Sequence[str]) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value:
            return value
    return None


def verify_body(secret: str, raw_body: bytes, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    expected = hmac_hex(secret, raw_body)
    return hmac.compare_digest(expected.lower().encode(), _strip_scheme(signature).lower().encode("utf-8"))


def verify_token(secret: str, job_id: str, token: Optional[str]) -> bool:
    if not secret or not token:
        return False
    return hmac.compare_digest(callback_token(secret, job_id).encode(), token.strip().lower().encode("utf-8"))


def verify_delivery(secret: str, raw_body: bytes, job_id: str, *,
                    signature: Optional[str], token: Optional[str]) -> Optional[str]:
    """Return which channel validated ("header" / "url_token"), or None."""
    if verify_body(secret, raw_body, signature):
        return "header"
    if verify_token(secret, job_id, token):
        return "url_token"
    return None
