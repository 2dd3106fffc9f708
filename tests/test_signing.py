import hashlib
import hmac

from transcriber.signing import (
    callback_token,
    header_signature,
    verify_body,
    verify_delivery,
    verify_token,
)

SECRET = "s3cret"
BODY = b'{"transcript": "Hello world."}'


def _sign(body: bytes) -> str:
    return hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


def test_body_signature_accepts_plain_and_prefixed_hex():
    sig = _sign(BODY)
    assert verify_body(SECRET, BODY, sig)
    assert verify_body(SECRET, BODY, f"sha256={sig.upper()}")
    assert not verify_body(SECRET, BODY + b" ", sig)
    assert not verify_body("", BODY, sig)


def test_url_token_is_hmac_of_job_id():
    token = callback_token(SECRET, "j1")
    assert token == hmac.new(SECRET.encode(), b"j1", hashlib.sha256).hexdigest()
    assert verify_token(SECRET, "j1", token)
    assert not verify_token(SECRET, "j2", token)
    assert not verify_token(SECRET, "j1", None)


def test_non_ascii_values_do_not_verify():
    assert not verify_token(SECRET, "j1", "\u00e9")
    assert not verify_body(SECRET, BODY, "sha256=caf\u00e9")
    assert verify_delivery(SECRET, BODY, "j1", signature="\u00fc", token="\u00e9") is None


def test_header_lookup_uses_first_present_name():
    headers = {"x-signature": "b", "x-dg-signature": "a"}
    assert header_signature(headers, ("x-dg-signature", "x-signature")) == "a"
    assert header_signature({}, ("x-dg-signature",)) is None


def test_verify_delivery_reports_channel():
    assert verify_delivery(SECRET, BODY, "j1", signature=_sign(BODY), token=None) == "header"
    assert verify_delivery(SECRET, BODY, "j1", signature="bogus", token=callback_token(SECRET, "j1")) == "url_token"
    assert verify_delivery(SECRET, BODY, "j1", signature="bogus", token="bogus") is None
