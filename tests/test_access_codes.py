from datetime import datetime

import pytest

from services.access_codes import AccessCodeIssuer, generate_pin
from services.errors import InvalidInput

CHECK_IN = datetime(2026, 11, 2, 18, 0)
CHECK_OUT = datetime(2026, 11, 2, 20, 0)


def test_pin_is_six_digits_without_leading_zero():
    for _ in range(500):
        pin = generate_pin()
        assert len(pin) == 6
        assert pin.isdigit()
        assert pin[0] != "0"


def test_payload_decodes_with_same_secret():
    issuer = AccessCodeIssuer("s3cret")
    token = issuer.encode_access_payload(42, "123456", CHECK_IN, CHECK_OUT)

    data = issuer.decode_access_payload(token)

    assert data["booking_id"] == 42
    assert data["access_pin"] == "123456"
    assert data["valid_from"] == CHECK_IN
    assert data["valid_until"] == CHECK_OUT
    assert isinstance(data["generated_at"], datetime)


def test_tampered_token_is_rejected():
    issuer = AccessCodeIssuer("s3cret")
    token = issuer.encode_access_payload(42, "123456", CHECK_IN, CHECK_OUT)

    with pytest.raises(InvalidInput):
        issuer.decode_access_payload(("x" if token[0] != "x" else "y") + token[1:])


def test_token_from_other_secret_is_rejected():
    token = AccessCodeIssuer("one").encode_access_payload(1, "654321", CHECK_IN, CHECK_OUT)
    with pytest.raises(InvalidInput):
        AccessCodeIssuer("two").decode_access_payload(token)


def test_issuer_requires_a_secret():
    with pytest.raises(ValueError):
        AccessCodeIssuer("")
