from decimal import Decimal

import pytest

from services.errors import InvalidInput
from services.pod_service import PodService
from utils.validation import MAX_AMOUNT, parse_amount, parse_optional_amount


@pytest.mark.parametrize("value, expected", [
    (500, Decimal("500.00")),
    ("250.5", Decimal("250.50")),
    ("0.006", Decimal("0.01")),
    ("9999999999.99", MAX_AMOUNT),
])
def test_parse_amount_rounds_to_cents(value, expected):
    assert parse_amount(value) == expected


@pytest.mark.parametrize("value", ["1e30", "-1e30", "10000000000", "1e10", "NaN", "Infinity", "abc", None, 0, "-5"])
def test_parse_amount_rejects(value):
    with pytest.raises(InvalidInput):
        parse_amount(value)


@pytest.mark.parametrize("value", ["1e30", "10000000000", "-1", "sNaN"])
def test_parse_optional_amount_rejects(value):
    with pytest.raises(InvalidInput):
        parse_optional_amount(value, "tax_amount")


def test_parse_optional_amount_defaults_to_zero():
    assert parse_optional_amount(None) == Decimal("0.00")
    assert parse_optional_amount("") == Decimal("0.00")
    assert parse_optional_amount("12.346") == Decimal("12.35")


@pytest.mark.parametrize("price", ["1e30", "10000000000", "0", "free"])
def test_pod_price_is_bounded(price):
    with pytest.raises(InvalidInput) as excinfo:
        PodService._clean({"pod_number": "P-1", "price_per_hour": price}, partial=False)
    assert "price_per_hour" in excinfo.value.message
