from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from services.errors import InvalidInput

CENTS = Decimal("0.01")


def to_utc_naive(value: datetime) -> datetime:
    # aware datetimes are converted, naive ones are taken to be UTC already
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value, field="datetime"):
    """Parse an ISO 8601 string like 2026-01-20T18:00:00 or ...+05:30 to naive UTC."""
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{field} is required")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_utc_naive(datetime.fromisoformat(text))
    except ValueError:
        raise InvalidInput(f"Invalid {field}. Use ISO format e.g. 2026-01-20T18:00:00")


def parse_gateway_time(value):
    """Gateway timestamps are informational; unparsable ones become None."""
    if not value:
        return None
    try:
        return parse_datetime(value)
    except InvalidInput:
        return None


# largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


def _to_cents(value, field):
    try:
        amount = Decimal(str(value))
        if amount.is_finite():
            amount = amount.quantize(CENTS)
    except (InvalidOperation, ValueError):
        raise InvalidInput(f"{field} must be a number")
    if not amount.is_finite():
        raise InvalidInput(f"{field} must be a number")
    if amount > MAX_AMOUNT:
        raise InvalidInput(f"{field} cannot exceed {MAX_AMOUNT}")
    return amount


def parse_amount(value, field="amount") -> Decimal:
    amount = _to_cents(value, field)
    if amount <= 0:
        raise InvalidInput(f"{field} must be greater than zero")
    return amount


def parse_optional_amount(value, field="amount") -> Decimal:
    if value in (None, "", 0):
        return Decimal("0.00")
    amount = _to_cents(value, field)
    if amount < 0:
        raise InvalidInput(f"{field} cannot be negative")
    return amount


def parse_int(value, field="id") -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be an integer")
    if number <= 0:
        raise InvalidInput(f"{field} must be positive")
    return number


def is_valid_email(email) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def customer_details(user_id: int, data) -> dict:
    """Normalize customer details into the shape the gateway expects."""
    data = data or {}
    if not isinstance(data, dict):
        raise InvalidInput("customer_details must be an object")

    name = (data.get("customer_name") or data.get("name") or "").strip()
    email = (data.get("customer_email") or data.get("email") or "").strip().lower()
    phone = str(data.get("customer_phone") or data.get("phone") or "").strip()

    if not name:
        raise InvalidInput("customer name is required")
    if not is_valid_email(email):
        raise InvalidInput("customer email is invalid")
    digits = phone.lstrip("+")
    if not digits.isdigit() or not 10 <= len(digits) <= 15:
        raise InvalidInput("customer phone must be 10 to 15 digits")

    return {
        "customer_id": f"user_{user_id}",
        "customer_name": name,
        "customer_email": email,
        "customer_phone": phone,
    }
