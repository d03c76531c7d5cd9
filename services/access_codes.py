import secrets
from datetime import datetime

from itsdangerous import BadSignature, URLSafeSerializer

from models.db import utcnow
from services.errors import InvalidInput

ACCESS_CODE_SALT = "access-code"


def generate_pin() -> str:
    # 100000-999999, never a leading zero
    return str(100000 + secrets.randbelow(900000))


class AccessCodeIssuer:
    """
    Issues the door PIN and the signed access token rendered as a QR code.

    The token is opaque to clients; only a holder of the app secret can
    decode or forge one.
    """

    def __init__(self, secret_key: str):
        if not secret_key:
            raise ValueError("secret_key is required to sign access codes")
        self._serializer = URLSafeSerializer(secret_key, salt=ACCESS_CODE_SALT)

    def generate_pin(self) -> str:
        return generate_pin()

    def encode_access_payload(self, booking_id: int, pin: str, valid_from: datetime, valid_until: datetime) -> str:
        return self._serializer.dumps({
            "booking_id": booking_id,
            "access_pin": pin,
            "valid_from": valid_from.isoformat(),
            "valid_until": valid_until.isoformat(),
            "generated_at": utcnow().isoformat(),
        })

    def decode_access_payload(self, token: str) -> dict:
        try:
            data = self._serializer.loads(token)
        except BadSignature as exc:
            raise InvalidInput("Access code is not valid") from exc

        return {
            "booking_id": data["booking_id"],
            "access_pin": data["access_pin"],
            "valid_from": datetime.fromisoformat(data["valid_from"]),
            "valid_until": datetime.fromisoformat(data["valid_until"]),
            "generated_at": datetime.fromisoformat(data["generated_at"]),
        }
