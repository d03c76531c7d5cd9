import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to app.py as podslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "podslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}
    # sqlite only: how long a writer waits for the lock before giving up
    SQLITE_BUSY_TIMEOUT_SECONDS = int(os.getenv("SQLITE_BUSY_TIMEOUT_SECONDS", "30"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "podslot_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Bookings: how long an unconfirmed booking keeps its slot (0 = until cancelled)
    BOOKING_PENDING_HOLD_MINUTES = int(os.getenv("BOOKING_PENDING_HOLD_MINUTES", "30"))

    # Payments (Cashfree)
    CASHFREE_CLIENT_ID = os.getenv("CASHFREE_CLIENT_ID")
    CASHFREE_CLIENT_SECRET = os.getenv("CASHFREE_CLIENT_SECRET")
    CASHFREE_ENVIRONMENT = os.getenv("CASHFREE_ENVIRONMENT", "sandbox")  # sandbox | production
    CASHFREE_API_VERSION = os.getenv("CASHFREE_API_VERSION", "2023-08-01")
    GATEWAY_TIMEOUT_SECONDS = int(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))

    DEFAULT_PAYMENT_PROVIDER = os.getenv("DEFAULT_PAYMENT_PROVIDER", "cashfree")
    PAYMENT_CURRENCY = "INR"
    PAYMENT_RETURN_URL = os.getenv("PAYMENT_RETURN_URL")
    PAYMENT_NOTIFY_URL = os.getenv("PAYMENT_NOTIFY_URL")
    ORDER_SOURCE_TAG = os.getenv("ORDER_SOURCE_TAG", "metropodz_app")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    BCRYPT_ROUNDS = 4
    LOG_LEVEL = "WARNING"
    CASHFREE_CLIENT_ID = "test-client"
    CASHFREE_CLIENT_SECRET = "test-webhook-secret"
    PAYMENT_RETURN_URL = "https://app.example.test/payments/return"
    PAYMENT_NOTIFY_URL = "https://api.example.test/payments/webhook"
