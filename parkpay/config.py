import os
from decimal import Decimal


def _normalize_db_url(url: str) -> str:
    """
    Normalize DATABASE_URL so SQLAlchemy loads the psycopg v3 driver.
    """
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg://" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        return "sqlite:///parkpay.db"
    return _normalize_db_url(url)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Migrations are not shipped; tables are created on startup
    AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "true").lower() == "true"

    # Bearer tokens issued by the identity provider
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-jwt-secret-key")
    JWT_ALGORITHM = "HS256"
    JWT_TOKEN_LOCATION = ["headers"]

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    CURRENCY = os.getenv("PAYMENT_CURRENCY", "jpy")

    # Redirect targets are always rebuilt on this trusted base
    PUBLIC_SITE_URL = os.getenv("PUBLIC_SITE_URL", "https://dogparkjp.com").rstrip("/")
    FALLBACK_SUCCESS_URL = os.getenv(
        "FALLBACK_SUCCESS_URL",
        "https://dogparkjp.com/payment-return?success=true&session_id={CHECKOUT_SESSION_ID}",
    )
    FALLBACK_CANCEL_URL = os.getenv(
        "FALLBACK_CANCEL_URL", "https://dogparkjp.com/payment-return?canceled=true"
    )

    # Messaging collaborator (push notifications)
    MESSAGING_WEBHOOK_URL = os.getenv("MESSAGING_WEBHOOK_URL", "")
    MESSAGING_TIMEOUT_SECONDS = float(os.getenv("MESSAGING_TIMEOUT_SECONDS", "5"))

    # Background processing of webhook events: "queue" (RQ) or "inline"
    WEBHOOK_PROCESSING = os.getenv("WEBHOOK_PROCESSING", "queue")
    WEBHOOK_JOB_MAX_RETRIES = int(os.getenv("WEBHOOK_JOB_MAX_RETRIES", "5"))
    WEBHOOK_QUEUE_NAME = os.getenv("WEBHOOK_QUEUE_NAME", "webhooks")
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Pricing
    MEMBER_DISCOUNT_RATE = Decimal(os.getenv("MEMBER_DISCOUNT_RATE", "0.10"))
    SHIPPING_FEE = int(os.getenv("SHIPPING_FEE", "690"))
    FREE_SHIPPING_THRESHOLD = int(os.getenv("FREE_SHIPPING_THRESHOLD", "5000"))
    RESERVATION_BASE_FEE = int(os.getenv("RESERVATION_BASE_FEE", "800"))
    RESERVATION_ADDITIONAL_FEE = int(os.getenv("RESERVATION_ADDITIONAL_FEE", "400"))
    MIN_CHARGE_AMOUNT = int(os.getenv("MIN_CHARGE_AMOUNT", "50"))
    DEFAULT_DAY_PASS_PRICE_ID = os.getenv("DEFAULT_DAY_PASS_PRICE_ID", "")
    KONBINI_EXPIRES_AFTER_DAYS = int(os.getenv("KONBINI_EXPIRES_AFTER_DAYS", "3"))

    # Loyalty
    POINTS_EARN_RATE = Decimal(os.getenv("POINTS_EARN_RATE", "0.10"))

    CORS_ALLOWED_ORIGINS = os.getenv(
        "CORS_ALLOWED_ORIGINS",
        "https://dogparkjp.com,https://www.dogparkjp.com,http://localhost:5173",
    )
