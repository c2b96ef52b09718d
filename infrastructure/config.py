import os


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "t")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-keep-it-secret")
    ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30))

    DEBUG_MODE = _env_bool("DEBUG_MODE")

    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")

    # Payment gateway
    PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", 10))
    PAYMENT_SUCCESS_RATE = float(os.getenv("PAYMENT_SUCCESS_RATE", 0.9))
    REFUND_SUCCESS_RATE = float(os.getenv("REFUND_SUCCESS_RATE", 0.95))
    PAYMENT_DELAY_SECONDS = float(os.getenv("PAYMENT_DELAY_SECONDS", 1.0))
    REFUND_DELAY_SECONDS = float(os.getenv("REFUND_DELAY_SECONDS", 0.5))

    # Concurrency
    LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", 5))
    BOOKING_MAX_RETRIES = int(os.getenv("BOOKING_MAX_RETRIES", 3))
