import os
from typing import Optional


def _int_env(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return int(raw)


# ----------------------------
# Database
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", None)
DB_POOL_SIZE = _int_env("DB_POOL_SIZE", 10)
DB_MAX_OVERFLOW = _int_env("DB_MAX_OVERFLOW", 10)
DB_POOL_TIMEOUT = _int_env("DB_POOL_TIMEOUT", 30)
DB_GATE_LIMIT = _int_env("DB_GATE_LIMIT", None)

# ----------------------------
# Auth
# ----------------------------
JWT_SECRET = os.environ.get("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_TTL_SECONDS = _int_env("JWT_TTL_SECONDS", 72 * 3600)

# ----------------------------
# Payments
# ----------------------------
PAYMENT_GATEWAY = os.environ.get("PAYMENT_GATEWAY", "midtrans").lower()
MIDTRANS_SERVER_KEY = os.environ.get(
    "MIDTRANS_SERVER_KEY", os.environ.get("ServerKey", "")
)
MIDTRANS_ENV = os.environ.get("MIDTRANS_ENV", "sandbox").lower()
PAYMENT_CALLBACK_URL = os.environ.get(
    "PAYMENT_CALLBACK_URL",
    "http://localhost:8080/webhook/payment"
)
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8080/webhook/payment"
)
GATEWAY_TIMEOUT_SECONDS = float(
    os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10")
)

# ----------------------------
# Fulfillment gate
# ----------------------------
FULFILLMENT_BACKEND = os.environ.get("FULFILLMENT_BACKEND", "pg").lower()
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = _int_env("REDIS_MAX_CONN", 64)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
