import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


# ----------------------------
# Storage
# ----------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rafflefans.db")
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_MAX_CONN = int(os.getenv("REDIS_MAX_CONN", "512"))

# 'pg' (any SQL database behind DATABASE_URL) | 'redis'
TICKETS_BACKEND = os.getenv("TICKETS_BACKEND", "pg").lower()

# ----------------------------
# Allocation
# ----------------------------
# size of the number space every draw picks from: [1, MAX_TICKETS_PER_DRAW]
MAX_TICKETS_PER_DRAW = int(os.getenv("MAX_TICKETS_PER_DRAW", "10000"))
# allocate(qty) gives up after qty * ALLOCATION_RETRY_MULTIPLIER draws
ALLOCATION_RETRY_MULTIPLIER = int(
    os.getenv("ALLOCATION_RETRY_MULTIPLIER", "50")
)
# refuse to allocate past a competition's advertised total_tickets
ENFORCE_CAPACITY = _flag("ENFORCE_CAPACITY")

SKILL_GATE_ENABLED = _flag("SKILL_GATE_ENABLED")

# ----------------------------
# Side effects (counters, points, basket, email)
# ----------------------------
SIDE_EFFECT_MAX_RETRIES = int(os.getenv("SIDE_EFFECT_MAX_RETRIES", "3"))
SIDE_EFFECT_BACKOFF_SECONDS = float(
    os.getenv("SIDE_EFFECT_BACKOFF_SECONDS", "0.5")
)

EMAIL_API_URL = os.getenv("EMAIL_API_URL", "https://api.resend.com/emails")
EMAIL_API_KEY = os.getenv("EMAIL_API_KEY", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "RaffleFans <tickets@example.com>")

# ----------------------------
# Payments / admin
# ----------------------------
MOCK_SECRET = os.getenv("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.getenv(
    "MOCK_WEBHOOK_URL",
    "http://localhost:8000/payments/webhook"
)
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "dev-admin-token-change-me")
CURRENCY = os.getenv("CURRENCY", "gbp")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
