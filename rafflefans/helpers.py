"""Small shared helpers: wall-clock stamps, email and money normalisation."""
import hmac
import re
import time
from datetime import datetime, timezone
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def now_ts() -> float:
    # wall clock, persisted on rows; durations use infra.timings
    return time.time()


def to_iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and _EMAIL_RE.match(email.strip()) is not None


def ct_equal(a: str, b: str) -> bool:
    """Constant-time comparison for tokens and signatures."""
    return hmac.compare_digest(a.encode(), b.encode())


def to_pence(amount) -> int:
    # baskets quote pounds; orders store pence
    try:
        return max(0, round(float(amount) * 100))
    except (TypeError, ValueError):
        return 0
