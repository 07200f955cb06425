"""Shared utility functions."""
import uuid
import hashlib
from datetime import datetime, timezone
from typing import Optional


def generate_run_id() -> str:
    """Generate a unique import run ID."""
    return f"run_{uuid.uuid4().hex[:12]}"


def generate_unit_id() -> str:
    """Generate a unique queue unit ID."""
    return f"unit_{uuid.uuid4().hex[:12]}"


def get_utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (Mongo returns them naive)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def stable_hash(*parts: str, length: int = 32) -> str:
    """Deterministic identifier derived from string parts."""
    joined = "-".join(parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:length]


def elapsed_ms(started_at: datetime, now: Optional[datetime] = None) -> int:
    """Milliseconds between started_at and now."""
    now = now or get_utc_now()
    return max(0, int((now - ensure_utc(started_at)).total_seconds() * 1000))


def calculate_exponential_backoff(attempt: int, base_delay: float = 2.0, max_delay: float = 3600.0) -> float:
    """Calculate exponential backoff delay for the given 1-based attempt."""
    delay = base_delay * (2 ** max(attempt - 1, 0))
    return min(delay, max_delay)
