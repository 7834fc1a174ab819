import uuid
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def round_amount(value: float) -> float:
    """Two-decimal precision enforced on every amount mutation."""
    return round(float(value), 2)
