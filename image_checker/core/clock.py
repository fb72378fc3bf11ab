"""
Time source for lock expiry and retention math.

All timestamps are naive UTC so they compare the same way in PostgreSQL
and SQLite.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
