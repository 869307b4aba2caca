"""
Clock abstraction shared by the ledger, health checker and analytics.

All timestamps are naive UTC, matching what the database columns store.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
