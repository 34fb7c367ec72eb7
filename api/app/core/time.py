"""Central time utilities for the application.

Timestamps are stored as naive UTC datetimes (TIMESTAMP WITHOUT TIME ZONE).
"""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time as a naive datetime object."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def quarter_of(moment: datetime) -> int:
    """Calendar quarter (1-4) of a datetime."""
    return (moment.month - 1) // 3 + 1


def format_quarter_label(moment: datetime) -> str:
    """Display label such as 'Q3 2025' for the quarter containing ``moment``."""
    return f"Q{quarter_of(moment)} {moment.year}"
