"""
Utility functions for the workflow engine.

Includes:
- UTC datetime helpers
- Naive-UTC conversion for database timestamps
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def utcnow_naive() -> datetime:
    """Return the current UTC time as a **naive** datetime.

    Engine timestamp columns are ``TIMESTAMP WITHOUT TIME ZONE``, so all
    comparisons against them must also be naive-UTC.
    """
    return utc_now().replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)

