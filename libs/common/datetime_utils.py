"""Datetime helpers: timezone-aware UTC timestamps and human durations.

Usage:
    from libs.common.datetime_utils import utc_now

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def humanize_minutes(minutes: int) -> str:
    """Render a processing estimate the way customers see it.

    >>> humanize_minutes(1440)
    '1 day'
    >>> humanize_minutes(240)
    '4 hours'
    >>> humanize_minutes(45)
    '45 minutes'
    """
    if minutes >= 1440 and minutes % 1440 == 0:
        days = minutes // 1440
        return f"{days} day" if days == 1 else f"{days} days"
    if minutes >= 60 and minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
