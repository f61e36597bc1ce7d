from datetime import datetime, date


def as_date(value: date | datetime) -> date:
    """Drop the time component of a datetime, leave dates alone."""
    if isinstance(value, datetime):
        return value.date()
    return value


def days_between(date1: date | datetime, date2: date | datetime) -> int:
    """Calculate absolute number of days between two dates."""
    return abs((as_date(date2) - as_date(date1)).days)
