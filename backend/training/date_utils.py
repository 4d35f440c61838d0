# backend/training/date_utils.py
from datetime import datetime, date, timedelta
from typing import Optional

TIME_FORMAT = "%H:%M"

# 0=Sunday ... 6=Saturday, as stored on Series.day_of_week
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def ensure_end_after_start(start: Optional[date], end: Optional[date], label: str = "end_date") -> None:
    """Raise ValueError if end exists and is before start."""
    if start and end and end < start:
        raise ValueError(f"{label} must be the same as or after the start date.")


def sunday_based_weekday(d: date) -> int:
    """Weekday with Sunday as 0 (Python's weekday() has Monday as 0)."""
    return (d.weekday() + 1) % 7


def day_name(day_of_week: int) -> str:
    if 0 <= day_of_week < len(DAY_NAMES):
        return DAY_NAMES[day_of_week]
    return ""


def add_minutes(hhmm: str, minutes: int) -> str:
    """'10:00' + 60 -> '11:00'. Wraps past midnight."""
    start = datetime.strptime(hhmm, TIME_FORMAT)
    return (start + timedelta(minutes=minutes)).strftime(TIME_FORMAT)


def age_in_weeks(birth_date: Optional[date], age_years=None, as_of: Optional[date] = None) -> int:
    """
    Whole weeks between birth_date and as_of.
    Legacy pets without a birth date fall back to floor(age_years * 52).
    """
    as_of = as_of or date.today()
    if birth_date is not None:
        return max((as_of - birth_date).days // 7, 0)
    if age_years is not None:
        return int(float(age_years) * 52)
    return 0
