# backend/training/services/scheduler.py
from datetime import date, timedelta
from typing import List, Optional

from ..date_utils import sunday_based_weekday
from ..exceptions import SeriesAlreadyStartedError, SeriesConfigError
from ..schemas import SessionOut

WEEK = timedelta(days=7)

# ---------------------------------------------------------
# Helper: first matching weekday
# ---------------------------------------------------------
def _first_occurrence(start: date, day_of_week: int) -> date:
    """
    First date on or after `start` that falls on `day_of_week` (0=Sunday).
    A start date already on that weekday is itself the first occurrence.
    """
    days_to_add = (day_of_week - sunday_based_weekday(start)) % 7
    return start + timedelta(days=days_to_add)

# ---------------------------------------------------------
# Produce session dates
# ---------------------------------------------------------
def calculate_session_dates(start_date: date, day_of_week: int, number_of_weeks: int) -> List[date]:
    if not 0 <= day_of_week <= 6:
        raise SeriesConfigError(f"day_of_week must be 0-6, got {day_of_week}")
    if number_of_weeks < 1:
        raise SeriesConfigError(f"number_of_weeks must be >= 1, got {number_of_weeks}")

    first = _first_occurrence(start_date, day_of_week)
    return [first + WEEK * i for i in range(number_of_weeks)]

# ---------------------------------------------------------
# MAIN FUNCTION: generate sessions for a series
# ---------------------------------------------------------
def generate_series_sessions(series) -> List[SessionOut]:
    """
    Build the session calendar for `series` (ORM row or SeriesCreate).
    Pure: identical input gives identical output, nothing is persisted.
    """
    dates = calculate_session_dates(series.start_date, series.day_of_week, series.number_of_weeks)
    series_id = getattr(series, "id", None)

    return [
        SessionOut(
            series_id=series_id,
            session_number=i,
            date=d,
            start_time=series.start_time,
            end_time=series.end_time,
            status="scheduled",
            enrolled_count=getattr(series, "enrolled_count", 0) or 0,
        )
        for i, d in enumerate(dates, start=1)
    ]


def series_end_date(series) -> Optional[date]:
    sessions = getattr(series, "sessions", None)
    if sessions:
        return max(s.date for s in sessions)
    dates = calculate_session_dates(series.start_date, series.day_of_week, series.number_of_weeks)
    return dates[-1]


def has_started(series, today: date) -> bool:
    """A series has started once any session left `scheduled` or the first session day arrived."""
    sessions = list(getattr(series, "sessions", None) or [])
    if any(s.status != "scheduled" for s in sessions):
        return True
    if sessions:
        first = min(s.date for s in sessions)
    else:
        first = _first_occurrence(series.start_date, series.day_of_week)
    return first <= today


def ensure_can_regenerate(series, today: date) -> None:
    if series.status in ("in-progress", "completed", "cancelled") or has_started(series, today):
        raise SeriesAlreadyStartedError(
            f"series {series.id} has already started; sessions cannot be regenerated"
        )

# ---------------------------------------------------------
# Series lifecycle
# ---------------------------------------------------------
def next_series_status(series, today: date) -> str:
    """
    Status the series should be in on `today`. Draft and cancelled series are
    only moved by staff; everything else follows the booking window and the
    session calendar.
    """
    if series.status in ("draft", "cancelled", "completed"):
        return series.status

    end = series_end_date(series)
    if end is not None and end < today:
        return "completed"
    if has_started(series, today):
        return "in-progress"
    if series.booking_closes_date and today > series.booking_closes_date:
        return "closed"
    return series.status


def session_status_on(session, today: date) -> str:
    """Past sessions are completed, today's is in progress. Cancelled sessions stay cancelled."""
    if session.status == "cancelled":
        return session.status
    if session.date < today:
        return "completed"
    if session.date == today:
        return "in-progress"
    return "scheduled"
