from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from training.date_utils import add_minutes, sunday_based_weekday
from training.exceptions import SeriesAlreadyStartedError, SeriesConfigError
from training.schemas import SeriesUpdate
from training.services.scheduler import (
    calculate_session_dates,
    generate_series_sessions,
    has_started,
    next_series_status,
    session_status_on,
)


def _series(**kw):
    data = dict(
        id=None, start_date=date(2026, 2, 2), day_of_week=6, number_of_weeks=6,
        start_time="10:00", end_time="11:00", status="open", booking_closes_date=None,
        sessions=None,
    )
    data.update(kw)
    return SimpleNamespace(**data)


def test_saturday_series_from_monday_start():
    dates = calculate_session_dates(date(2026, 2, 2), 6, 6)
    assert dates == [
        date(2026, 2, 7), date(2026, 2, 14), date(2026, 2, 21),
        date(2026, 2, 28), date(2026, 3, 7), date(2026, 3, 14),
    ]


def test_start_on_target_weekday_is_first_session():
    # 2026-02-02 is a Monday (1)
    assert calculate_session_dates(date(2026, 2, 2), 1, 3)[0] == date(2026, 2, 2)


@pytest.mark.parametrize("day_of_week", range(7))
@pytest.mark.parametrize("weeks", [1, 4, 10])
def test_sessions_are_weekly_on_the_requested_day(day_of_week, weeks):
    sessions = generate_series_sessions(_series(day_of_week=day_of_week, number_of_weeks=weeks))

    assert [s.session_number for s in sessions] == list(range(1, weeks + 1))
    assert all(sunday_based_weekday(s.date) == day_of_week for s in sessions)
    for a, b in zip(sessions, sessions[1:]):
        assert b.date - a.date == timedelta(days=7)
    assert sessions[0].date - date(2026, 2, 2) < timedelta(days=7)
    assert all(s.status == "scheduled" for s in sessions)


def test_generation_is_deterministic():
    s = _series()
    assert generate_series_sessions(s) == generate_series_sessions(s)


@pytest.mark.parametrize("dow,weeks", [(7, 6), (-1, 6), (2, 0)])
def test_invalid_series_config(dow, weeks):
    with pytest.raises(SeriesConfigError):
        calculate_session_dates(date(2026, 2, 2), dow, weeks)


def test_end_time_derived_from_duration():
    assert add_minutes("18:30", 90) == "20:00"


def test_has_started_by_date_or_session_status():
    s = _series()
    assert not has_started(s, date(2026, 2, 6))
    assert has_started(s, date(2026, 2, 7))

    sessions = generate_series_sessions(s)
    sessions[0].status = "completed"
    assert has_started(_series(sessions=sessions), date(2026, 1, 1))


def test_status_follows_calendar():
    s = _series(booking_closes_date=date(2026, 2, 5))
    assert next_series_status(s, date(2026, 2, 1)) == "open"
    assert next_series_status(s, date(2026, 2, 6)) == "closed"
    assert next_series_status(s, date(2026, 2, 8)) == "in-progress"
    assert next_series_status(s, date(2026, 3, 15)) == "completed"
    assert next_series_status(_series(status="draft"), date(2026, 3, 15)) == "draft"


def test_create_series_persists_sessions(engine, make_series):
    series = make_series(start_date=date(2026, 2, 2), day_of_week=6, number_of_weeks=6)

    assert series.end_time == "19:00"
    assert [s.date for s in series.sessions] == calculate_session_dates(date(2026, 2, 2), 6, 6)


def test_create_series_rejects_inverted_booking_window(make_series):
    with pytest.raises(SeriesConfigError):
        make_series(booking_opens_date=date(2026, 1, 20), booking_closes_date=date(2026, 1, 10))


def test_regenerate_before_start(engine, make_series):
    series = make_series()
    again = engine.regenerate_sessions(series.id)
    assert [s.date for s in again.sessions] == [s.date for s in series.sessions]
    assert len(again.sessions) == 6


def test_regenerate_after_start_is_refused(engine, make_series, clock):
    series = make_series()
    clock.advance(days=30)
    with pytest.raises(SeriesAlreadyStartedError):
        engine.regenerate_sessions(series.id)


def test_refresh_series_statuses(engine, make_series, clock):
    series = make_series(booking_closes_date=date(2026, 1, 31))
    clock.advance(days=18)   # 2026-02-02, first Monday session
    assert engine.refresh_series_statuses() == 1
    assert engine.get_series(series.id).status == "in-progress"


def test_refresh_moves_sessions_along(engine, make_series, clock):
    series = make_series()
    clock.advance(days=25)   # 2026-02-09, second Monday session

    engine.refresh_series_statuses()

    statuses = [s.status for s in engine.get_series(series.id).sessions]
    assert statuses == ["completed", "in-progress", "scheduled", "scheduled", "scheduled", "scheduled"]


def test_session_status_on():
    session = SimpleNamespace(date=date(2026, 2, 9), status="scheduled")
    assert session_status_on(session, date(2026, 2, 8)) == "scheduled"
    assert session_status_on(session, date(2026, 2, 9)) == "in-progress"
    assert session_status_on(session, date(2026, 2, 10)) == "completed"
    assert session_status_on(SimpleNamespace(date=date(2026, 2, 9), status="cancelled"), date(2026, 3, 1)) == "cancelled"


# ---------------------------------------------------------
# Editing a series
# ---------------------------------------------------------
def test_edit_moves_sessions_to_new_weekday(engine, make_series, make_pet):
    series = make_series(day_of_week=1, number_of_weeks=6)
    enrolled = engine.book(make_pet(), series.id).enrollment

    edited = engine.update_series(series.id, SeriesUpdate(day_of_week=3, number_of_weeks=8, start_time="19:00"))

    assert edited.day_of_week == 3
    assert edited.end_time == "20:00"
    assert [s.date for s in edited.sessions] == calculate_session_dates(date(2026, 2, 2), 3, 8)
    assert edited.sessions[0].date == date(2026, 2, 4)
    assert all(s.start_time == "19:00" and s.enrolled_count == 1 for s in edited.sessions)
    assert engine.get_enrollment(enrolled.id).total_sessions == 8


def test_edit_keeps_fields_that_were_left_out(engine, make_series):
    series = make_series(location="Hall A")
    edited = engine.update_series(series.id, SeriesUpdate(series_name="Renamed"))
    assert edited.series_name == "Renamed"
    assert edited.location == "Hall A"
    assert [s.date for s in edited.sessions] == [s.date for s in series.sessions]


def test_edit_after_start_is_refused(engine, make_series, clock):
    series = make_series()
    clock.advance(days=18)
    with pytest.raises(SeriesAlreadyStartedError):
        engine.update_series(series.id, SeriesUpdate(day_of_week=3))
    assert engine.get_series(series.id).day_of_week == 1


def test_edit_cannot_move_start_into_the_past(engine, make_series):
    series = make_series()
    with pytest.raises(SeriesConfigError):
        engine.update_series(series.id, SeriesUpdate(start_date=date(2026, 1, 5)))
    assert engine.get_series(series.id).sessions[0].date == date(2026, 2, 2)
