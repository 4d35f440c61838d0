from datetime import date
from decimal import Decimal

import pytest

from training.collaborators import SettingsFacilityConfig
from training.crud import Stores, unit_of_work
from training.exceptions import (
    AttendanceError,
    DuplicateMakeupError,
    InvalidTransitionError,
    NoCreditsError,
    NotMissedError,
)
from training.schemas import FixedPricing, PercentagePricing, PerSessionPricing
from training.services.enrollment import compute_progress
from training.services.makeup import resolve_price


@pytest.fixture
def enrollment(engine, make_pet, make_series):
    series = make_series()
    return engine.book(make_pet(), series.id).enrollment


def _ledger(session_factory, enrollment_id):
    with unit_of_work(session_factory) as db:
        ledger = Stores(db).makeups.ledger(enrollment_id)
        return ledger.credits_available, ledger.credits_used


# ---------------------------------------------------------
# Attendance & progress
# ---------------------------------------------------------
@pytest.mark.parametrize("attended,total,expected", [
    (0, 6, 0), (1, 6, 17), (3, 6, 50), (1, 8, 13), (5, 8, 63), (6, 6, 100), (1, 3, 33), (0, 0, 0),
])
def test_progress_rounds_half_up(attended, total, expected):
    assert compute_progress(attended, total) == expected


def test_attendance_advances_progress(engine, enrollment, attend):
    outcome = attend(enrollment.id, ["present", "late", "absent"])

    e = outcome.enrollment
    assert e.sessions_attended == 2
    assert e.current_session_number == 4
    assert e.progress == 33
    assert outcome.attendance.session_number == 3


def test_attendance_must_follow_session_order(engine, enrollment):
    with pytest.raises(AttendanceError):
        engine.record_attendance(enrollment.id, 2, "present")

    engine.record_attendance(enrollment.id, 1, "present")
    with pytest.raises(AttendanceError):
        engine.record_attendance(enrollment.id, 1, "present")


def test_attendance_details_are_stored(engine, enrollment, session_factory):
    outcome = engine.record_attendance(enrollment.id, 1, "present", handler_name="Sam", trainer_notes="Great sit")
    with unit_of_work(session_factory) as db:
        row = Stores(db).enrollments.get_attendance(outcome.attendance.id)
        assert row.handler_name == "Sam"
        assert row.trainer_notes == "Great sit"


def test_waitlisted_enrollment_cannot_record_attendance(engine, make_pet, make_series):
    series = make_series(max_capacity=1)
    engine.book(make_pet(), series.id)
    waiting = engine.book(make_pet(), series.id).enrollment
    with pytest.raises(AttendanceError):
        engine.record_attendance(waiting.id, 1, "present")


# ---------------------------------------------------------
# Makeups
# ---------------------------------------------------------
def test_absence_spends_single_credit(engine, enrollment, attend, session_factory, dispatcher):
    outcome = attend(enrollment.id, ["present", "present", "absent"])

    assert outcome.makeup_session is not None
    assert outcome.makeup_session.status == "pending"
    assert outcome.makeup_session.price == Decimal("45")
    assert _ledger(session_factory, enrollment.id) == (1, 1)
    assert dispatcher.topics() == ["makeup_available"]

    fourth = engine.record_attendance(enrollment.id, 4, "absent")
    assert fourth.makeup_session is None
    assert _ledger(session_factory, enrollment.id) == (1, 1)


def test_excused_absence_also_earns_makeup(engine, enrollment):
    outcome = engine.record_attendance(enrollment.id, 1, "excused")
    assert outcome.makeup_session is not None


def test_request_makeup_for_attended_session_is_refused(engine, enrollment):
    outcome = engine.record_attendance(enrollment.id, 1, "present")
    with pytest.raises(NotMissedError):
        engine.request_makeup(enrollment.id, outcome.attendance.session_id)


def test_no_second_open_makeup_for_same_absence(engine, make_pet, make_series, session_factory, test_settings):
    test_settings.MAKEUP_CREDITS_PER_ENROLLMENT = 3
    series = make_series()
    e = engine.book(make_pet(), series.id).enrollment
    outcome = engine.record_attendance(e.id, 1, "absent")

    with pytest.raises(DuplicateMakeupError):
        engine.request_makeup(e.id, outcome.attendance.session_id)
    assert _ledger(session_factory, e.id) == (3, 1)


def test_cancelled_makeup_does_not_refund_credit(engine, enrollment, session_factory):
    outcome = engine.record_attendance(enrollment.id, 1, "absent")
    engine.cancel_makeup(outcome.makeup_session.id)

    with pytest.raises(NoCreditsError):
        engine.request_makeup(enrollment.id, outcome.attendance.session_id)
    assert _ledger(session_factory, enrollment.id) == (1, 1)


def test_makeup_lifecycle(engine, enrollment, dispatcher):
    made = engine.record_attendance(enrollment.id, 1, "absent").makeup_session

    scheduled = engine.schedule_makeup(made.id, date(2026, 2, 12), "10:00", "trainer-3")
    assert scheduled.makeup_session.status == "scheduled"
    assert scheduled.makeup_session.trainer_id == "trainer-3"
    assert dispatcher.topics() == ["makeup_available", "makeup_reminder", "makeup"]
    charge = dispatcher.sent[-1]
    assert (charge.kind, charge.amount, charge.reference) == ("payment", Decimal("45"), f"makeup-{made.id}")

    done = engine.complete_makeup(made.id)
    assert done.makeup_session.status == "completed"
    assert done.enrollment.sessions_attended == 1
    assert done.enrollment.progress == 17

    with pytest.raises(InvalidTransitionError):
        engine.cancel_makeup(made.id)


def test_pending_makeup_cannot_complete(engine, enrollment):
    made = engine.record_attendance(enrollment.id, 1, "absent").makeup_session
    with pytest.raises(InvalidTransitionError):
        engine.complete_makeup(made.id)


def test_drop_cancels_open_makeups(engine, enrollment, session_factory):
    made = engine.record_attendance(enrollment.id, 1, "absent").makeup_session
    engine.schedule_makeup(made.id, date(2026, 2, 12), "10:00", "trainer-3")

    engine.drop(enrollment.id, "moved away")

    with unit_of_work(session_factory) as db:
        assert Stores(db).makeups.get(made.id).status == "cancelled"
    with pytest.raises(InvalidTransitionError):
        engine.complete_makeup(made.id)
    assert engine.get_enrollment(enrollment.id).sessions_attended == 0


def test_dispatch_failure_is_a_warning(make_engine, make_pet, make_series):
    flaky = make_engine(fail_topics={"makeup_available"})
    series = make_series()
    e = flaky.book(make_pet(), series.id).enrollment

    outcome = flaky.record_attendance(e.id, 1, "absent")

    assert outcome.makeup_session is not None
    assert len(outcome.warnings) == 1
    assert "makeup_available" in outcome.warnings[0]
    assert flaky.get_enrollment(e.id).current_session_number == 2


@pytest.mark.parametrize("rule,expected", [
    (FixedPricing(amount=Decimal("45")), Decimal("45")),
    (PercentagePricing(percentage_of_series=Decimal("0.15")), Decimal("30")),
    (PercentagePricing(percentage_of_series=Decimal("0.125")), Decimal("25")),
    (PerSessionPricing(amount=Decimal("50")), Decimal("50")),
])
def test_pricing_rules(rule, expected):
    series = type("S", (), {"full_payment_amount": Decimal("200")})()
    assert resolve_price(rule, series) == expected


def test_percentage_pricing_is_frozen_on_the_makeup(make_engine, make_pet, make_series, test_settings):
    pricing = PercentagePricing(percentage_of_series=Decimal("0.15"))
    eng = make_engine(facility=SettingsFacilityConfig(test_settings, pricing=pricing))
    series = make_series(full_payment_amount=Decimal("240"))
    e = eng.book(make_pet(), series.id).enrollment

    made = eng.record_attendance(e.id, 1, "absent").makeup_session

    assert made.price == Decimal("36")
    assert made.pricing_kind == "percentage"
