# backend/training/services/enrollment.py
"""
Enrollment state machine.

    waitlisted ──claim──> enrolled ──all sessions resolved──> completed
        │                    │
        └──────drop──────────┴──drop──> dropped

Functions here mutate ORM rows through the stores of a single unit of work
and return the side effects to deliver once it commits. Callers hold the
series lock for anything touching capacity or the waitlist, and the
enrollment lock for attendance and completion.
"""
import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from .. import models
from ..exceptions import AttendanceError, InvalidTransitionError, OfferExpiredError
from . import dispatch, progression
from .makeup import MISSED_STATUSES, open_ledger

logger = logging.getLogger(__name__)

ENROLLMENT_TRANSITIONS = {
    "waitlisted": {"enrolled", "dropped"},
    "enrolled": {"completed", "dropped"},
    "completed": set(),
    "dropped": set(),
}

ATTENDED_STATUSES = ("present", "late")


def transition(enrollment: models.Enrollment, target: str) -> None:
    if target not in ENROLLMENT_TRANSITIONS[enrollment.status]:
        raise InvalidTransitionError("Enrollment", enrollment.status, target)
    logger.info("Enrollment %s: %s -> %s", enrollment.id, enrollment.status, target)
    enrollment.status = target


def compute_progress(sessions_attended: int, total_sessions: int) -> int:
    """round(100 * attended / total), halves rounded up."""
    if total_sessions <= 0:
        return 0
    ratio = Decimal(100 * sessions_attended) / Decimal(total_sessions)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def credit_attendance(enrollment: models.Enrollment) -> None:
    """Count one more attended session (regular or makeup) and refresh progress."""
    enrollment.sessions_attended = min(enrollment.sessions_attended + 1, enrollment.total_sessions)
    enrollment.progress = compute_progress(enrollment.sessions_attended, enrollment.total_sessions)


# ---------------------------------------------------------
# Booking
# ---------------------------------------------------------
def booking_window_problem(series: models.Series, today) -> Optional[str]:
    if series.status != "open":
        return f"Series is {series.status}; bookings are not being accepted."
    if series.booking_opens_date and today < series.booking_opens_date:
        return f"Booking opens on {series.booking_opens_date.isoformat()}."
    if series.booking_closes_date and today > series.booking_closes_date:
        return f"Booking closed on {series.booking_closes_date.isoformat()}."
    return None


def new_enrollment(series: models.Series, pet: models.Pet, status: str, now: datetime) -> models.Enrollment:
    return models.Enrollment(
        series_id=series.id,
        pet_id=pet.id,
        owner_id=pet.owner_id,
        status=status,
        sessions_attended=0,
        total_sessions=series.number_of_weeks,
        current_session_number=1,
        progress=0,
        joined_at=now,
    )


def open_makeup_ledger(stores, enrollment, series, credits: int, validity_days: int) -> None:
    if stores.makeups.ledger(enrollment.id) is None:
        stores.makeups.add_ledger(open_ledger(enrollment, series, credits, validity_days))


def waitlist_position(stores, enrollment: models.Enrollment) -> Optional[int]:
    if enrollment.status != "waitlisted":
        return None
    ids = [e.id for e in stores.enrollments.waitlist(enrollment.series_id)]
    return ids.index(enrollment.id) + 1


# ---------------------------------------------------------
# Waitlist offers
# ---------------------------------------------------------
def offer_next(stores, series_id: int, now: datetime, claim_hours: int) -> Optional[models.Enrollment]:
    """
    Offer the held slot to the earliest waitlisted entrant without an offer.
    Frees the slot when nobody is waiting.
    """
    candidate = next(
        (e for e in stores.enrollments.waitlist(series_id) if e.offer_expires_at is None),
        None,
    )
    if candidate is None:
        stores.series.free_held_slot(series_id)
        logger.info("Series %s: waitlist empty, slot released", series_id)
        return None
    candidate.offered_at = now
    candidate.offer_expires_at = now + timedelta(hours=claim_hours)
    stores.db.flush()
    logger.info("Series %s: slot offered to enrollment %s until %s", series_id, candidate.id, candidate.offer_expires_at)
    return candidate


def offer_effect(enrollment: models.Enrollment, series: models.Series) -> dispatch.SideEffect:
    return dispatch.notification(
        "waitlist_offer",
        enrollment.owner_id,
        enrollment_id=enrollment.id,
        series_id=series.id,
        series_name=series.series_name,
        expires_at=enrollment.offer_expires_at.isoformat(),
    )


def release_capacity(stores, series: models.Series, now: datetime, claim_hours: int) -> List[dispatch.SideEffect]:
    """An enrolled pet left: hold its slot for the waitlist, or free it."""
    has_waitlist = series.waitlist_enabled and any(
        e.offer_expires_at is None for e in stores.enrollments.waitlist(series.id)
    )
    stores.series.release_slot(series.id, hold=has_waitlist)
    if not has_waitlist:
        return []
    offered = offer_next(stores, series.id, now, claim_hours)
    return [offer_effect(offered, series)] if offered else []


def ensure_offer_open(enrollment: models.Enrollment, now: datetime) -> None:
    if enrollment.status != "waitlisted" or enrollment.offer_expires_at is None:
        raise InvalidTransitionError("Enrollment", enrollment.status, "enrolled")
    if enrollment.offer_expires_at <= now:
        raise OfferExpiredError(f"offer for enrollment {enrollment.id} expired at {enrollment.offer_expires_at}")


def claim_offer(stores, enrollment: models.Enrollment, now: datetime) -> None:
    ensure_offer_open(enrollment, now)
    if not stores.series.claim_held_slot(enrollment.series_id):
        raise OfferExpiredError(f"no held slot left for enrollment {enrollment.id}")
    transition(enrollment, "enrolled")
    enrollment.offered_at = None
    enrollment.offer_expires_at = None
    stores.db.flush()


def revert_claim(stores, enrollment: models.Enrollment, offered_at: datetime, offer_expires_at: datetime) -> None:
    """The claim's payment failed: back on the waitlist holding the same offer."""
    stores.series.return_to_hold(enrollment.series_id)
    stores.makeups.delete_ledger(enrollment.id)
    logger.info("Enrollment %s: enrolled -> waitlisted (payment failed)", enrollment.id)
    enrollment.status = "waitlisted"
    enrollment.offered_at = offered_at
    enrollment.offer_expires_at = offer_expires_at
    stores.db.flush()


def pass_offer(stores, enrollment: models.Enrollment, series, now: datetime, claim_hours: int, reason: str):
    """Drop the entrant holding an offer and hand the slot to the next one."""
    transition(enrollment, "dropped")
    enrollment.dropped_reason = reason
    enrollment.offer_expires_at = None
    stores.db.flush()
    offered = offer_next(stores, series.id, now, claim_hours)
    return [offer_effect(offered, series)] if offered else []


def expire_offers(stores, series, now: datetime, claim_hours: int) -> Tuple[int, List[dispatch.SideEffect]]:
    effects, expired = [], 0
    while True:
        offer = stores.enrollments.current_offer(series.id)
        if offer is None or offer.offer_expires_at > now:
            break
        expired += 1
        logger.info("Series %s: offer to enrollment %s expired", series.id, offer.id)
        effects.append(dispatch.notification(
            "waitlist_offer_expired", offer.owner_id, enrollment_id=offer.id, series_id=series.id,
        ))
        effects += pass_offer(stores, offer, series, now, claim_hours, "offer_expired")
    return expired, effects


# ---------------------------------------------------------
# Attendance & completion
# ---------------------------------------------------------
def record_attendance(stores, enrollment: models.Enrollment, session_number: int, status: str, **details) -> models.Attendance:
    if enrollment.status != "enrolled":
        raise AttendanceError(f"enrollment {enrollment.id} is {enrollment.status}; attendance not accepted")
    if session_number != enrollment.current_session_number:
        raise AttendanceError(
            f"expected attendance for session {enrollment.current_session_number}, got {session_number}"
        )

    session = stores.series.session_by_number(enrollment.series_id, session_number)
    if stores.enrollments.attendance_for(enrollment.id, session.id) is not None:
        raise AttendanceError(f"attendance for session {session_number} already recorded")

    attendance = stores.enrollments.add_attendance(models.Attendance(
        enrollment_id=enrollment.id,
        session_id=session.id,
        session_number=session_number,
        status=status,
        **details,
    ))

    if status in ATTENDED_STATUSES:
        enrollment.sessions_attended += 1
    enrollment.progress = compute_progress(enrollment.sessions_attended, enrollment.total_sessions)
    enrollment.current_session_number += 1
    return attendance


def is_missed(attendance: models.Attendance) -> bool:
    return attendance.status in MISSED_STATUSES


def maybe_complete(stores, enrollment: models.Enrollment, now: datetime, overrides=None):
    """
    Complete the enrollment once every session is past and no makeup is still
    open. Returns (certificate, side effects); certificate is None when the
    enrollment is not finished yet.
    """
    if enrollment.status == "completed":
        return stores.certificates.for_enrollment(enrollment.id), []
    if enrollment.status != "enrolled":
        return None, []
    if enrollment.current_session_number <= enrollment.total_sessions:
        return None, []
    if stores.makeups.count_open(enrollment.id) > 0:
        return None, []

    transition(enrollment, "completed")
    enrollment.completed_at = now
    cert = progression.issue_certificate(stores, enrollment, now.date(), overrides)
    effects = [dispatch.notification(
        "certificate_issued",
        enrollment.owner_id,
        enrollment_id=enrollment.id,
        certificate_number=cert.certificate_number,
        course_type_id=cert.course_type_id,
        unlocked=list(cert.unlocked_next_course_ids or []),
    )]
    return cert, effects
