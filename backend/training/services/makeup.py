# backend/training/services/makeup.py
import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .. import models
from ..exceptions import DuplicateMakeupError, InvalidTransitionError, NoCreditsError, NotMissedError
from ..schemas import FixedPricing, PercentagePricing, PerSessionPricing
from .scheduler import series_end_date

logger = logging.getLogger(__name__)

MISSED_STATUSES = ("absent", "excused")

MAKEUP_TRANSITIONS = {
    "pending": {"scheduled", "cancelled"},
    "scheduled": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


# ---------------------------------------------------------
# Pricing
# ---------------------------------------------------------
def resolve_price(rule, series) -> Decimal:
    """Price for one makeup session under `rule`. Evaluated once, then frozen on the record."""
    if isinstance(rule, FixedPricing):
        return Decimal(rule.amount)
    if isinstance(rule, PerSessionPricing):
        return Decimal(rule.amount)
    if isinstance(rule, PercentagePricing):
        full = Decimal(series.full_payment_amount or 0)
        return (full * Decimal(rule.percentage_of_series)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    raise TypeError(f"unknown makeup pricing rule: {rule!r}")


# ---------------------------------------------------------
# Credit ledger
# ---------------------------------------------------------
def ledger_expiry(series, validity_days: int) -> Optional[datetime]:
    """Credits last until the end of the day `validity_days` after the final session."""
    end = series_end_date(series)
    if end is None:
        return None
    return datetime.combine(end + timedelta(days=validity_days), datetime.max.time()).replace(microsecond=0)


def open_ledger(enrollment, series, credits: int, validity_days: int) -> models.MakeupCredit:
    return models.MakeupCredit(
        enrollment_id=enrollment.id,
        series_id=series.id,
        credits_available=credits,
        credits_used=0,
        expires_at=ledger_expiry(series, validity_days),
    )


def credits_remaining(ledger: Optional[models.MakeupCredit], now: datetime) -> int:
    if ledger is None:
        return 0
    if ledger.expires_at is not None and ledger.expires_at < now:
        return 0
    return max(ledger.credits_available - ledger.credits_used, 0)


# ---------------------------------------------------------
# Makeup sessions
# ---------------------------------------------------------
def create_for_missed(stores, enrollment, attendance, rule, now: datetime) -> models.MakeupSession:
    """
    Spend one credit on a pending makeup for a missed attendance.
    Raises a MakeupError subclass when that is not allowed.
    """
    if attendance.status not in MISSED_STATUSES:
        raise NotMissedError(
            f"session {attendance.session_number} was attended ({attendance.status}); no makeup needed"
        )
    if stores.makeups.open_for_attendance(attendance.id) is not None:
        raise DuplicateMakeupError(f"session {attendance.session_number} already has an open makeup")

    ledger = stores.makeups.ledger(enrollment.id)
    if credits_remaining(ledger, now) <= 0:
        raise NoCreditsError(f"enrollment {enrollment.id} has no makeup credits left")

    series = stores.series.get(enrollment.series_id)
    ledger.credits_used += 1
    makeup = stores.makeups.add(models.MakeupSession(
        enrollment_id=enrollment.id,
        missed_session_id=attendance.session_id,
        attendance_id=attendance.id,
        status="pending",
        price=resolve_price(rule, series),
        pricing_kind=rule.kind,
    ))
    logger.info(
        "Makeup %s pending for enrollment %s (session %s, price %s)",
        makeup.id, enrollment.id, attendance.session_number, makeup.price,
    )
    return makeup


def transition(makeup: models.MakeupSession, target: str) -> None:
    if target not in MAKEUP_TRANSITIONS[makeup.status]:
        raise InvalidTransitionError("MakeupSession", makeup.status, target)
    makeup.status = target


def cancel_open(stores, enrollment_id: int) -> int:
    """Cancel every pending or scheduled makeup of an enrollment that is leaving."""
    cancelled = 0
    for m in stores.makeups.open_for_enrollment(enrollment_id):
        transition(m, "cancelled")
        cancelled += 1
    if cancelled:
        logger.info("Cancelled %s open makeup(s) for enrollment %s", cancelled, enrollment_id)
    return cancelled
