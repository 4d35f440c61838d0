# backend/training/engine.py
"""
TrainingEngine: the entry point for every scheduling, booking, attendance,
makeup and progression operation.

Each mutating call runs as one unit of work (one SQLAlchemy session, commit
or rollback) under the per-entity lock it needs:

    series:<id>      booking, capacity release, waitlist offers and the sweep
    enrollment:<id>  attendance, makeups, completion, drop

Those locks cover threads of one process. Series-keyed transactions also open
with `SeriesStore.lock`, so a Celery worker running the sweep waits for them.

Side effects (notifications, makeup charges) are collected while the unit of
work runs and dispatched only after it commits. Dispatch problems come back
as `warnings` on the result instead of exceptions.
"""
import logging
from datetime import date, datetime
from typing import Callable, List, Optional

from . import models
from .collaborators import (
    FacilityConfig,
    NullPaymentGateway,
    PaymentGateway,
    SettingsFacilityConfig,
    SqlVaccinationStore,
    VaccinationStore,
)
from .config import Settings, settings as default_settings
from .crud import Stores, unit_of_work
from .date_utils import add_minutes, ensure_end_after_start
from .exceptions import (
    IneligibleError,
    InvalidTransitionError,
    MakeupError,
    NotMissedError,
    PaymentError,
    SeriesConfigError,
)
from .schemas import (
    AttendanceOut,
    AttendanceOutcome,
    BookingResult,
    CertificateOut,
    CourseProgression,
    CourseTypeOut,
    EligibilityResult,
    EnrollmentOut,
    MakeupOutcome,
    MakeupSessionOut,
    SeriesCreate,
    SeriesOut,
    SeriesUpdate,
    SessionOut,
)
from .services import catalog, dispatch, eligibility, makeup, progression, scheduler
from .services import enrollment as machine
from .services.dispatch import CeleryDispatcher, SideEffectDispatcher
from .services.locks import KeyedLock, enrollment_key, series_key

logger = logging.getLogger(__name__)


class TrainingEngine:
    def __init__(
        self,
        session_factory,
        *,
        vaccinations: Optional[VaccinationStore] = None,
        facility: Optional[FacilityConfig] = None,
        payments: Optional[PaymentGateway] = None,
        dispatcher: Optional[SideEffectDispatcher] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        locks: Optional[KeyedLock] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.vaccinations = vaccinations or SqlVaccinationStore(session_factory)
        self.facility = facility or SettingsFacilityConfig(self.settings)
        self.payments = payments or NullPaymentGateway()
        self.dispatcher = dispatcher or CeleryDispatcher()
        self.clock = clock
        self.locks = locks or KeyedLock()

    # ---------------------------------------------------------
    # internals
    # ---------------------------------------------------------
    def _uow(self):
        return unit_of_work(self.session_factory)

    def _today(self) -> date:
        return self.clock().date()

    def _flush(self, effects: List[dispatch.SideEffect]) -> List[str]:
        return self.dispatcher.dispatch(effects) if effects else []

    def _series_id_of(self, enrollment_id: int) -> int:
        with self._uow() as db:
            return Stores(db).enrollments.get(enrollment_id).series_id

    # ---------------------------------------------------------
    # Catalog
    # ---------------------------------------------------------
    def seed_catalog(self) -> List[str]:
        with self._uow() as db:
            return catalog.seed_default_catalog(Stores(db).catalog)

    def save_course_type(self, payload):
        """Insert or update a course type; rejected if the prerequisite graph would break."""
        with self._uow() as db:
            stores = Stores(db)
            others = [ct for ct in stores.catalog.list() if ct.id != payload.id]
            catalog.validate_catalog(others + [payload], self.facility.prerequisite_overrides())
            return CourseTypeOut.model_validate(stores.catalog.upsert(payload))

    # ---------------------------------------------------------
    # Series & sessions
    # ---------------------------------------------------------
    def generate_sessions(self, series) -> List[SessionOut]:
        return scheduler.generate_series_sessions(series)

    def create_series(self, payload: SeriesCreate) -> SeriesOut:
        try:
            ensure_end_after_start(payload.booking_opens_date, payload.booking_closes_date, "booking_closes_date")
        except ValueError as e:
            raise SeriesConfigError(str(e))

        with self._uow() as db:
            stores = Stores(db)
            stores.catalog.get(payload.course_type_id)
            data = payload.model_dump()
            data["end_time"] = payload.end_time or add_minutes(payload.start_time, payload.duration)
            series = stores.series.add(models.Series(**data, enrolled_count=0, held_slots=0))
            stores.series.replace_sessions(series, scheduler.generate_series_sessions(series))
            logger.info("Series %s created with %s sessions", series.id, series.number_of_weeks)
            return SeriesOut.model_validate(series)

    def regenerate_sessions(self, series_id: int) -> SeriesOut:
        with self.locks.hold(series_key(series_id)), self._uow() as db:
            stores = Stores(db)
            series = stores.series.lock(series_id)
            scheduler.ensure_can_regenerate(series, self._today())
            self._rebuild_sessions(stores, series)
            logger.info("Series %s sessions regenerated", series_id)
            return SeriesOut.model_validate(series)

    def update_series(self, series_id: int, payload: SeriesUpdate) -> SeriesOut:
        """
        Edit a series before its first session and rebuild the calendar.
        Fields left out (or null) keep their current value.
        """
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        today = self._today()
        with self.locks.hold(series_key(series_id)), self._uow() as db:
            stores = Stores(db)
            series = stores.series.lock(series_id)
            scheduler.ensure_can_regenerate(series, today)

            if ("start_time" in changes or "duration" in changes) and "end_time" not in changes:
                changes["end_time"] = add_minutes(
                    changes.get("start_time", series.start_time), changes.get("duration", series.duration)
                )
            for k, v in changes.items():
                setattr(series, k, v)

            try:
                ensure_end_after_start(series.booking_opens_date, series.booking_closes_date, "booking_closes_date")
            except ValueError as e:
                raise SeriesConfigError(str(e))
            first = scheduler.calculate_session_dates(series.start_date, series.day_of_week, 1)[0]
            if first <= today:
                raise SeriesConfigError(f"edited series would start on {first.isoformat()}, which is not in the future")

            self._rebuild_sessions(stores, series)
            logger.info("Series %s edited (%s)", series_id, ", ".join(sorted(changes)))
            return SeriesOut.model_validate(series)

    def _rebuild_sessions(self, stores, series) -> None:
        """Replace the calendar and bring enrollments and credit ledgers in line with it."""
        stores.series.replace_sessions(series, scheduler.generate_series_sessions(series))
        stores.db.flush()
        expires_at = makeup.ledger_expiry(series, self.settings.MAKEUP_CREDIT_VALIDITY_DAYS)
        for e in stores.enrollments.for_series(series.id, ["enrolled", "waitlisted"]):
            e.total_sessions = series.number_of_weeks
            ledger = stores.makeups.ledger(e.id)
            if ledger is not None:
                ledger.expires_at = expires_at

    def set_series_status(self, series_id: int, status: str) -> SeriesOut:
        with self.locks.hold(series_key(series_id)), self._uow() as db:
            series = Stores(db).series.lock(series_id)
            if series.status in ("completed", "cancelled"):
                raise InvalidTransitionError("Series", series.status, status)
            series.status = status
            return SeriesOut.model_validate(series)

    def refresh_series_statuses(self) -> int:
        """Move series along open -> closed -> in-progress -> completed, and sessions along by date."""
        today, changed = self._today(), 0
        with self._uow() as db:
            series_ids = [s.id for s in Stores(db).series.list(["open", "closed", "in-progress"])]

        for series_id in series_ids:
            with self.locks.hold(series_key(series_id)), self._uow() as db:
                series = Stores(db).series.lock(series_id)
                target = scheduler.next_series_status(series, today)
                if target != series.status:
                    logger.info("Series %s: %s -> %s", series.id, series.status, target)
                    series.status = target
                    changed += 1
                for session in series.sessions:
                    session.status = scheduler.session_status_on(session, today)
        return changed

    def get_series(self, series_id: int) -> SeriesOut:
        with self._uow() as db:
            return SeriesOut.model_validate(Stores(db).series.get(series_id))

    # ---------------------------------------------------------
    # Eligibility
    # ---------------------------------------------------------
    def _evaluate(self, stores, pet, course_type, valid_through=None) -> EligibilityResult:
        return eligibility.evaluate(
            pet,
            course_type,
            stores.certificates.completed_course_ids(pet.id),
            self.vaccinations.records_for(pet.id),
            behavioral_rules=self.facility.behavioral_rules(),
            as_of=self._today(),
            valid_through=valid_through,
            prerequisite_overrides=self.facility.prerequisite_overrides(),
        )

    def check_eligibility(self, pet_id: int, course_type_id: str, series_id: Optional[int] = None) -> EligibilityResult:
        db = self.session_factory()
        try:
            stores = Stores(db)
            pet = stores.pets.get(pet_id)
            course_type = stores.catalog.get(course_type_id)
            valid_through = None
            if series_id is not None:
                valid_through = scheduler.series_end_date(stores.series.get(series_id))
            return self._evaluate(stores, pet, course_type, valid_through)
        finally:
            db.close()

    # ---------------------------------------------------------
    # Booking
    # ---------------------------------------------------------
    def book(self, pet_id: int, series_id: int) -> BookingResult:
        now = self.clock()
        with self.locks.hold(series_key(series_id)):
            with self._uow() as db:
                stores = Stores(db)
                series = stores.series.lock(series_id)
                pet = stores.pets.get(pet_id)

                problem = machine.booking_window_problem(series, now.date())
                if problem:
                    logger.warning("Booking rejected for pet %s in series %s: %s", pet_id, series_id, problem)
                    return BookingResult(outcome="rejected", reason=problem)
                if stores.enrollments.find_active(pet_id, series_id) is not None:
                    return BookingResult(outcome="rejected", reason="Pet is already booked into this series.")

                result = self._evaluate(
                    stores, pet, stores.catalog.get(series.course_type_id), scheduler.series_end_date(series)
                )
                if not result.eligible:
                    logger.info("Pet %s not eligible for series %s", pet_id, series_id)
                    return BookingResult(outcome="ineligible", issues=result.issues)

                if stores.series.try_take_slot(series_id):
                    enrollment = stores.enrollments.add(machine.new_enrollment(series, pet, "enrolled", now))
                    machine.open_makeup_ledger(
                        stores, enrollment, series,
                        self.facility.makeup_credits_per_enrollment(),
                        self.settings.MAKEUP_CREDIT_VALIDITY_DAYS,
                    )
                elif series.waitlist_enabled:
                    enrollment = stores.enrollments.add(machine.new_enrollment(series, pet, "waitlisted", now))
                else:
                    logger.info("Series %s full; pet %s turned away", series_id, pet_id)
                    return BookingResult(outcome="series_full", reason="Series is full.", issues=result.issues)

                position = machine.waitlist_position(stores, enrollment)
                out = EnrollmentOut.model_validate(enrollment)
                amount = series.deposit_required or series.full_payment_amount

            if out.status == "waitlisted":
                logger.info("Pet %s waitlisted for series %s at position %s", pet_id, series_id, position)
                return BookingResult(outcome="waitlisted", enrollment=out, waitlist_position=position,
                                     issues=result.issues)

            # committed; capture the booking payment, undo the booking if it fails
            try:
                if amount:
                    self.payments.charge(out.owner_id, amount, f"enrollment-{out.id}", "booking")
            except PaymentError as e:
                logger.warning("Payment failed for enrollment %s, rolling back booking: %s", out.id, e)
                warnings = self._undo_booking(out.id, now)
                return BookingResult(outcome="payment_failed", reason=str(e), retriable=True, warnings=warnings)

        logger.info("Pet %s enrolled in series %s (enrollment %s)", pet_id, series_id, out.id)
        return BookingResult(outcome="enrolled", enrollment=out, issues=result.issues)

    def _undo_booking(self, enrollment_id: int, now: datetime) -> List[str]:
        """Caller holds the series lock."""
        with self._uow() as db:
            stores = Stores(db)
            enrollment = stores.enrollments.get(enrollment_id)
            series = stores.series.lock(enrollment.series_id)
            stores.enrollments.delete(enrollment)
            effects = machine.release_capacity(stores, series, now, self.settings.WAITLIST_CLAIM_HOURS)
        return self._flush(effects)

    def waitlist_position(self, enrollment_id: int) -> Optional[int]:
        with self._uow() as db:
            stores = Stores(db)
            return machine.waitlist_position(stores, stores.enrollments.get(enrollment_id))

    # ---------------------------------------------------------
    # Drop / waitlist offers
    # ---------------------------------------------------------
    def drop(self, enrollment_id: int, reason: Optional[str] = None) -> EnrollmentOut:
        series_id = self._series_id_of(enrollment_id)
        now = self.clock()
        with self.locks.hold(series_key(series_id)), self.locks.hold(enrollment_key(enrollment_id)):
            with self._uow() as db:
                stores = Stores(db)
                series = stores.series.lock(series_id)
                enrollment = stores.enrollments.get(enrollment_id)
                was = enrollment.status
                had_offer = enrollment.offer_expires_at is not None

                if was == "waitlisted" and had_offer:
                    effects = machine.pass_offer(stores, enrollment, series, now,
                                                 self.settings.WAITLIST_CLAIM_HOURS, reason or "dropped")
                else:
                    machine.transition(enrollment, "dropped")
                    enrollment.dropped_reason = reason
                    effects = []
                    if was == "enrolled":
                        makeup.cancel_open(stores, enrollment_id)
                        effects = machine.release_capacity(stores, series, now, self.settings.WAITLIST_CLAIM_HOURS)
                out = EnrollmentOut.model_validate(enrollment)
        self._flush(effects)
        return out

    def claim_offer(self, enrollment_id: int) -> EnrollmentOut:
        """
        Take the held slot, then charge the booking amount. A failed charge
        puts the entrant back on the waitlist with the same offer and the
        PaymentError propagates, so the claim can be retried in the window.
        """
        series_id = self._series_id_of(enrollment_id)
        now = self.clock()
        with self.locks.hold(series_key(series_id)), self.locks.hold(enrollment_key(enrollment_id)):
            with self._uow() as db:
                stores = Stores(db)
                series = stores.series.lock(series_id)
                enrollment = stores.enrollments.get(enrollment_id)
                machine.ensure_offer_open(enrollment, now)

                # vaccines may have lapsed while waiting
                result = self._evaluate(
                    stores, stores.pets.get(enrollment.pet_id),
                    stores.catalog.get(series.course_type_id), scheduler.series_end_date(series),
                )
                if not result.eligible:
                    logger.info("Enrollment %s cannot claim its offer: pet no longer eligible", enrollment_id)
                    raise IneligibleError(enrollment.pet_id, result.issues)

                offered_at, expires_at = enrollment.offered_at, enrollment.offer_expires_at
                machine.claim_offer(stores, enrollment, now)
                machine.open_makeup_ledger(
                    stores, enrollment, series,
                    self.facility.makeup_credits_per_enrollment(),
                    self.settings.MAKEUP_CREDIT_VALIDITY_DAYS,
                )
                out = EnrollmentOut.model_validate(enrollment)
                amount = series.deposit_required or series.full_payment_amount

            try:
                if amount:
                    self.payments.charge(out.owner_id, amount, f"enrollment-{out.id}", "booking")
            except PaymentError as e:
                logger.warning("Payment failed for enrollment %s, returning it to the waitlist: %s", out.id, e)
                with self._uow() as db:
                    stores = Stores(db)
                    stores.series.lock(series_id)
                    machine.revert_claim(stores, stores.enrollments.get(enrollment_id), offered_at, expires_at)
                raise
        logger.info("Enrollment %s claimed its waitlist offer", enrollment_id)
        return out

    def decline_offer(self, enrollment_id: int) -> EnrollmentOut:
        series_id = self._series_id_of(enrollment_id)
        now = self.clock()
        with self.locks.hold(series_key(series_id)), self.locks.hold(enrollment_key(enrollment_id)):
            with self._uow() as db:
                stores = Stores(db)
                series = stores.series.lock(series_id)
                enrollment = stores.enrollments.get(enrollment_id)
                if enrollment.offer_expires_at is None:
                    raise InvalidTransitionError("Enrollment", enrollment.status, "dropped")
                effects = machine.pass_offer(stores, enrollment, series, now,
                                             self.settings.WAITLIST_CLAIM_HOURS, "offer_declined")
                out = EnrollmentOut.model_validate(enrollment)
        self._flush(effects)
        return out

    def expire_waitlist_offers(self) -> int:
        """Background sweep: pass on every offer older than the claim window."""
        now = self.clock()
        with self._uow() as db:
            series_ids = Stores(db).enrollments.series_with_expired_offers(now)

        total, effects = 0, []
        for series_id in series_ids:
            with self.locks.hold(series_key(series_id)), self._uow() as db:
                stores = Stores(db)
                expired, found = machine.expire_offers(
                    stores, stores.series.lock(series_id), now, self.settings.WAITLIST_CLAIM_HOURS
                )
                total += expired
                effects += found
        self._flush(effects)
        if total:
            logger.info("Waitlist sweep expired %s offer(s)", total)
        return total

    # ---------------------------------------------------------
    # Attendance
    # ---------------------------------------------------------
    def record_attendance(self, enrollment_id: int, session_number: int, status: str, **details) -> AttendanceOutcome:
        now = self.clock()
        effects = []
        made_up, cert = None, None
        with self.locks.hold(enrollment_key(enrollment_id)), self._uow() as db:
            stores = Stores(db)
            enrollment = stores.enrollments.get(enrollment_id)
            attendance = machine.record_attendance(stores, enrollment, session_number, status, **details)

            if machine.is_missed(attendance):
                try:
                    made_up = makeup.create_for_missed(
                        stores, enrollment, attendance, self.facility.makeup_pricing(), now
                    )
                    effects.append(dispatch.notification(
                        "makeup_available", enrollment.owner_id,
                        enrollment_id=enrollment.id, makeup_session_id=made_up.id,
                        missed_session_number=attendance.session_number,
                    ))
                except MakeupError as e:
                    logger.info("No makeup for enrollment %s session %s: %s", enrollment.id, session_number, e)

            cert, done = machine.maybe_complete(stores, enrollment, now, self.facility.prerequisite_overrides())
            effects += done

            outcome = AttendanceOutcome(
                enrollment=EnrollmentOut.model_validate(enrollment),
                attendance=AttendanceOut.model_validate(attendance),
                makeup_session=MakeupSessionOut.model_validate(made_up) if made_up else None,
                certificate=CertificateOut.model_validate(cert) if cert else None,
            )
        outcome.warnings = self._flush(effects)
        return outcome

    # ---------------------------------------------------------
    # Makeups
    # ---------------------------------------------------------
    def request_makeup(self, enrollment_id: int, missed_session_id: int) -> MakeupOutcome:
        now = self.clock()
        with self.locks.hold(enrollment_key(enrollment_id)), self._uow() as db:
            stores = Stores(db)
            enrollment = stores.enrollments.get(enrollment_id)
            attendance = stores.enrollments.attendance_for(enrollment_id, missed_session_id)
            if attendance is None:
                raise NotMissedError(f"no attendance recorded for session {missed_session_id}")
            if enrollment.status != "enrolled":
                raise InvalidTransitionError("Enrollment", enrollment.status, "makeup")
            made_up = makeup.create_for_missed(stores, enrollment, attendance, self.facility.makeup_pricing(), now)
            outcome = MakeupOutcome(
                makeup_session=MakeupSessionOut.model_validate(made_up),
                enrollment=EnrollmentOut.model_validate(enrollment),
            )
        return outcome

    def schedule_makeup(self, makeup_id: int, scheduled_date: date, scheduled_time: str, trainer_id: str) -> MakeupOutcome:
        enrollment_id = self._makeup_owner(makeup_id)
        with self.locks.hold(enrollment_key(enrollment_id)), self._uow() as db:
            stores = Stores(db)
            made_up = stores.makeups.get(makeup_id)
            makeup.transition(made_up, "scheduled")
            made_up.scheduled_date = scheduled_date
            made_up.scheduled_time = scheduled_time
            made_up.trainer_id = trainer_id
            enrollment = stores.enrollments.get(enrollment_id)

            effects = [dispatch.notification(
                "makeup_reminder", enrollment.owner_id,
                makeup_session_id=made_up.id,
                scheduled_date=scheduled_date.isoformat(),
                scheduled_time=scheduled_time,
                trainer_id=trainer_id,
            )]
            if made_up.price:
                effects.append(dispatch.payment("makeup", enrollment.owner_id, made_up.price, f"makeup-{made_up.id}"))
            outcome = MakeupOutcome(
                makeup_session=MakeupSessionOut.model_validate(made_up),
                enrollment=EnrollmentOut.model_validate(enrollment),
            )
        outcome.warnings = self._flush(effects)
        return outcome

    def complete_makeup(self, makeup_id: int) -> MakeupOutcome:
        return self._resolve_makeup(makeup_id, "completed")

    def cancel_makeup(self, makeup_id: int) -> MakeupOutcome:
        """Cancelled makeups do not refund the credit."""
        return self._resolve_makeup(makeup_id, "cancelled")

    def _resolve_makeup(self, makeup_id: int, target: str) -> MakeupOutcome:
        now = self.clock()
        enrollment_id = self._makeup_owner(makeup_id)
        with self.locks.hold(enrollment_key(enrollment_id)), self._uow() as db:
            stores = Stores(db)
            made_up = stores.makeups.get(makeup_id)
            makeup.transition(made_up, target)
            enrollment = stores.enrollments.get(enrollment_id)
            if target == "completed":
                machine.credit_attendance(enrollment)
            db.flush()
            cert, effects = machine.maybe_complete(stores, enrollment, now, self.facility.prerequisite_overrides())
            outcome = MakeupOutcome(
                makeup_session=MakeupSessionOut.model_validate(made_up),
                enrollment=EnrollmentOut.model_validate(enrollment),
                certificate=CertificateOut.model_validate(cert) if cert else None,
            )
        outcome.warnings = self._flush(effects)
        return outcome

    def _makeup_owner(self, makeup_id: int) -> int:
        with self._uow() as db:
            return Stores(db).makeups.get(makeup_id).enrollment_id

    # ---------------------------------------------------------
    # Progression
    # ---------------------------------------------------------
    def get_progression(self, pet_id: int) -> List[CourseProgression]:
        db = self.session_factory()
        try:
            stores = Stores(db)
            stores.pets.get(pet_id)
            return progression.course_progression(
                stores.catalog.list(active_only=True),
                stores.certificates.completed_course_ids(pet_id),
                self.facility.prerequisite_overrides(),
            )
        finally:
            db.close()

    def next_available_courses(self, course_type_id: str) -> List[str]:
        with self._uow() as db:
            stores = Stores(db)
            stores.catalog.get(course_type_id)
            return progression.next_available_courses(
                course_type_id, stores.catalog.list(active_only=True), self.facility.prerequisite_overrides()
            )

    def certificates_for(self, pet_id: int) -> List[CertificateOut]:
        db = self.session_factory()
        try:
            return [CertificateOut.model_validate(c) for c in Stores(db).certificates.for_pet(pet_id)]
        finally:
            db.close()

    def get_enrollment(self, enrollment_id: int) -> EnrollmentOut:
        with self._uow() as db:
            return EnrollmentOut.model_validate(Stores(db).enrollments.get(enrollment_id))

    def list_enrollments(self, series_id: int) -> List[EnrollmentOut]:
        with self._uow() as db:
            stores = Stores(db)
            stores.series.get(series_id)
            return [EnrollmentOut.model_validate(e) for e in stores.enrollments.for_series(series_id)]

    def list_course_types(self, active_only: bool = False):
        with self._uow() as db:
            return [CourseTypeOut.model_validate(ct) for ct in Stores(db).catalog.list(active_only)]

    def roster(self, series_id: int):
        """(series, [(enrollment, pet name, {session_number: attendance status})]) for exports."""
        with self._uow() as db:
            stores = Stores(db)
            series = SeriesOut.model_validate(stores.series.get(series_id))
            rows = []
            for e in stores.enrollments.for_series(series_id, ["enrolled", "waitlisted", "completed"]):
                marks = {a.session_number: a.status for a in e.attendances}
                rows.append((EnrollmentOut.model_validate(e), stores.pets.get(e.pet_id).name, marks))
            return series, rows
