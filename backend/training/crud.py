# backend/training/crud.py
"""
Stores: the persistence boundary of the engine.

Each store wraps one SQLAlchemy session; the engine opens a session per
operation with `unit_of_work`, builds the stores it needs over it and only
calls the methods below. Swapping the backing database means providing
objects with the same methods.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from . import models, schemas
from .exceptions import NotFoundError

OPEN_MAKEUP_STATUSES = ("pending", "scheduled")


@contextmanager
def unit_of_work(session_factory):
    """Commit on success, roll back and re-raise on any error, always close."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ---------- CATALOG ----------
class CatalogStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, course_type_id: str) -> models.CourseType:
        ct = self.db.get(models.CourseType, course_type_id)
        if ct is None:
            raise NotFoundError("CourseType", course_type_id)
        return ct

    def list(self, active_only: bool = False) -> List[models.CourseType]:
        q = self.db.query(models.CourseType)
        if active_only:
            q = q.filter(models.CourseType.is_active.is_(True))
        return q.order_by(models.CourseType.id).all()

    def upsert(self, payload: schemas.CourseTypeIn) -> models.CourseType:
        ct = self.db.get(models.CourseType, payload.id)
        if ct is None:
            ct = models.CourseType(id=payload.id)
            self.db.add(ct)
        for k, v in payload.model_dump(exclude={"id"}).items():
            setattr(ct, k, v)
        self.db.flush()
        return ct


# ---------- SERIES / SESSIONS ----------
class SeriesStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, series_id: int) -> models.Series:
        series = self.db.get(models.Series, series_id)
        if series is None:
            raise NotFoundError("Series", series_id)
        return series

    def lock(self, series_id: int) -> models.Series:
        """
        Hold the series row until the transaction ends, so waitlist and capacity
        changes from other processes (the beat sweep) queue behind this one.
        A no-op UPDATE is a row lock on PostgreSQL and the write lock on SQLite.
        Call it first in the unit of work; the row is reloaded afterwards.
        """
        S = models.Series
        self.db.execute(
            update(S).where(S.id == series_id)
            .values(held_slots=S.held_slots)
            .execution_options(synchronize_session=False)
        )
        series = self.db.query(S).filter(S.id == series_id).populate_existing().first()
        if series is None:
            raise NotFoundError("Series", series_id)
        return series

    def list(self, statuses: Optional[Iterable[str]] = None) -> List[models.Series]:
        q = self.db.query(models.Series)
        if statuses:
            q = q.filter(models.Series.status.in_(list(statuses)))
        return q.order_by(models.Series.start_date, models.Series.id).all()

    def add(self, series: models.Series) -> models.Series:
        self.db.add(series)
        self.db.flush()   # ensure series.id is available
        return series

    def replace_sessions(self, series: models.Series, sessions: List[schemas.SessionOut]) -> None:
        for old in list(series.sessions):
            self.db.delete(old)
        self.db.flush()
        self.db.expire(series, ["sessions"])
        for s in sessions:
            self.db.add(models.Session(
                series_id=series.id,
                session_number=s.session_number,
                date=s.date,
                start_time=s.start_time,
                end_time=s.end_time,
                status=s.status,
                enrolled_count=series.enrolled_count or 0,
            ))
        self.db.flush()
        self.db.expire(series, ["sessions"])

    def session_by_number(self, series_id: int, session_number: int) -> models.Session:
        s = (
            self.db.query(models.Session)
            .filter(models.Session.series_id == series_id, models.Session.session_number == session_number)
            .first()
        )
        if s is None:
            raise NotFoundError("Session", (series_id, session_number))
        return s

    # ---- capacity counter ----
    def try_take_slot(self, series_id: int) -> bool:
        """
        Atomic compare-and-increment: one conditional UPDATE, so two racing
        bookings can never both take the last slot.
        """
        S = models.Series
        result = self.db.execute(
            update(S)
            .where(S.id == series_id, S.enrolled_count + S.held_slots < S.max_capacity)
            .values(enrolled_count=S.enrolled_count + 1)
            .execution_options(synchronize_session=False)
        )
        taken = result.rowcount == 1
        if taken:
            self._bump_sessions(series_id, 1)
        self._expire(series_id)
        return taken

    def release_slot(self, series_id: int, hold: bool = False) -> None:
        """Give back an enrolled slot; with `hold` it stays reserved for a waitlist offer."""
        S = models.Series
        values = {"enrolled_count": S.enrolled_count - 1}
        if hold:
            values["held_slots"] = S.held_slots + 1
        self.db.execute(
            update(S).where(S.id == series_id, S.enrolled_count > 0)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._bump_sessions(series_id, -1)
        self._expire(series_id)

    def claim_held_slot(self, series_id: int) -> bool:
        S = models.Series
        result = self.db.execute(
            update(S).where(S.id == series_id, S.held_slots > 0)
            .values(held_slots=S.held_slots - 1, enrolled_count=S.enrolled_count + 1)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        if claimed:
            self._bump_sessions(series_id, 1)
        self._expire(series_id)
        return claimed

    def return_to_hold(self, series_id: int) -> None:
        """Undo `claim_held_slot`: the seat goes back to being held for the offer."""
        S = models.Series
        self.db.execute(
            update(S).where(S.id == series_id, S.enrolled_count > 0)
            .values(held_slots=S.held_slots + 1, enrolled_count=S.enrolled_count - 1)
            .execution_options(synchronize_session=False)
        )
        self._bump_sessions(series_id, -1)
        self._expire(series_id)

    def free_held_slot(self, series_id: int) -> None:
        S = models.Series
        self.db.execute(
            update(S).where(S.id == series_id, S.held_slots > 0)
            .values(held_slots=S.held_slots - 1)
            .execution_options(synchronize_session=False)
        )
        self._expire(series_id)

    def _bump_sessions(self, series_id: int, delta: int) -> None:
        Sess = models.Session
        self.db.execute(
            update(Sess)
            .where(Sess.series_id == series_id, Sess.status == "scheduled")
            .values(enrolled_count=Sess.enrolled_count + delta)
            .execution_options(synchronize_session=False)
        )

    def _expire(self, series_id: int) -> None:
        series = self.db.get(models.Series, series_id)
        if series is not None:
            self.db.expire(series)
            for s in list(series.sessions):
                self.db.expire(s)


# ---------- PETS ----------
class PetStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, pet_id: int) -> models.Pet:
        pet = self.db.get(models.Pet, pet_id)
        if pet is None:
            raise NotFoundError("Pet", pet_id)
        return pet


# ---------- ENROLLMENTS / ATTENDANCE ----------
class EnrollmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, enrollment_id: int) -> models.Enrollment:
        e = self.db.get(models.Enrollment, enrollment_id)
        if e is None:
            raise NotFoundError("Enrollment", enrollment_id)
        return e

    def add(self, enrollment: models.Enrollment) -> models.Enrollment:
        self.db.add(enrollment)
        self.db.flush()
        return enrollment

    def delete(self, enrollment: models.Enrollment) -> None:
        self.db.delete(enrollment)
        self.db.flush()

    def find_active(self, pet_id: int, series_id: int) -> Optional[models.Enrollment]:
        return (
            self.db.query(models.Enrollment)
            .filter(
                models.Enrollment.pet_id == pet_id,
                models.Enrollment.series_id == series_id,
                models.Enrollment.status != "dropped",
            )
            .first()
        )

    def for_series(self, series_id: int, statuses: Optional[Iterable[str]] = None) -> List[models.Enrollment]:
        q = self.db.query(models.Enrollment).filter(models.Enrollment.series_id == series_id)
        if statuses:
            q = q.filter(models.Enrollment.status.in_(list(statuses)))
        return q.order_by(models.Enrollment.joined_at, models.Enrollment.id).all()

    def waitlist(self, series_id: int) -> List[models.Enrollment]:
        """Waitlisted enrollments in join order."""
        return self.for_series(series_id, ["waitlisted"])

    def current_offer(self, series_id: int) -> Optional[models.Enrollment]:
        return (
            self.db.query(models.Enrollment)
            .filter(
                models.Enrollment.series_id == series_id,
                models.Enrollment.status == "waitlisted",
                models.Enrollment.offer_expires_at.isnot(None),
            )
            .order_by(models.Enrollment.offered_at, models.Enrollment.id)
            .first()
        )

    def series_with_expired_offers(self, now: datetime) -> List[int]:
        rows = (
            self.db.query(models.Enrollment.series_id)
            .filter(
                models.Enrollment.status == "waitlisted",
                models.Enrollment.offer_expires_at.isnot(None),
                models.Enrollment.offer_expires_at <= now,
            )
            .distinct()
            .all()
        )
        return sorted(r[0] for r in rows)

    def attendance_for(self, enrollment_id: int, session_id: int) -> Optional[models.Attendance]:
        return (
            self.db.query(models.Attendance)
            .filter(models.Attendance.enrollment_id == enrollment_id, models.Attendance.session_id == session_id)
            .first()
        )

    def get_attendance(self, attendance_id: int) -> models.Attendance:
        a = self.db.get(models.Attendance, attendance_id)
        if a is None:
            raise NotFoundError("Attendance", attendance_id)
        return a

    def add_attendance(self, attendance: models.Attendance) -> models.Attendance:
        self.db.add(attendance)
        self.db.flush()
        return attendance


# ---------- MAKEUPS ----------
class MakeupStore:
    def __init__(self, db: Session):
        self.db = db

    def ledger(self, enrollment_id: int) -> Optional[models.MakeupCredit]:
        return (
            self.db.query(models.MakeupCredit)
            .filter(models.MakeupCredit.enrollment_id == enrollment_id)
            .first()
        )

    def add_ledger(self, ledger: models.MakeupCredit) -> models.MakeupCredit:
        self.db.add(ledger)
        self.db.flush()
        return ledger

    def delete_ledger(self, enrollment_id: int) -> None:
        ledger = self.ledger(enrollment_id)
        if ledger is not None:
            self.db.delete(ledger)
            self.db.flush()

    def get(self, makeup_id: int) -> models.MakeupSession:
        m = self.db.get(models.MakeupSession, makeup_id)
        if m is None:
            raise NotFoundError("MakeupSession", makeup_id)
        return m

    def add(self, makeup: models.MakeupSession) -> models.MakeupSession:
        self.db.add(makeup)
        self.db.flush()
        return makeup

    def open_for_attendance(self, attendance_id: int) -> Optional[models.MakeupSession]:
        return (
            self.db.query(models.MakeupSession)
            .filter(
                models.MakeupSession.attendance_id == attendance_id,
                models.MakeupSession.status.in_(OPEN_MAKEUP_STATUSES),
            )
            .first()
        )

    def open_for_enrollment(self, enrollment_id: int) -> List[models.MakeupSession]:
        return (
            self.db.query(models.MakeupSession)
            .filter(
                models.MakeupSession.enrollment_id == enrollment_id,
                models.MakeupSession.status.in_(OPEN_MAKEUP_STATUSES),
            )
            .order_by(models.MakeupSession.id)
            .all()
        )

    def count_open(self, enrollment_id: int) -> int:
        return (
            self.db.query(func.count(models.MakeupSession.id))
            .filter(
                models.MakeupSession.enrollment_id == enrollment_id,
                models.MakeupSession.status.in_(OPEN_MAKEUP_STATUSES),
            )
            .scalar()
        )


# ---------- CERTIFICATES ----------
class CertificateStore:
    def __init__(self, db: Session):
        self.db = db

    def for_enrollment(self, enrollment_id: int) -> Optional[models.Certificate]:
        return (
            self.db.query(models.Certificate)
            .filter(models.Certificate.enrollment_id == enrollment_id)
            .first()
        )

    def for_pet(self, pet_id: int) -> List[models.Certificate]:
        return (
            self.db.query(models.Certificate)
            .filter(models.Certificate.pet_id == pet_id)
            .order_by(models.Certificate.completion_date, models.Certificate.id)
            .all()
        )

    def completed_course_ids(self, pet_id: int) -> List[str]:
        return sorted({c.course_type_id for c in self.for_pet(pet_id)})

    def add(self, cert: models.Certificate) -> models.Certificate:
        self.db.add(cert)
        self.db.flush()
        return cert


class Stores:
    """All stores over one session, so a single operation shares one transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogStore(db)
        self.series = SeriesStore(db)
        self.pets = PetStore(db)
        self.enrollments = EnrollmentStore(db)
        self.makeups = MakeupStore(db)
        self.certificates = CertificateStore(db)
