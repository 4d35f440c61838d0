# backend/training/models.py
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base


class CourseType(Base):
    __tablename__ = "course_types"

    id = Column("course_type_id", String(64), primary_key=True)   # slug, e.g. "basic-obedience"
    name = Column("name", String, nullable=False)
    description = Column("description", Text, default="")
    default_weeks = Column("default_weeks", Integer, nullable=False, default=6)

    min_age_weeks = Column("min_age_weeks", Integer, nullable=False, default=0)
    max_age_weeks = Column("max_age_weeks", Integer, nullable=True)   # None = unbounded

    required_vaccines = Column("required_vaccines", JSON, nullable=False, default=list)
    prerequisites = Column("prerequisites", JSON, nullable=False, default=list)  # course type ids
    is_active = Column("is_active", Boolean, nullable=False, default=True)

    what_to_bring = Column("what_to_bring", JSON, nullable=True)
    cancellation_policy = Column("cancellation_policy", Text, nullable=True)
    refund_policy = Column("refund_policy", Text, nullable=True)

    created_at = Column("created_at", DateTime, default=datetime.utcnow)
    updated_at = Column("updated_at", DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    series = relationship("Series", back_populates="course_type")


class Series(Base):
    __tablename__ = "series"

    id = Column("series_id", Integer, primary_key=True, index=True)
    course_type_id = Column("course_type_id", String(64), ForeignKey("course_types.course_type_id"), nullable=False)
    series_name = Column("series_name", String, nullable=False)

    start_date = Column("start_date", Date, nullable=False)
    # 0=Sun, 1=Mon, ..., 6=Sat
    day_of_week = Column("day_of_week", Integer, nullable=False)
    start_time = Column("start_time", String(5), nullable=False)   # HH:MM
    end_time = Column("end_time", String(5), nullable=False)
    duration = Column("duration", Integer, nullable=False)          # minutes per session
    number_of_weeks = Column("number_of_weeks", Integer, nullable=False)

    location = Column("location", String, nullable=True)
    instructor_id = Column("instructor_id", String, nullable=True)

    max_capacity = Column("max_capacity", Integer, nullable=False)
    enrolled_count = Column("enrolled_count", Integer, nullable=False, default=0)
    # slots reserved for an outstanding waitlist offer
    held_slots = Column("held_slots", Integer, nullable=False, default=0)

    booking_opens_date = Column("booking_opens_date", Date, nullable=True)
    booking_closes_date = Column("booking_closes_date", Date, nullable=True)
    deposit_required = Column("deposit_required", Numeric(10, 2), nullable=False, default=0)
    full_payment_amount = Column("full_payment_amount", Numeric(10, 2), nullable=False, default=0)
    waitlist_enabled = Column("waitlist_enabled", Boolean, nullable=False, default=True)
    allow_drop_ins = Column("allow_drop_ins", Boolean, nullable=False, default=False)

    status = Column("status", String(16), nullable=False, default="draft")

    created_at = Column("created_at", DateTime, default=datetime.utcnow)
    updated_at = Column("updated_at", DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    course_type = relationship("CourseType", back_populates="series")
    sessions = relationship(
        "Session",
        back_populates="series",
        cascade="all, delete-orphan",
        order_by="Session.session_number",
    )
    enrollments = relationship("Enrollment", back_populates="series")


class Session(Base):
    __tablename__ = "sessions"

    id = Column("session_id", Integer, primary_key=True, index=True)
    series_id = Column("series_id", Integer, ForeignKey("series.series_id"), nullable=False)

    session_number = Column("session_number", Integer, nullable=False)   # 1..N
    date = Column("session_date", Date, nullable=False)
    start_time = Column("start_time", String(5), nullable=False)
    end_time = Column("end_time", String(5), nullable=False)
    status = Column("status", String(16), nullable=False, default="scheduled")
    enrolled_count = Column("enrolled_count", Integer, nullable=False, default=0)
    notes = Column("notes", Text, nullable=True)

    series = relationship("Series", back_populates="sessions")

    __table_args__ = (
        UniqueConstraint("series_id", "session_number", name="unique_session_per_series"),
    )


class Pet(Base):
    __tablename__ = "pets"

    id = Column("pet_id", Integer, primary_key=True, index=True)
    owner_id = Column("owner_id", Integer, nullable=False, index=True)
    name = Column("name", String, nullable=False)
    birth_date = Column("birth_date", Date, nullable=True)
    # legacy records only carry an age in years
    age_years = Column("age_years", Numeric(5, 2), nullable=True)
    behavior_flags = Column("behavior_flags", JSON, nullable=False, default=list)


class VaccinationRecord(Base):
    __tablename__ = "vaccination_records"

    id = Column("vaccination_id", Integer, primary_key=True, index=True)
    pet_id = Column("pet_id", Integer, ForeignKey("pets.pet_id"), nullable=False, index=True)
    vaccine_name = Column("vaccine_name", String, nullable=False)
    administered_date = Column("administered_date", Date, nullable=True)
    expiry_date = Column("expiry_date", Date, nullable=False)


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column("enrollment_id", Integer, primary_key=True, index=True)
    series_id = Column("series_id", Integer, ForeignKey("series.series_id"), nullable=False, index=True)
    pet_id = Column("pet_id", Integer, nullable=False, index=True)
    owner_id = Column("owner_id", Integer, nullable=False)

    status = Column("status", String(16), nullable=False, default="enrolled")
    sessions_attended = Column("sessions_attended", Integer, nullable=False, default=0)
    total_sessions = Column("total_sessions", Integer, nullable=False)
    current_session_number = Column("current_session_number", Integer, nullable=False, default=1)
    progress = Column("progress", Integer, nullable=False, default=0)   # 0..100

    joined_at = Column("joined_at", DateTime, nullable=False, default=datetime.utcnow)
    offered_at = Column("offered_at", DateTime, nullable=True)
    offer_expires_at = Column("offer_expires_at", DateTime, nullable=True)
    dropped_reason = Column("dropped_reason", String, nullable=True)
    completed_at = Column("completed_at", DateTime, nullable=True)

    series = relationship("Series", back_populates="enrollments")
    attendances = relationship(
        "Attendance",
        back_populates="enrollment",
        cascade="all, delete-orphan",
        order_by="Attendance.session_number",
    )
    makeup_credit = relationship(
        "MakeupCredit", back_populates="enrollment", uselist=False, cascade="all, delete-orphan"
    )
    makeup_sessions = relationship(
        "MakeupSession", back_populates="enrollment", cascade="all, delete-orphan"
    )


class Attendance(Base):
    __tablename__ = "attendances"

    id = Column("attendance_id", Integer, primary_key=True, index=True)
    enrollment_id = Column("enrollment_id", Integer, ForeignKey("enrollments.enrollment_id"), nullable=False)
    session_id = Column("session_id", Integer, ForeignKey("sessions.session_id"), nullable=False)
    session_number = Column("session_number", Integer, nullable=False)

    status = Column("status", String(16), nullable=False)   # present | absent | late | excused
    check_in_time = Column("check_in_time", DateTime, nullable=True)
    check_out_time = Column("check_out_time", DateTime, nullable=True)
    handler_name = Column("handler_name", String, nullable=True)
    trainer_notes = Column("trainer_notes", Text, nullable=True)

    enrollment = relationship("Enrollment", back_populates="attendances")

    __table_args__ = (
        UniqueConstraint("enrollment_id", "session_id", name="unique_attendance_per_session"),
    )


class MakeupCredit(Base):
    __tablename__ = "makeup_credits"

    id = Column("makeup_credit_id", Integer, primary_key=True, index=True)
    enrollment_id = Column("enrollment_id", Integer, ForeignKey("enrollments.enrollment_id"), nullable=False, unique=True)
    series_id = Column("series_id", Integer, ForeignKey("series.series_id"), nullable=False)
    credits_available = Column("credits_available", Integer, nullable=False, default=0)
    credits_used = Column("credits_used", Integer, nullable=False, default=0)
    expires_at = Column("expires_at", DateTime, nullable=True)

    enrollment = relationship("Enrollment", back_populates="makeup_credit")


class MakeupSession(Base):
    __tablename__ = "makeup_sessions"

    id = Column("makeup_session_id", Integer, primary_key=True, index=True)
    enrollment_id = Column("enrollment_id", Integer, ForeignKey("enrollments.enrollment_id"), nullable=False, index=True)
    missed_session_id = Column("missed_session_id", Integer, ForeignKey("sessions.session_id"), nullable=False)
    attendance_id = Column("attendance_id", Integer, ForeignKey("attendances.attendance_id"), nullable=False)

    status = Column("status", String(16), nullable=False, default="pending")
    scheduled_date = Column("scheduled_date", Date, nullable=True)
    scheduled_time = Column("scheduled_time", String(5), nullable=True)
    trainer_id = Column("trainer_id", String, nullable=True)

    # frozen at creation
    price = Column("price", Numeric(10, 2), nullable=False)
    pricing_kind = Column("pricing_kind", String(16), nullable=False)

    created_at = Column("created_at", DateTime, default=datetime.utcnow)
    updated_at = Column("updated_at", DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    enrollment = relationship("Enrollment", back_populates="makeup_sessions")


class Certificate(Base):
    __tablename__ = "certificates"

    id = Column("certificate_id", Integer, primary_key=True, index=True)
    enrollment_id = Column("enrollment_id", Integer, ForeignKey("enrollments.enrollment_id"), nullable=False, unique=True)
    series_id = Column("series_id", Integer, ForeignKey("series.series_id"), nullable=False)
    course_type_id = Column("course_type_id", String(64), ForeignKey("course_types.course_type_id"), nullable=False)
    pet_id = Column("pet_id", Integer, nullable=False, index=True)
    completion_date = Column("completion_date", Date, nullable=False)
    certificate_number = Column("certificate_number", String(32), nullable=False, unique=True)
    unlocked_next_course_ids = Column("unlocked_next_course_ids", JSON, nullable=False, default=list)
