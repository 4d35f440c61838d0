# backend/training/schemas.py
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

SeriesStatus = Literal["draft", "open", "closed", "in-progress", "completed", "cancelled"]
SessionStatus = Literal["scheduled", "in-progress", "completed", "cancelled"]
EnrollmentStatus = Literal["waitlisted", "enrolled", "completed", "dropped"]
AttendanceStatus = Literal["present", "absent", "late", "excused"]
MakeupStatus = Literal["pending", "scheduled", "completed", "cancelled"]
Severity = Literal["error", "warning"]
IssueType = Literal["age", "vaccine", "prerequisite", "behavioral", "availability"]


# --------------------------------------------
# Catalog
# --------------------------------------------
class CourseTypeIn(BaseModel):
    id: str
    name: str
    description: str = ""
    default_weeks: int = Field(6, ge=1)
    min_age_weeks: int = Field(0, ge=0)
    max_age_weeks: Optional[int] = None
    required_vaccines: List[str] = []
    prerequisites: List[str] = []
    is_active: bool = True
    what_to_bring: Optional[List[str]] = None
    cancellation_policy: Optional[str] = None
    refund_policy: Optional[str] = None


class CourseTypeOut(CourseTypeIn):
    class Config:
        from_attributes = True


# --------------------------------------------
# Series / Session
# --------------------------------------------
class SeriesCreate(BaseModel):
    course_type_id: str
    series_name: str
    start_date: date
    day_of_week: int = Field(..., ge=0, le=6)
    start_time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    end_time: Optional[str] = None      # derived from start_time + duration when omitted
    duration: int = Field(60, ge=1)
    number_of_weeks: int = Field(..., ge=1)
    location: Optional[str] = None
    instructor_id: Optional[str] = None
    max_capacity: int = Field(..., ge=1)
    booking_opens_date: Optional[date] = None
    booking_closes_date: Optional[date] = None
    deposit_required: Decimal = Decimal("0")
    full_payment_amount: Decimal = Decimal("0")
    waitlist_enabled: bool = True
    allow_drop_ins: bool = False
    status: SeriesStatus = "draft"


class SeriesUpdate(BaseModel):
    series_name: Optional[str] = None
    start_date: Optional[date] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    start_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    end_time: Optional[str] = None
    duration: Optional[int] = Field(None, ge=1)
    number_of_weeks: Optional[int] = Field(None, ge=1)
    location: Optional[str] = None
    instructor_id: Optional[str] = None
    booking_opens_date: Optional[date] = None
    booking_closes_date: Optional[date] = None


class SessionOut(BaseModel):
    id: Optional[int] = None
    series_id: Optional[int] = None
    session_number: int
    date: date
    start_time: str
    end_time: str
    status: SessionStatus = "scheduled"
    enrolled_count: int = 0

    class Config:
        from_attributes = True


class SeriesOut(BaseModel):
    id: int
    course_type_id: str
    series_name: str
    start_date: date
    day_of_week: int
    start_time: str
    end_time: str
    duration: int
    number_of_weeks: int
    location: Optional[str]
    instructor_id: Optional[str]
    max_capacity: int
    enrolled_count: int
    held_slots: int
    waitlist_enabled: bool
    status: SeriesStatus
    sessions: List[SessionOut] = []

    class Config:
        from_attributes = True


# --------------------------------------------
# Eligibility
# --------------------------------------------
class Issue(BaseModel):
    type: IssueType
    message: str
    severity: Severity = "error"


class EligibilityResult(BaseModel):
    eligible: bool
    issues: List[Issue] = []

    @property
    def errors(self) -> List[Issue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> List[Issue]:
        return [i for i in self.issues if i.severity == "warning"]


class BehavioralRule(BaseModel):
    course_type_id: str
    flags: List[str]
    message: str
    severity: Severity = "error"


# --------------------------------------------
# Makeup pricing (tagged variant)
# --------------------------------------------
class FixedPricing(BaseModel):
    kind: Literal["fixed"] = "fixed"
    amount: Decimal = Field(..., ge=0)


class PercentagePricing(BaseModel):
    kind: Literal["percentage"] = "percentage"
    # fraction of the series full payment, 0.15 == 15%
    percentage_of_series: Decimal = Field(..., ge=0, le=1)


class PerSessionPricing(BaseModel):
    kind: Literal["per_session"] = "per_session"
    amount: Decimal = Field(..., ge=0)


PricingRule = Annotated[
    Union[FixedPricing, PercentagePricing, PerSessionPricing],
    Field(discriminator="kind"),
]


# --------------------------------------------
# Enrollment / Attendance / Makeup / Certificate
# --------------------------------------------
class EnrollmentOut(BaseModel):
    id: int
    series_id: int
    pet_id: int
    owner_id: int
    status: EnrollmentStatus
    sessions_attended: int
    total_sessions: int
    current_session_number: int
    progress: int
    joined_at: datetime
    offer_expires_at: Optional[datetime] = None
    dropped_reason: Optional[str] = None

    class Config:
        from_attributes = True


class AttendanceIn(BaseModel):
    session_number: int = Field(..., ge=1)
    status: AttendanceStatus
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    handler_name: Optional[str] = None
    trainer_notes: Optional[str] = None


class AttendanceOut(BaseModel):
    id: int
    enrollment_id: int
    session_id: int
    session_number: int
    status: AttendanceStatus
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None

    class Config:
        from_attributes = True


class MakeupSessionOut(BaseModel):
    id: int
    enrollment_id: int
    missed_session_id: int
    attendance_id: int
    status: MakeupStatus
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    trainer_id: Optional[str] = None
    price: Decimal
    pricing_kind: str

    class Config:
        from_attributes = True


class MakeupRequest(BaseModel):
    enrollment_id: int
    missed_session_id: int


class MakeupSchedule(BaseModel):
    scheduled_date: date
    scheduled_time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    trainer_id: str


class CertificateOut(BaseModel):
    id: int
    enrollment_id: int
    series_id: int
    course_type_id: str
    pet_id: int
    completion_date: date
    certificate_number: str
    unlocked_next_course_ids: List[str] = []

    class Config:
        from_attributes = True


class CourseProgression(BaseModel):
    course_type_id: str
    course_type_name: str
    is_unlocked: bool
    is_completed: bool = False
    required_prerequisites: List[str] = []
    completed_prerequisites: List[str] = []
    missing_prerequisites: List[str] = []
    unlock_reason: Optional[str] = None


# --------------------------------------------
# Operation results
# --------------------------------------------
BookingOutcome = Literal["enrolled", "waitlisted", "series_full", "ineligible", "rejected", "payment_failed"]


class BookingRequest(BaseModel):
    pet_id: int
    series_id: int


class BookingResult(BaseModel):
    outcome: BookingOutcome
    enrollment: Optional[EnrollmentOut] = None
    waitlist_position: Optional[int] = None
    issues: List[Issue] = []
    reason: Optional[str] = None
    retriable: bool = False
    warnings: List[str] = []

    @property
    def ok(self) -> bool:
        return self.outcome in ("enrolled", "waitlisted")


class AttendanceOutcome(BaseModel):
    enrollment: EnrollmentOut
    attendance: AttendanceOut
    makeup_session: Optional[MakeupSessionOut] = None
    certificate: Optional[CertificateOut] = None
    warnings: List[str] = []


class MakeupOutcome(BaseModel):
    makeup_session: MakeupSessionOut
    enrollment: EnrollmentOut
    certificate: Optional[CertificateOut] = None
    warnings: List[str] = []


class DropRequest(BaseModel):
    reason: Optional[str] = None
