# backend/training/routers/enrollments.py
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .. import schemas
from ..deps import domain_errors, get_engine
from ..engine import TrainingEngine

router = APIRouter(prefix="/enrollments", tags=["Enrollments"])

BOOKING_STATUS = {
    "enrolled": 201,
    "waitlisted": 202,
    "series_full": 409,
    "ineligible": 422,
    "rejected": 409,
    "payment_failed": 402,
}


# =========================================================
# BOOKING
# =========================================================
@router.post("", response_model=schemas.BookingResult)
@router.post("/", response_model=schemas.BookingResult)
def book(payload: schemas.BookingRequest, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        result = engine.book(payload.pet_id, payload.series_id)
    return JSONResponse(status_code=BOOKING_STATUS[result.outcome], content=result.model_dump(mode="json"))


@router.get("/{enrollment_id}", response_model=schemas.EnrollmentOut)
def get_enrollment(enrollment_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.get_enrollment(enrollment_id)


@router.get("/{enrollment_id}/waitlist-position")
def waitlist_position(enrollment_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return {"enrollment_id": enrollment_id, "position": engine.waitlist_position(enrollment_id)}


# =========================================================
# ATTENDANCE
# =========================================================
@router.post("/{enrollment_id}/attendance", response_model=schemas.AttendanceOutcome)
def record_attendance(enrollment_id: int, payload: schemas.AttendanceIn, engine: TrainingEngine = Depends(get_engine)):
    details = payload.model_dump(exclude={"session_number", "status"}, exclude_none=True)
    with domain_errors():
        return engine.record_attendance(enrollment_id, payload.session_number, payload.status, **details)


# =========================================================
# DROP / WAITLIST OFFERS
# =========================================================
@router.post("/{enrollment_id}/drop", response_model=schemas.EnrollmentOut)
def drop(enrollment_id: int, payload: Optional[schemas.DropRequest] = None, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.drop(enrollment_id, payload.reason if payload else None)


@router.post("/{enrollment_id}/claim", response_model=schemas.EnrollmentOut)
def claim(enrollment_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.claim_offer(enrollment_id)


@router.post("/{enrollment_id}/decline", response_model=schemas.EnrollmentOut)
def decline(enrollment_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.decline_offer(enrollment_id)
