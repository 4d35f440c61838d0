# backend/training/routers/makeups.py
from fastapi import APIRouter, Depends

from .. import schemas
from ..deps import domain_errors, get_engine
from ..engine import TrainingEngine

router = APIRouter(prefix="/makeups", tags=["Makeups"])


@router.post("", response_model=schemas.MakeupOutcome)
@router.post("/", response_model=schemas.MakeupOutcome)
def request_makeup(payload: schemas.MakeupRequest, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.request_makeup(payload.enrollment_id, payload.missed_session_id)


@router.post("/{makeup_id}/schedule", response_model=schemas.MakeupOutcome)
def schedule(makeup_id: int, payload: schemas.MakeupSchedule, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.schedule_makeup(makeup_id, payload.scheduled_date, payload.scheduled_time, payload.trainer_id)


@router.post("/{makeup_id}/complete", response_model=schemas.MakeupOutcome)
def complete(makeup_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.complete_makeup(makeup_id)


@router.post("/{makeup_id}/cancel", response_model=schemas.MakeupOutcome)
def cancel(makeup_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.cancel_makeup(makeup_id)
