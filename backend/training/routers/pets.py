# backend/training/routers/pets.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..deps import domain_errors, get_engine
from ..engine import TrainingEngine

router = APIRouter(prefix="/pets", tags=["Pets"])


@router.get("/{pet_id}/eligibility/{course_type_id}", response_model=schemas.EligibilityResult)
def check_eligibility(
    pet_id: int,
    course_type_id: str,
    series_id: Optional[int] = Query(None),
    engine: TrainingEngine = Depends(get_engine),
):
    with domain_errors():
        return engine.check_eligibility(pet_id, course_type_id, series_id)


@router.get("/{pet_id}/progression", response_model=List[schemas.CourseProgression])
def progression(pet_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.get_progression(pet_id)


@router.get("/{pet_id}/certificates", response_model=List[schemas.CertificateOut])
def certificates(pet_id: int, engine: TrainingEngine = Depends(get_engine)):
    return engine.certificates_for(pet_id)
