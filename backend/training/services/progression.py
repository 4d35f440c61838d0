# backend/training/services/progression.py
import logging
from datetime import date
from typing import Iterable, List, Mapping, Optional

from .. import models
from ..schemas import CourseProgression
from .catalog import effective_prerequisites

logger = logging.getLogger(__name__)


def certificate_number(enrollment_id: int, completion_date: date) -> str:
    return f"TRN-{completion_date.year}-{enrollment_id:06d}"


def unlocked_by(
    course_type_id: str,
    course_types: Iterable,
    completed_course_ids: Iterable[str],
    overrides: Optional[Mapping[str, Iterable[str]]] = None,
) -> List[str]:
    """
    Active course types that list `course_type_id` as a prerequisite and whose
    remaining prerequisites are already covered by `completed_course_ids`.
    """
    completed = set(completed_course_ids) | {course_type_id}
    unlocked = []
    for ct in course_types:
        if not ct.is_active:
            continue
        prereqs = effective_prerequisites(ct, overrides)
        if course_type_id in prereqs and all(p in completed for p in prereqs):
            unlocked.append(ct.id)
    return sorted(unlocked)


def next_available_courses(course_type_id: str, course_types: Iterable, overrides=None) -> List[str]:
    """Course types that directly require `course_type_id`, regardless of what else they need."""
    return sorted(ct.id for ct in course_types if course_type_id in effective_prerequisites(ct, overrides))


def course_progression(
    course_types: Iterable,
    completed_course_ids: Iterable[str],
    overrides: Optional[Mapping[str, Iterable[str]]] = None,
) -> List[CourseProgression]:
    completed = set(completed_course_ids)
    out = []
    for ct in course_types:
        required = effective_prerequisites(ct, overrides)
        done = [p for p in required if p in completed]
        missing = [p for p in required if p not in completed]
        is_unlocked = not missing

        if not is_unlocked:
            reason = f"Requires: {', '.join(missing)}"
        elif required:
            reason = f"Completed: {', '.join(done)}"
        else:
            reason = "No prerequisites required"

        out.append(CourseProgression(
            course_type_id=ct.id,
            course_type_name=ct.name,
            is_unlocked=is_unlocked,
            is_completed=ct.id in completed,
            required_prerequisites=required,
            completed_prerequisites=done,
            missing_prerequisites=missing,
            unlock_reason=reason,
        ))
    return out


def issue_certificate(stores, enrollment, completion_date: date, overrides=None) -> models.Certificate:
    """Create the enrollment's certificate, or return the one that already exists."""
    existing = stores.certificates.for_enrollment(enrollment.id)
    if existing is not None:
        return existing

    series = stores.series.get(enrollment.series_id)
    completed = stores.certificates.completed_course_ids(enrollment.pet_id)
    cert = stores.certificates.add(models.Certificate(
        enrollment_id=enrollment.id,
        series_id=series.id,
        course_type_id=series.course_type_id,
        pet_id=enrollment.pet_id,
        completion_date=completion_date,
        certificate_number=certificate_number(enrollment.id, completion_date),
        unlocked_next_course_ids=unlocked_by(
            series.course_type_id, stores.catalog.list(), completed, overrides
        ),
    ))
    logger.info(
        "Certificate %s issued for pet %s (%s); unlocked: %s",
        cert.certificate_number, cert.pet_id, cert.course_type_id, cert.unlocked_next_course_ids or "none",
    )
    return cert
