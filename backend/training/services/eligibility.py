# backend/training/services/eligibility.py
"""
Eligibility validation for booking a pet into a course type.

`evaluate` is a pure function: it never touches the database and does not
read the clock unless `as_of` is omitted. Every check runs and all issues are
collected, so callers can render the full list at once.
"""
from datetime import date
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from ..date_utils import age_in_weeks
from ..schemas import BehavioralRule, EligibilityResult, Issue
from .catalog import effective_prerequisites


def pet_age_weeks(pet, as_of: date) -> int:
    return age_in_weeks(getattr(pet, "birth_date", None), getattr(pet, "age_years", None), as_of)


def check_age(pet, course_type, as_of: date) -> List[Issue]:
    weeks = pet_age_weeks(pet, as_of)
    issues = []
    if weeks < course_type.min_age_weeks:
        issues.append(Issue(
            type="age",
            message=f"Pet must be at least {course_type.min_age_weeks} weeks old. Current age: {weeks} weeks.",
        ))
    if course_type.max_age_weeks is not None and weeks > course_type.max_age_weeks:
        issues.append(Issue(
            type="age",
            message=f"Pet must be no more than {course_type.max_age_weeks} weeks old. Current age: {weeks} weeks.",
        ))
    return issues


def _matches(required: str, recorded: str) -> bool:
    return required.strip().lower() in recorded.strip().lower()


def vaccine_status(
    required_vaccines: Sequence[str],
    records: Iterable,
    as_of: date,
    valid_through: Optional[date] = None,
) -> Tuple[List[str], List[str]]:
    """
    Returns (missing, expiring). A record counts only if its expiry is strictly
    after `as_of`; `expiring` lists vaccines that are valid today but lapse on
    or before `valid_through`.
    """
    valid = [r for r in records if r.expiry_date > as_of]
    missing, expiring = [], []
    for required in required_vaccines:
        matching = [r for r in valid if _matches(required, r.vaccine_name)]
        if not matching:
            missing.append(required)
            continue
        if valid_through is not None and max(r.expiry_date for r in matching) <= valid_through:
            expiring.append(required)
    return missing, expiring


def check_vaccines(course_type, records, as_of: date, valid_through: Optional[date] = None) -> List[Issue]:
    missing, expiring = vaccine_status(course_type.required_vaccines or [], records, as_of, valid_through)
    issues = []
    if missing:
        issues.append(Issue(
            type="vaccine",
            message=f"Missing required vaccines: {', '.join(missing)}. Please update vaccination records.",
        ))
    if expiring:
        issues.append(Issue(
            type="vaccine",
            severity="warning",
            message=f"Vaccines expiring before the series ends: {', '.join(expiring)}.",
        ))
    return issues


def check_prerequisites(course_type, completed_course_ids: Iterable[str], overrides=None) -> List[Issue]:
    completed = set(completed_course_ids)
    missing = [p for p in effective_prerequisites(course_type, overrides) if p not in completed]
    if not missing:
        return []
    return [Issue(
        type="prerequisite",
        message=f"Must complete prerequisite courses first. Please complete: {', '.join(missing)}.",
    )]


def check_behavior(pet, course_type, rules: Iterable[BehavioralRule]) -> List[Issue]:
    flags = {f.lower() for f in (getattr(pet, "behavior_flags", None) or [])}
    issues = []
    for rule in rules:
        if rule.course_type_id != course_type.id:
            continue
        if flags & {f.lower() for f in rule.flags}:
            issues.append(Issue(type="behavioral", message=rule.message, severity=rule.severity))
    return issues


def evaluate(
    pet,
    course_type,
    completed_course_ids: Iterable[str],
    vaccination_records: Iterable,
    *,
    behavioral_rules: Iterable[BehavioralRule] = (),
    as_of: Optional[date] = None,
    valid_through: Optional[date] = None,
    prerequisite_overrides: Optional[Mapping[str, Iterable[str]]] = None,
) -> EligibilityResult:
    as_of = as_of or date.today()
    records = list(vaccination_records)

    issues: List[Issue] = []
    if not course_type.is_active:
        issues.append(Issue(type="availability", message=f"{course_type.name} is not currently offered."))
    issues += check_age(pet, course_type, as_of)
    issues += check_vaccines(course_type, records, as_of, valid_through)
    issues += check_prerequisites(course_type, completed_course_ids, prerequisite_overrides)
    issues += check_behavior(pet, course_type, behavioral_rules)

    return EligibilityResult(
        eligible=not any(i.severity == "error" for i in issues),
        issues=issues,
    )
