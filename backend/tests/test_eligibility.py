from datetime import date
from types import SimpleNamespace

from training.schemas import BehavioralRule, CourseTypeIn
from training.services.catalog import DEFAULT_BEHAVIORAL_RULES
from training.services.eligibility import evaluate, vaccine_status

TODAY = date(2026, 1, 15)

BASIC = CourseTypeIn(
    id="basic-obedience", name="Basic Obedience", min_age_weeks=16,
    required_vaccines=["Rabies", "DHPP", "Bordetella"],
)
INTERMEDIATE = CourseTypeIn(
    id="intermediate-obedience", name="Intermediate", min_age_weeks=20,
    required_vaccines=["Rabies"], prerequisites=["basic-obedience"],
)


def _pet(weeks_old=40, flags=(), age_years=None, birth_date="auto"):
    if birth_date == "auto":
        birth_date = date.fromordinal(TODAY.toordinal() - weeks_old * 7)
    return SimpleNamespace(id=1, birth_date=birth_date, age_years=age_years, behavior_flags=list(flags))


def _vax(*names, expiry=date(2027, 1, 1)):
    return [SimpleNamespace(vaccine_name=n, expiry_date=expiry) for n in names]


CORE = _vax("Rabies", "DHPP", "Bordetella")


def test_too_young_gives_single_age_error():
    result = evaluate(_pet(weeks_old=12), BASIC, [], CORE, as_of=TODAY)

    assert not result.eligible
    assert len(result.issues) == 1
    issue = result.issues[0]
    assert issue.type == "age"
    assert issue.severity == "error"
    assert "16 weeks" in issue.message and "12 weeks" in issue.message


def test_max_age_bound():
    puppy = CourseTypeIn(id="puppy-preschool", name="Puppy", min_age_weeks=8, max_age_weeks=16,
                         required_vaccines=["DHPP"])
    assert evaluate(_pet(weeks_old=10), puppy, [], CORE, as_of=TODAY).eligible
    result = evaluate(_pet(weeks_old=20), puppy, [], CORE, as_of=TODAY)
    assert [i.type for i in result.errors] == ["age"]


def test_legacy_age_in_years():
    pet = _pet(birth_date=None, age_years=0.2)   # int(0.2 * 52) == 10 weeks
    result = evaluate(pet, BASIC, [], CORE, as_of=TODAY)
    assert [i.type for i in result.issues] == ["age"]


def test_all_checks_are_collected():
    result = evaluate(
        _pet(weeks_old=10, flags=["reactive"]), INTERMEDIATE, [], [],
        behavioral_rules=[BehavioralRule(course_type_id="intermediate-obedience",
                                         flags=["reactive"], message="no")],
        as_of=TODAY,
    )
    assert sorted(i.type for i in result.errors) == ["age", "behavioral", "prerequisite", "vaccine"]


def test_missing_and_expired_vaccines():
    records = _vax("Rabies") + _vax("DHPP", expiry=TODAY)   # expiring today counts as expired
    result = evaluate(_pet(), BASIC, [], records, as_of=TODAY)

    assert not result.eligible
    (issue,) = result.issues
    assert issue.type == "vaccine"
    assert "DHPP" in issue.message and "Bordetella" in issue.message
    assert "Rabies" not in issue.message


def test_vaccine_names_match_case_insensitively():
    records = _vax("rabies (3 year)", "dhpp booster", "BORDETELLA")
    assert evaluate(_pet(), BASIC, [], records, as_of=TODAY).eligible


def test_vaccine_lapsing_during_series_is_a_warning():
    records = _vax("Rabies", "DHPP") + _vax("Bordetella", expiry=date(2026, 2, 20))
    missing, expiring = vaccine_status(BASIC.required_vaccines, records, TODAY, date(2026, 3, 9))
    assert missing == []
    assert expiring == ["Bordetella"]

    result = evaluate(_pet(), BASIC, [], records, as_of=TODAY, valid_through=date(2026, 3, 9))
    assert result.eligible
    assert [i.severity for i in result.issues] == ["warning"]


def test_prerequisites_and_overrides():
    pet = _pet()
    assert not evaluate(pet, INTERMEDIATE, [], CORE, as_of=TODAY).eligible
    assert evaluate(pet, INTERMEDIATE, ["basic-obedience"], CORE, as_of=TODAY).eligible
    assert evaluate(
        pet, INTERMEDIATE, [], CORE, as_of=TODAY,
        prerequisite_overrides={"intermediate-obedience": []},
    ).eligible


def test_reactive_dog_blocked_from_basic():
    result = evaluate(_pet(flags=["Reactive"]), BASIC, [], CORE,
                      behavioral_rules=DEFAULT_BEHAVIORAL_RULES, as_of=TODAY)
    assert not result.eligible
    assert result.issues[0].type == "behavioral"
    assert "Reactive Rover" in result.issues[0].message


def test_inactive_course_is_unavailable():
    retired = BASIC.model_copy(update={"is_active": False})
    result = evaluate(_pet(), retired, [], CORE, as_of=TODAY)
    assert [i.type for i in result.errors] == ["availability"]


def test_check_eligibility_is_repeatable(engine, make_pet):
    pet_id = make_pet(birth_date=date(2025, 10, 23))   # 12 weeks on 2026-01-15
    first = engine.check_eligibility(pet_id, "basic-obedience")
    second = engine.check_eligibility(pet_id, "basic-obedience")

    assert first == second
    assert not first.eligible
    assert [i.type for i in first.issues] == ["age"]
