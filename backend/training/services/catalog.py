# backend/training/services/catalog.py
"""
Course catalog defaults and prerequisite-graph checks.

Course types form an implicit dependency graph through their
`prerequisites` lists. Every query here works on plain course-type objects
(ORM rows or `CourseTypeIn`), so the same code validates staff input before it
is saved and answers progression questions afterwards.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional

from ..exceptions import CatalogError
from ..schemas import BehavioralRule, CourseTypeIn

logger = logging.getLogger(__name__)

AVAILABLE_VACCINES = [
    "Rabies",
    "DHPP",
    "Bordetella",
    "Canine Influenza",
    "Lyme",
    "Leptospirosis",
]

_CORE_VACCINES = ["Rabies", "DHPP", "Bordetella"]

DEFAULT_COURSE_TYPES: List[CourseTypeIn] = [
    CourseTypeIn(
        id="basic-obedience",
        name="Basic Obedience / Beginner Manners",
        description=(
            "Foundational commands like sit, stay, down and polite leash walking. "
            "For dogs new to training or needing a refresher."
        ),
        default_weeks=6,
        min_age_weeks=16,
        required_vaccines=_CORE_VACCINES,
        prerequisites=[],
        what_to_bring=[
            "Your dog on a 6-foot leash (no retractable leashes)",
            "High-value treats (small, soft, easy to swallow)",
            "Water bottle for your dog",
            "Waste bags",
        ],
        cancellation_policy=(
            "Free cancellation up to 48 hours before the series starts. After that, "
            "a 25% cancellation fee applies. No refunds after the series begins."
        ),
        refund_policy=(
            "Full refund if cancelled 48+ hours before series start. 75% refund if "
            "cancelled 24-48 hours before. No refunds after series begins."
        ),
    ),
    CourseTypeIn(
        id="intermediate-obedience",
        name="Intermediate / Level 2 Obedience",
        description="Adds distractions, distance and duration to previously learned commands.",
        default_weeks=4,
        min_age_weeks=20,
        required_vaccines=_CORE_VACCINES,
        prerequisites=["basic-obedience"],
    ),
    CourseTypeIn(
        id="advanced-obedience",
        name="Advanced Obedience",
        description="High-level reliability in varied environments.",
        default_weeks=6,
        min_age_weeks=24,
        required_vaccines=_CORE_VACCINES,
        prerequisites=["intermediate-obedience"],
    ),
    CourseTypeIn(
        id="reactive-rover",
        name="Reactive Rover Recovery",
        description="For leash-reactive dogs. Controlled environment training.",
        default_weeks=8,
        min_age_weeks=16,
        required_vaccines=_CORE_VACCINES,
        prerequisites=[],
    ),
    CourseTypeIn(
        id="puppy-preschool",
        name="Puppy Preschool",
        description="Socialization and early manners for 8-16 week olds.",
        default_weeks=4,
        min_age_weeks=8,
        max_age_weeks=16,
        required_vaccines=["DHPP"],
        prerequisites=[],
    ),
    CourseTypeIn(
        id="cgc-prep",
        name="Canine Good Citizen Prep",
        description="Preparation for the CGC certification test.",
        default_weeks=6,
        min_age_weeks=20,
        required_vaccines=_CORE_VACCINES,
        prerequisites=["basic-obedience"],
    ),
]

DEFAULT_BEHAVIORAL_RULES: List[BehavioralRule] = [
    BehavioralRule(
        course_type_id="basic-obedience",
        flags=["reactive", "aggressive"],
        message=(
            "Reactive dogs are not eligible for Basic Obedience. "
            "Please consider 'Reactive Rover Recovery' instead."
        ),
    ),
]


def effective_prerequisites(course_type, overrides: Optional[Mapping[str, Iterable[str]]] = None) -> List[str]:
    """Prerequisites after applying a facility's per-course overrides."""
    if overrides and course_type.id in overrides:
        return list(overrides[course_type.id])
    return list(course_type.prerequisites or [])


def validate_catalog(course_types: Iterable, overrides: Optional[Mapping[str, Iterable[str]]] = None) -> None:
    """
    Raise CatalogError when a prerequisite points at an unknown course type,
    a course requires itself, or the prerequisite graph contains a cycle.
    """
    graph: Dict[str, List[str]] = {
        ct.id: effective_prerequisites(ct, overrides) for ct in course_types
    }

    for course_id, prereqs in graph.items():
        if course_id in prereqs:
            raise CatalogError(f"{course_id} lists itself as a prerequisite")
        unknown = [p for p in prereqs if p not in graph]
        if unknown:
            raise CatalogError(f"{course_id} has unknown prerequisites: {', '.join(unknown)}")

    # iterative DFS with colouring: 0 = unseen, 1 = on stack, 2 = done
    state = {course_id: 0 for course_id in graph}
    for root in graph:
        if state[root]:
            continue
        stack = [(root, iter(graph[root]))]
        state[root] = 1
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                state[node] = 2
                stack.pop()
            elif state[child] == 1:
                path = [n for n, _ in stack] + [child]
                raise CatalogError("prerequisite cycle: " + " -> ".join(path))
            elif state[child] == 0:
                state[child] = 1
                stack.append((child, iter(graph[child])))


def seed_default_catalog(store) -> List[str]:
    """Insert the default course types that are missing. Returns the inserted ids."""
    existing = {ct.id for ct in store.list()}
    added = []
    for ct in DEFAULT_COURSE_TYPES:
        if ct.id in existing:
            continue
        store.upsert(ct)
        added.append(ct.id)
    if added:
        logger.info("Seeded default course types: %s", ", ".join(added))
    return added
