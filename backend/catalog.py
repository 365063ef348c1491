"""
Read-only course catalog.

A Catalog is built once from a collection of Course records and never mutated.
Refreshing the catalog means building a new CatalogSnapshot and swapping the
reference held by the caller, so a computation in flight keeps the snapshot it
started with.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from normalizer import course_number_tier, normalize_code, split_code
from prereq_parser import NO_PREREQUISITE, PrereqExpr, PrerequisiteDataError
from evaluator import find_integrity_issues

OFFERING_TERMS = ("fall", "spring", "summer")


@dataclass(frozen=True)
class Course:
    code: str
    title: str = ""
    credits: int = 3
    offerings: frozenset = frozenset(OFFERING_TERMS)
    difficulty: int = 3
    department: str = ""
    college: str = ""
    tracks: tuple = ()
    prerequisites: PrereqExpr = NO_PREREQUISITE
    corequisites: tuple = ()
    description: str = ""
    course_type: str = ""

    def __post_init__(self):
        code = normalize_code(self.code)
        if code is None:
            raise ValueError("Course code is required.")
        object.__setattr__(self, "code", code)

        credits = int(self.credits)
        if credits <= 0:
            raise ValueError(f"{code}: credits must be a positive integer, got {self.credits!r}.")
        object.__setattr__(self, "credits", credits)

        difficulty = int(self.difficulty)
        if not 1 <= difficulty <= 5:
            raise ValueError(f"{code}: difficulty must be between 1 and 5, got {self.difficulty!r}.")
        object.__setattr__(self, "difficulty", difficulty)

        offerings = frozenset(str(t).strip().lower() for t in self.offerings if str(t).strip())
        unknown = offerings - set(OFFERING_TERMS)
        if unknown:
            raise ValueError(f"{code}: unknown offering term(s) {sorted(unknown)}.")
        object.__setattr__(self, "offerings", offerings)

        if not self.department:
            object.__setattr__(self, "department", split_code(code)[0])
        else:
            object.__setattr__(self, "department", str(self.department).strip().upper())

        tracks = tuple(dict.fromkeys(
            str(t).strip().lower() for t in self.tracks if str(t).strip()
        ))
        object.__setattr__(self, "tracks", tracks)

        coreqs = []
        for raw in self.corequisites:
            c = normalize_code(raw)
            if c and c != code and c not in coreqs:
                coreqs.append(c)
        object.__setattr__(self, "corequisites", tuple(coreqs))

    @property
    def number_tier(self) -> int | None:
        return course_number_tier(self.code)

    def is_offered(self, term: str) -> bool:
        return str(term).strip().lower() in self.offerings

    def offering_label(self) -> str:
        """'Fall and Spring', 'Fall, Spring and Summer', or 'no listed term'."""
        names = [t.capitalize() for t in OFFERING_TERMS if t in self.offerings]
        if not names:
            return "no listed term"
        if len(names) == 1:
            return names[0]
        return f"{', '.join(names[:-1])} and {names[-1]}"


class Catalog:
    """Immutable, code-keyed collection of courses with integrity diagnostics."""

    def __init__(
        self,
        courses: Iterable[Course],
        integrity_issues: Mapping[str, PrerequisiteDataError] | None = None,
    ):
        ordered: dict[str, Course] = {}
        for course in courses:
            if course.code in ordered:
                raise ValueError(f"Duplicate course code in catalog: {course.code}")
            ordered[course.code] = course
        self._courses = MappingProxyType(ordered)

        issues = dict(integrity_issues or {})
        graph_issues = find_integrity_issues(
            {code: c.prerequisites for code, c in ordered.items()}
        )
        for code, err in graph_issues.items():
            issues.setdefault(code, err)
        self._issues = MappingProxyType(issues)

        min_tiers: dict[str, int] = {}
        for course in ordered.values():
            tier = course.number_tier
            if tier is None:
                continue
            current = min_tiers.get(course.department)
            if current is None or tier < current:
                min_tiers[course.department] = tier
        self._dept_min_tier = MappingProxyType(min_tiers)

    def __len__(self) -> int:
        return len(self._courses)

    def __iter__(self):
        return iter(self._courses.values())

    def __contains__(self, code) -> bool:
        return normalize_code(code) in self._courses

    def get(self, code) -> Course | None:
        key = normalize_code(code)
        if key is None:
            return None
        return self._courses.get(key)

    @property
    def codes(self) -> frozenset:
        return frozenset(self._courses)

    @property
    def prereq_map(self) -> Mapping[str, PrereqExpr]:
        return MappingProxyType({code: c.prerequisites for code, c in self._courses.items()})

    @property
    def integrity_issues(self) -> Mapping[str, PrerequisiteDataError]:
        return self._issues

    def integrity_issue(self, code) -> PrerequisiteDataError | None:
        return self._issues.get(normalize_code(code) or "")

    def department_min_tier(self, department: str) -> int | None:
        return self._dept_min_tier.get(str(department or "").strip().upper())


@dataclass(frozen=True)
class CatalogSnapshot:
    """A catalog plus the moment it was fetched. Expiry is checked, never timed."""

    catalog: Catalog
    fetched_at: float
    programs: Mapping[str, frozenset] = field(default_factory=lambda: MappingProxyType({}))
    source: str = ""

    def age(self, now: float) -> float:
        return max(0.0, now - self.fetched_at)

    def is_expired(self, now: float, ttl_seconds: float | None) -> bool:
        if ttl_seconds is None or ttl_seconds <= 0:
            return False
        return self.age(now) >= ttl_seconds

    def major_requirements(self, major_id: str) -> frozenset:
        return self.programs.get(str(major_id or "").strip().upper(), frozenset())


def refresh_snapshot(
    snapshot: CatalogSnapshot | None,
    loader: Callable[[], CatalogSnapshot],
    now: float,
    ttl_seconds: float | None,
) -> CatalogSnapshot:
    """Return snapshot if still fresh, else a newly loaded one. Never mutates."""
    if snapshot is not None and not snapshot.is_expired(now, ttl_seconds):
        return snapshot
    return loader()
