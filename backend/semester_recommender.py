from dataclasses import dataclass
from typing import Callable

from catalog import Catalog, Course
from eligibility import validate
from llm_recommender import EnhancementResult, Fallback
from policy import DEFAULT_POLICY, ScoringPolicy
from prereq_parser import PrerequisiteDataError
from scoring import Category, Priority, StudentProfile, score
from student_record import CourseStatus, StatusIndex
from timeline import parse_semester
from unlocks import build_reverse_prereq_map, get_blocking_warnings, get_direct_unlocks

DEFAULT_MAX_COURSES = 10
DEFAULT_PER_CATEGORY = 6
_PRIORITY_FILTERS = {p.value for p in Priority}


@dataclass(frozen=True)
class Recommendation:
    course: Course
    category: Category
    priority: Priority
    score: int
    reasons: tuple
    missing_prerequisites: tuple = ()
    warnings: tuple = ()

    @property
    def course_code(self) -> str:
        return self.course.code

    def to_dict(self) -> dict:
        return {
            "course_code": self.course_code,
            "course_name": self.course.title,
            "credits": self.course.credits,
            "category": self.category.value,
            "priority": self.priority.value,
            "score": self.score,
            "reasons": list(self.reasons),
            "missing_prerequisites": list(self.missing_prerequisites),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class RecommendationOptions:
    target_semester: str
    max_courses: int = DEFAULT_MAX_COURSES
    per_category: int = DEFAULT_PER_CATEGORY
    priority_filter: str | None = None
    current_semester: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "target_semester", parse_semester(self.target_semester).label)
        if self.current_semester:
            object.__setattr__(self, "current_semester", parse_semester(self.current_semester).label)
        if int(self.max_courses) < 0 or int(self.per_category) < 0:
            raise ValueError("max_courses and per_category must be non-negative.")
        object.__setattr__(self, "max_courses", int(self.max_courses))
        object.__setattr__(self, "per_category", int(self.per_category))
        pf = str(self.priority_filter or "").strip().lower()
        if pf in ("", "all"):
            pf = None
        elif pf not in _PRIORITY_FILTERS:
            raise ValueError(f"priority_filter must be one of high, medium, low, all; got {self.priority_filter!r}.")
        object.__setattr__(self, "priority_filter", pf)


def _sort_key(rec: Recommendation):
    return (-rec.score, rec.course_code)


def rank_courses(
    catalog: Catalog,
    status_index: StatusIndex,
    profile: StudentProfile,
    options: RecommendationOptions,
    policy: ScoringPolicy | None = None,
) -> tuple[list[Recommendation], list[dict], int]:
    """
    Validate and score every catalog course the student has not completed or
    started. Returns (ranked recommendations, unavailable diagnostics,
    eligible count). Courses with catalog data problems go to the
    unavailable list and never into the ranking.
    """
    policy = policy or DEFAULT_POLICY
    target = parse_semester(options.target_semester)

    ranked: list[Recommendation] = []
    unavailable: list[dict] = []
    eligible_count = 0

    for course in catalog:
        rec = status_index.get(course.code)
        if rec is not None and rec.status in (CourseStatus.COMPLETED, CourseStatus.IN_PROGRESS):
            continue

        issue = catalog.integrity_issue(course.code)
        if issue is not None:
            unavailable.append(issue.to_dict())
            continue
        try:
            validation = validate(
                course,
                status_index,
                target,
                catalog,
                policy,
                current_semester=options.current_semester,
            )
        except PrerequisiteDataError as exc:
            err = exc if exc.course_code else exc.for_course(course.code)
            unavailable.append(err.to_dict())
            continue

        result = score(course, status_index, profile, catalog, target, policy, validation)
        if validation.can_add:
            eligible_count += 1
        ranked.append(Recommendation(
            course=course,
            category=result.category,
            priority=result.priority,
            score=result.score,
            reasons=result.reasons,
            missing_prerequisites=validation.missing_prerequisites,
            warnings=validation.warnings,
        ))

    ranked.sort(key=_sort_key)
    if options.priority_filter:
        ranked = [r for r in ranked if r.priority.value == options.priority_filter]
    unavailable.sort(key=lambda d: d["course_code"] or "")
    return ranked, unavailable, eligible_count


def generate_recommendations(
    catalog: Catalog,
    status_index: StatusIndex,
    profile: StudentProfile,
    options: RecommendationOptions,
    policy: ScoringPolicy | None = None,
) -> list[Recommendation]:
    """Top `options.max_courses` courses, score descending then course code."""
    ranked, _, _ = rank_courses(catalog, status_index, profile, options, policy)
    return ranked[:options.max_courses]


def recommendations_by_category(
    ranked: list[Recommendation],
    per_category: int,
) -> dict[str, list[Recommendation]]:
    """
    Top `per_category` per category, filtered from the already sorted list so
    every view shows the same scores and relative order.
    """
    out: dict[str, list[Recommendation]] = {c.value: [] for c in Category}
    for rec in ranked:
        bucket = out[rec.category.value]
        if len(bucket) < per_category:
            bucket.append(rec)
    return out


def build_recommendation_report(
    catalog: Catalog,
    status_index: StatusIndex,
    profile: StudentProfile,
    options: RecommendationOptions,
    policy: ScoringPolicy | None = None,
    enhancer: Callable[[list], EnhancementResult] | None = None,
) -> dict:
    """
    Run the full recommendation pipeline for a single semester.

    `enhancer` (optional) receives the selected recommendations and returns an
    Enhanced or Fallback result; only the top-level list is annotated, the
    per-category views stay as ranked.
    """
    ranked, unavailable, eligible_count = rank_courses(
        catalog, status_index, profile, options, policy
    )
    selected = ranked[:options.max_courses]
    enhancement_note = None
    if enhancer is not None:
        outcome = enhancer(selected)
        selected = list(outcome.recommendations)
        if isinstance(outcome, Fallback):
            enhancement_note = outcome.reason
    reverse_map = build_reverse_prereq_map(catalog)

    def _out(rec: Recommendation) -> dict:
        d = rec.to_dict()
        d["unlocks"] = get_direct_unlocks(rec.course_code, reverse_map, limit=3)
        return d

    by_category = recommendations_by_category(ranked, options.per_category)
    return {
        "target_semester": options.target_semester,
        "recommendations": [_out(r) for r in selected],
        "by_category": {k: [_out(r) for r in v] for k, v in by_category.items()},
        "requested_recommendations": options.max_courses,
        "eligible_count": eligible_count,
        "unavailable": unavailable,
        "blocking_warnings": get_blocking_warnings(
            [r.course_code for r in selected], reverse_map, status_index
        ),
        "enhanced": enhancer is not None and enhancement_note is None,
        "enhancement_note": enhancement_note,
    }
