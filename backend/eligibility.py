from dataclasses import dataclass
from types import MappingProxyType

from catalog import Catalog, Course
from evaluator import EvaluationResult, evaluate, resolve_course
from normalizer import course_number_tier, normalize_code
from policy import DEFAULT_POLICY, ScoringPolicy
from prereq_parser import PrerequisiteDataError, build_prereq_check_string
from student_record import (
    CourseStatus,
    StatusIndex,
    StudentCourseRecord,
    codes_with_status,
)
from timeline import Semester, parse_semester, semesters_after

# How far ahead suggested_semesters looks for an offering of the course.
SUGGESTION_SCAN_TERMS = 6
MAX_SUGGESTED_SEMESTERS = 2

PROJECTION_NOTE = (
    "Projected semesters assume every missing prerequisite is completed as early "
    "as it is offered. This is a planning estimate, not an eligibility guarantee."
)

CRITICAL_BLOCK_THRESHOLD = 2


@dataclass(frozen=True)
class ValidationResult:
    course_code: str
    target_semester: str
    can_add: bool
    missing_prerequisites: tuple = ()
    satisfied_prerequisites: tuple = ()
    unmet_corequisites: tuple = ()
    warnings: tuple = ()
    suggested_semesters: tuple = ()
    projection_note: str | None = None
    advice: tuple = ()

    @property
    def fully_eligible(self) -> bool:
        return self.can_add and not self.warnings

    @property
    def soft_eligible(self) -> bool:
        """Addable, nothing missing, but carrying at least one warning."""
        return self.can_add and not self.missing_prerequisites and bool(self.warnings)

    def to_dict(self) -> dict:
        return {
            "course_code": self.course_code,
            "target_semester": self.target_semester,
            "can_add": self.can_add,
            "missing_prerequisites": list(self.missing_prerequisites),
            "satisfied_prerequisites": list(self.satisfied_prerequisites),
            "unmet_corequisites": list(self.unmet_corequisites),
            "warnings": list(self.warnings),
            "suggested_semesters": list(self.suggested_semesters),
            "projection_note": self.projection_note,
            "advice": list(self.advice),
        }


def _corequisite_met(code: str, status_index: StatusIndex, target: Semester) -> bool:
    rec = status_index.get(code)
    if rec is None:
        return False
    if rec.status in (CourseStatus.COMPLETED, CourseStatus.IN_PROGRESS):
        return True
    return rec.status is CourseStatus.PLANNED and rec.semester == target


def _first_offered(course: Course, start: Semester, include_start: bool) -> Semester | None:
    candidates = semesters_after(start, SUGGESTION_SCAN_TERMS)
    if include_start:
        candidates = [start] + candidates
    for sem in candidates:
        if course.is_offered(sem.offering_key):
            return sem
    return None


def _project_completion(
    code: str,
    status_index: StatusIndex,
    catalog: Catalog,
    now: Semester,
) -> Semester | None:
    """Earliest semester by which a missing prerequisite could be done, or None."""
    rec = status_index.get(code)
    if rec is not None and rec.status in (CourseStatus.IN_PROGRESS, CourseStatus.PLANNED):
        return rec.semester or now

    prereq_course = catalog.get(code)
    if prereq_course is None or catalog.integrity_issue(code) is not None:
        return None
    own = resolve_course(code, catalog.prereq_map, status_index, recommended_grade=None)
    if not own.satisfied:
        return None
    return _first_offered(prereq_course, now, include_start=True)


def suggest_semesters(
    course: Course,
    missing: list[str],
    status_index: StatusIndex,
    catalog: Catalog,
    now: Semester,
) -> tuple:
    """
    Up to two semesters after the latest projected prerequisite completion in
    which the course itself is offered. Empty when any missing prerequisite
    cannot be projected (it is not eligible yet, or never offered).
    """
    if not missing:
        return ()
    projections = []
    for code in missing:
        projected = _project_completion(code, status_index, catalog, now)
        if projected is None:
            return ()
        projections.append(projected)

    latest = max(projections)
    out = []
    for sem in semesters_after(latest, SUGGESTION_SCAN_TERMS):
        if course.is_offered(sem.offering_key):
            out.append(sem.label)
            if len(out) == MAX_SUGGESTED_SEMESTERS:
                break
    return tuple(out)


def _advice(missing: list[str], unmet_coreqs: list[str]) -> tuple:
    advice = []
    if missing:
        advice.append(f"Complete these prerequisites first: {', '.join(missing)}")
        foundational = [c for c in missing if course_number_tier(c) == 1]
        if foundational:
            advice.append(f"Consider taking foundational courses early: {', '.join(foundational)}")
        if len(missing) > 2:
            advice.append(
                "Consider splitting prerequisites across multiple semesters "
                "for better workload distribution"
            )
    if unmet_coreqs:
        advice.append(f"Take alongside in the same semester: {', '.join(unmet_coreqs)}")
    return tuple(advice)


def _weak_grade_warnings(result: EvaluationResult, status_index: StatusIndex, recommended: str) -> list[str]:
    warnings = []
    for leaf in result.weak_leaves:
        warnings.append(
            f"{leaf.course} was completed with {status_index[leaf.course].grade}, below the typical "
            f"recommendation of {recommended}."
        )
    return warnings


def validate(
    course: Course,
    status_index: StatusIndex,
    target_semester,
    catalog: Catalog | None = None,
    policy: ScoringPolicy | None = None,
    current_semester=None,
) -> ValidationResult:
    """
    Decide whether `course` can be added to `target_semester`.

    Blocking:
      - unmet prerequisites (missing_prerequisites, in expression order)
      - unmet corequisites (completed, in progress, or planned in the same
        target semester count as met)
    Non-blocking warnings:
      - the course is not offered in the target term
      - a satisfied prerequisite was passed below the recommended grade

    Raises the course's PrerequisiteDataError when the catalog has flagged it,
    and CyclicPrerequisiteError if its expression references the course itself.
    """
    policy = policy or DEFAULT_POLICY
    target = parse_semester(target_semester)

    if catalog is not None:
        issue = catalog.integrity_issue(course.code)
        if issue is not None:
            raise issue

    result = evaluate(
        course.prerequisites,
        status_index,
        frozenset({course.code}),
        policy.recommended_grade,
    )
    missing = result.unmet_codes
    unmet_coreqs = [c for c in course.corequisites if not _corequisite_met(c, status_index, target)]

    warnings = []
    if not course.is_offered(target.offering_key):
        warnings.append(
            f"{course.code} is not usually offered in {target.term}; "
            f"it is offered in {course.offering_label()}."
        )
    warnings.extend(_weak_grade_warnings(result, status_index, policy.recommended_grade))

    suggested: tuple = ()
    if missing and catalog is not None:
        now = parse_semester(current_semester) if current_semester else target
        suggested = suggest_semesters(course, missing, status_index, catalog, now)

    return ValidationResult(
        course_code=course.code,
        target_semester=target.label,
        can_add=result.satisfied and not unmet_coreqs,
        missing_prerequisites=tuple(missing),
        satisfied_prerequisites=tuple(dict.fromkeys(leaf.course for leaf in result.satisfied_leaves)),
        unmet_corequisites=tuple(unmet_coreqs),
        warnings=tuple(warnings),
        suggested_semesters=suggested,
        projection_note=PROJECTION_NOTE if suggested else None,
        advice=_advice(missing, unmet_coreqs),
    )


def _why_not(result: ValidationResult) -> str | None:
    if result.missing_prerequisites:
        return f"Missing prerequisite(s): {', '.join(result.missing_prerequisites)}."
    if result.unmet_corequisites:
        return (
            f"Corequisite(s) must be completed, in progress, or planned for "
            f"{result.target_semester}: {', '.join(result.unmet_corequisites)}."
        )
    return None


def _blocked(code: str, target: str, why_not: str, unavailable: dict | None = None) -> dict:
    return {
        "course_code": code,
        "target_semester": target,
        "can_add": False,
        "why_not": why_not,
        "missing_prerequisites": [],
        "unmet_corequisites": [],
        "warnings": [],
        "suggested_semesters": [],
        "projection_note": None,
        "advice": [],
        "prereq_check": None,
        "unavailable": unavailable,
    }


def check_can_add(
    course_code: str,
    catalog: Catalog,
    status_index: StatusIndex,
    target_semester,
    policy: ScoringPolicy | None = None,
    current_semester=None,
) -> dict:
    """
    Endpoint-level "can I add this course?" check.

    Returns:
    {
      "course_code": str,
      "target_semester": str,
      "can_add": bool,
      "why_not": str | None,
      "missing_prerequisites": [str],
      "unmet_corequisites": [str],
      "warnings": [str],
      "suggested_semesters": [str],
      "projection_note": str | None,
      "advice": [str],
      "prereq_check": str | None,
      "unavailable": {"course_code", "error_code", "message"} | None,
    }
    """
    target = parse_semester(target_semester).label
    code = normalize_code(course_code) or ""

    course = catalog.get(code)
    if course is None:
        return _blocked(code, target, f"{code} is not in the course catalog.")

    rec = status_index.get(code)
    if rec is not None:
        if rec.status is CourseStatus.COMPLETED:
            return _blocked(code, target, f"You have already completed {code}.")
        if rec.status is CourseStatus.IN_PROGRESS:
            return _blocked(code, target, f"{code} is already in progress.")
        when = f" for {rec.semester.label}" if rec.semester else ""
        return _blocked(code, target, f"{code} is already planned{when}.")

    issue = catalog.integrity_issue(code)
    if issue is not None:
        return _blocked(
            code,
            target,
            "Cannot determine eligibility: this course has a catalog data problem.",
            unavailable=issue.to_dict(),
        )

    try:
        result = validate(course, status_index, target, catalog, policy, current_semester)
    except PrerequisiteDataError as exc:
        err = exc if exc.course_code else exc.for_course(code)
        return _blocked(
            code,
            target,
            "Cannot determine eligibility: this course has a catalog data problem.",
            unavailable=err.to_dict(),
        )

    out = result.to_dict()
    out["why_not"] = _why_not(result)
    out["prereq_check"] = build_prereq_check_string(
        course.prerequisites,
        set(codes_with_status(status_index, CourseStatus.COMPLETED)),
        set(codes_with_status(status_index, CourseStatus.IN_PROGRESS)),
    )
    out["unavailable"] = None
    return out


def validate_plan(
    course_codes: list[str],
    catalog: Catalog,
    status_index: StatusIndex,
    target_semester,
    policy: ScoringPolicy | None = None,
) -> dict:
    """
    Batch-validate the courses planned for one semester.

    Courses in the batch count as planned for the target semester, so two
    corequisites planned together satisfy each other.

    Returns:
    {
      "target_semester": str,
      "overall": bool,                # every course can be added
      "checks": [ValidationResult dict + "why_not" / "unavailable"],
      "critical_blocks": [str],       # courses missing 2+ prerequisites
      "optimizations": [str],
    }
    """
    target = parse_semester(target_semester)
    codes = list(dict.fromkeys(c for c in (normalize_code(x) for x in course_codes) if c))

    index = dict(status_index)
    for code in codes:
        if code not in index:
            index[code] = StudentCourseRecord(code, CourseStatus.PLANNED, semester=target)
    plan_index = MappingProxyType(index)

    checks = []
    for code in codes:
        course = catalog.get(code)
        if course is None:
            checks.append(_blocked(code, target.label, f"{code} is not in the course catalog."))
            continue
        try:
            result = validate(course, plan_index, target, catalog, policy)
        except PrerequisiteDataError as exc:
            err = exc if exc.course_code else exc.for_course(code)
            checks.append(_blocked(
                code,
                target.label,
                "Cannot determine eligibility: this course has a catalog data problem.",
                unavailable=err.to_dict(),
            ))
            continue
        check = result.to_dict()
        check["why_not"] = _why_not(result)
        check["unavailable"] = None
        checks.append(check)

    critical_blocks = [
        c["course_code"] for c in checks
        if not c["can_add"] and len(c["missing_prerequisites"]) >= CRITICAL_BLOCK_THRESHOLD
    ]

    counts: dict[str, int] = {}
    for c in checks:
        for code in c["missing_prerequisites"]:
            counts[code] = counts.get(code, 0) + 1
    commonly_missing = [code for code, n in counts.items() if n > 1]
    optimizations = []
    if commonly_missing:
        optimizations.append(
            "Consider prioritizing these prerequisites as they're needed for "
            f"multiple courses: {', '.join(commonly_missing)}"
        )

    return {
        "target_semester": target.label,
        "overall": all(c["can_add"] for c in checks),
        "checks": checks,
        "critical_blocks": critical_blocks,
        "optimizations": optimizations,
    }
