"""
Pure input-validation helpers for the API endpoints.
No Flask or data-loader imports.
"""

from typing import Dict, List, Mapping, Optional, Set

from normalizer import normalize_input
from prereq_parser import And, Leaf, PrereqExpr
from student_record import (
    CourseStatus,
    StatusIndex,
    StudentCourseRecord,
    build_status_index,
    records_from_dicts,
)
from timeline import SEM_RE, parse_semester


class RequestValidationError(ValueError):
    error_code = "INVALID_INPUT"

    def __init__(self, message: str, error_code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}


def _required_leaves(expr: PrereqExpr) -> List[str]:
    """Codes that are unconditionally required (Leaf, or reachable through And only)."""
    if isinstance(expr, Leaf):
        return [expr.course]
    if isinstance(expr, And):
        out: List[str] = []
        for child in expr.children:
            out.extend(c for c in _required_leaves(child) if c not in out)
        return out
    return []


def _get_all_required_prereqs(
    course_code: str,
    prereq_map: Mapping[str, PrereqExpr],
    visited: Optional[Set[str]] = None,
) -> Set[str]:
    """
    Return all transitively required prerequisites for course_code.

    Traverses only required branches (Leaf and And). Stops at Or groups,
    NoPrerequisite and unknown courses.
    """
    if visited is None:
        visited = set()

    if course_code in visited:
        return set()
    visited.add(course_code)

    expr = prereq_map.get(course_code)
    if expr is None:
        return set()

    direct = _required_leaves(expr)
    all_required = set(direct)
    for prereq in direct:
        all_required |= _get_all_required_prereqs(prereq, prereq_map, visited)
    return all_required


def find_inconsistent_records(
    status_index: StatusIndex,
    prereq_map: Mapping[str, PrereqExpr],
) -> List[dict]:
    """
    Return completed courses whose required prerequisites are only in progress
    or planned, which usually means the student mislabelled a record.

    Each item:
      {"course_code": str, "prereqs_not_completed": List[str]}
    """
    not_done = {
        code for code, rec in status_index.items()
        if rec.status in (CourseStatus.IN_PROGRESS, CourseStatus.PLANNED)
    }
    issues: List[dict] = []

    for course_code in sorted(status_index):
        if status_index[course_code].status is not CourseStatus.COMPLETED:
            continue
        required = _get_all_required_prereqs(course_code, prereq_map)
        pending = sorted(p for p in required if p in not_done)
        if pending:
            issues.append({
                "course_code": course_code,
                "prereqs_not_completed": pending,
            })
    return issues


def require_json_object(body) -> dict:
    if not isinstance(body, dict):
        raise RequestValidationError("Request body must be a JSON object.")
    return body


def parse_semester_field(body: dict, field: str, required: bool = True, default: str | None = None) -> str | None:
    val = body.get(field)
    if val in (None, ""):
        if required and default is None:
            raise RequestValidationError(f"'{field}' is required (e.g. 'Fall 2026').")
        return default
    if not SEM_RE.match(str(val).strip()):
        raise RequestValidationError(f"'{field}' value '{val}' is not a valid semester (e.g. 'Spring 2026').")
    return parse_semester(val).label


def parse_int_field(body: dict, field: str, default: int, minimum: int, maximum: int) -> int:
    raw = body.get(field, default)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
        if isinstance(raw, bool) or not (minimum <= value <= maximum):
            raise ValueError
    except (TypeError, ValueError):
        raise RequestValidationError(
            f"{field} must be an integer between {minimum} and {maximum}."
        ) from None
    return value


def parse_string_list(body: dict, field: str) -> List[str]:
    raw = body.get(field)
    if raw in (None, ""):
        return []
    if isinstance(raw, str):
        return [p.strip() for p in raw.split(",") if p.strip()]
    if isinstance(raw, list):
        return [str(p).strip() for p in raw if str(p).strip()]
    raise RequestValidationError(f"{field} must be a list of strings.")


def _coerce_course_list(raw_value) -> str:
    if raw_value is None:
        return ""
    if isinstance(raw_value, list):
        return ", ".join(str(v) for v in raw_value)
    return str(raw_value)


def parse_status_index(body: dict, catalog_codes) -> StatusIndex:
    """
    Build the student's status index from the request body.

    Accepts `records` ([{course_code, status, grade?, semester?}]) and the
    shorthand lists `completed_courses` / `in_progress_courses` (comma
    separated string or list). Shorthand codes must be well formed; codes
    not in the catalog are kept since records may predate the catalog.
    """
    raw_records = body.get("records", [])
    if raw_records in (None, ""):
        raw_records = []
    if not isinstance(raw_records, list):
        raise RequestValidationError("records must be a list of objects.")
    try:
        records = records_from_dicts(raw_records)
    except ValueError as exc:
        raise RequestValidationError(str(exc)) from None

    for field, status in (
        ("completed_courses", CourseStatus.COMPLETED),
        ("in_progress_courses", CourseStatus.IN_PROGRESS),
    ):
        result = normalize_input(_coerce_course_list(body.get(field)), set(catalog_codes))
        if result["invalid"]:
            raise RequestValidationError(
                f"{field} contains unrecognized course code(s): {', '.join(result['invalid'])}",
                error_code="INVALID_COURSE_CODE",
                details={"invalid": result["invalid"]},
            )
        for code in result["valid"] + result["not_in_catalog"]:
            records.append(StudentCourseRecord(code, status))

    try:
        return build_status_index(records)
    except ValueError as exc:
        raise RequestValidationError(str(exc)) from None


def validate_priority_filter(body: Dict) -> str | None:
    raw = str(body.get("priority_filter") or "").strip().lower()
    if raw in ("", "all"):
        return None
    if raw not in ("high", "medium", "low"):
        raise RequestValidationError("priority_filter must be one of: high, medium, low, all.")
    return raw
