from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from normalizer import normalize_code
from timeline import Semester, parse_semester


class CourseStatus(str, Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in-progress"
    PLANNED = "planned"

    @classmethod
    def parse(cls, raw) -> "CourseStatus":
        if isinstance(raw, cls):
            return raw
        key = str(raw or "").strip().lower().replace("_", "-").replace(" ", "-")
        for status in cls:
            if status.value == key:
                return status
        raise ValueError(f"Unknown course status: {raw!r}")


@dataclass(frozen=True)
class StudentCourseRecord:
    course_code: str
    status: CourseStatus
    grade: str | None = None
    semester: Semester | None = None

    def __post_init__(self):
        code = normalize_code(self.course_code)
        if code is None:
            raise ValueError("Student record entry has no course code.")
        object.__setattr__(self, "course_code", code)
        object.__setattr__(self, "status", CourseStatus.parse(self.status))
        if self.semester is not None and not isinstance(self.semester, Semester):
            object.__setattr__(self, "semester", parse_semester(self.semester))
        grade = str(self.grade).strip().upper() if self.grade not in (None, "") else None
        if self.status is not CourseStatus.COMPLETED:
            # Grade is only kept for completed courses.
            grade = None
        object.__setattr__(self, "grade", grade)


StatusIndex = Mapping[str, StudentCourseRecord]


def build_status_index(records: Iterable[StudentCourseRecord]) -> StatusIndex:
    """
    Key records by normalized course code. A course may appear at most once;
    duplicates are a caller error.
    """
    index: dict[str, StudentCourseRecord] = {}
    for rec in records:
        if rec.course_code in index:
            raise ValueError(f"Duplicate student record for {rec.course_code}.")
        index[rec.course_code] = rec
    return MappingProxyType(index)


def records_from_dicts(rows: Iterable[dict]) -> list[StudentCourseRecord]:
    """Build records from JSON-style dicts: {course_code, status, grade?, semester?}."""
    out = []
    for row in rows:
        if not isinstance(row, dict):
            raise ValueError(f"Student record entries must be objects, got {row!r}.")
        out.append(StudentCourseRecord(
            course_code=row.get("course_code") or row.get("code") or "",
            status=row.get("status"),
            grade=row.get("grade"),
            semester=row.get("semester") or None,
        ))
    return out


def codes_with_status(status_index: StatusIndex, *statuses: CourseStatus) -> list[str]:
    wanted = set(statuses)
    return [code for code, rec in status_index.items() if rec.status in wanted]


def earliest_semester(status_index: StatusIndex) -> Semester | None:
    semesters = [rec.semester for rec in status_index.values() if rec.semester is not None]
    return min(semesters) if semesters else None
