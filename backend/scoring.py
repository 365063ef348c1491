"""
Per-course recommendation scoring.

Every adjustment is applied independently and summed:

    fully eligible (no warnings)              +fully_eligible   prerequisite-ready
    eligible with soft warnings only          +soft_eligible    prerequisite-ready
    each missing prerequisite                 +missing_prerequisite (negative)
    required by the student's major           +major_requirement
    each declared track the course matches    +track_match      thread-related
    lowest numbering tier in its department   +foundation
    hard course in the first program terms    +early_hard_course (negative)

The category is the first candidate in policy.category_precedence; priority
comes from the score thresholds. All numbers live in ScoringPolicy.
"""

import re
from dataclasses import dataclass
from enum import Enum

from catalog import Catalog, Course
from eligibility import ValidationResult, validate
from normalizer import normalize_code
from policy import DEFAULT_POLICY, ScoringPolicy
from student_record import StatusIndex, earliest_semester
from timeline import Semester, parse_semester, program_term_number


class Category(str, Enum):
    PREREQUISITE_READY = "prerequisite-ready"
    MAJOR_REQUIREMENT = "major-requirement"
    FOUNDATION = "foundation"
    THREAD_RELATED = "thread-related"
    OTHER = "other"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class StudentProfile:
    major: str = ""
    tracks: tuple = ()
    minors: tuple = ()
    major_required: frozenset = frozenset()
    start_semester: Semester | None = None

    def __post_init__(self):
        object.__setattr__(self, "major", str(self.major or "").strip().upper())
        object.__setattr__(self, "tracks", tuple(dict.fromkeys(
            str(t).strip().lower() for t in self.tracks if str(t).strip()
        )))
        object.__setattr__(self, "minors", tuple(
            str(m).strip() for m in self.minors if str(m).strip()
        ))
        object.__setattr__(self, "major_required", frozenset(
            c for c in (normalize_code(x) for x in self.major_required) if c
        ))
        if self.start_semester is not None and not isinstance(self.start_semester, Semester):
            object.__setattr__(self, "start_semester", parse_semester(self.start_semester))


@dataclass(frozen=True)
class ScoreResult:
    course_code: str
    score: int
    category: Category
    priority: Priority
    reasons: tuple
    candidates: tuple
    validation: ValidationResult


_WORD_RE = re.compile(r"[a-z0-9]+")

# Filler words in track names that never identify a subject.
_TRACK_STOPWORDS = frozenset({
    "and", "the", "for", "with", "into", "from", "its", "our", "your",
    "track", "thread", "concentration", "intro", "introduction", "studies",
})


def _track_keywords(track: str, policy: ScoringPolicy) -> set[str]:
    track_words = set(_WORD_RE.findall(track.lower()))
    words = {w for w in track_words if len(w) >= 3} - _TRACK_STOPWORDS
    for key, keywords in policy.track_keywords.items():
        if key in track_words or key == track:
            words.update(keywords)
    return words


def matching_tracks(course: Course, tracks, policy: ScoringPolicy = DEFAULT_POLICY) -> list[str]:
    """
    Declared tracks this course supports, each at most once. A track matches
    when it is one of the course's track tags or when one of its keywords
    starts a word in the course title or description.
    """
    text_words = set(_WORD_RE.findall(f"{course.title} {course.description}".lower()))
    matched = []
    for track in tracks:
        if track in matched:
            continue
        if track in course.tracks:
            matched.append(track)
            continue
        keywords = _track_keywords(track, policy)
        if any(w.startswith(k) for k in keywords for w in text_words):
            matched.append(track)
    return matched


def is_foundation_course(course: Course, catalog: Catalog) -> bool:
    tier = course.number_tier
    return tier is not None and tier == catalog.department_min_tier(course.department)


def program_start(profile: StudentProfile, status_index: StatusIndex, target: Semester) -> Semester:
    return profile.start_semester or earliest_semester(status_index) or target


def score(
    course: Course,
    status_index: StatusIndex,
    profile: StudentProfile,
    catalog: Catalog,
    target_semester,
    policy: ScoringPolicy | None = None,
    validation: ValidationResult | None = None,
) -> ScoreResult:
    policy = policy or DEFAULT_POLICY
    target = parse_semester(target_semester)
    if validation is None:
        validation = validate(course, status_index, target, catalog, policy)

    total = 0
    reasons: list[str] = []
    candidates: list[Category] = []

    if validation.fully_eligible:
        total += policy.fully_eligible
        reasons.append("Prerequisites completed")
        candidates.append(Category.PREREQUISITE_READY)
    elif validation.soft_eligible:
        total += policy.soft_eligible
        reasons.append("Prerequisites completed (see warnings)")
        candidates.append(Category.PREREQUISITE_READY)

    missing = validation.missing_prerequisites
    if missing:
        total += policy.missing_prerequisite * len(missing)
        reasons.append(f"Still needs: {', '.join(missing)}")

    if course.code in profile.major_required:
        total += policy.major_requirement
        label = f" ({profile.major})" if profile.major else ""
        reasons.append(f"Required for your major{label}")
        candidates.append(Category.MAJOR_REQUIREMENT)

    if is_foundation_course(course, catalog):
        total += policy.foundation
        reasons.append("Foundation course")
        candidates.append(Category.FOUNDATION)

    tracks = matching_tracks(course, profile.tracks, policy)
    if tracks:
        total += policy.track_match * len(tracks)
        for track in tracks:
            reasons.append(f"Supports your {track} track")
        candidates.append(Category.THREAD_RELATED)

    if course.difficulty >= policy.hard_difficulty:
        term_no = program_term_number(target, program_start(profile, status_index, target))
        if term_no <= policy.early_terms:
            total += policy.early_hard_course
            reasons.append(f"Demanding course (difficulty {course.difficulty}) for an early semester")

    category = Category.OTHER
    for name in policy.category_precedence:
        if Category(name) in candidates:
            category = Category(name)
            break

    return ScoreResult(
        course_code=course.code,
        score=total,
        category=category,
        priority=Priority(policy.priority_for(total)),
        reasons=tuple(reasons),
        candidates=tuple(candidates),
        validation=validation,
    )
