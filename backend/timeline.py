import re
from dataclasses import dataclass

SEM_RE = re.compile(r"^(Spring|Summer|Fall)\s+(\d{4})$", re.IGNORECASE)

TERMS = ("Spring", "Summer", "Fall")
_TERM_INDEX = {t: i for i, t in enumerate(TERMS)}


@dataclass(frozen=True, order=True)
class Semester:
    """A term of a calendar year. Ordered chronologically."""

    year: int
    term_index: int

    @property
    def term(self) -> str:
        return TERMS[self.term_index]

    @property
    def label(self) -> str:
        return f"{self.term} {self.year}"

    @property
    def offering_key(self) -> str:
        """Key used in Course.offerings ('fall', 'spring', 'summer')."""
        return self.term.lower()

    def next(self) -> "Semester":
        idx = self.term_index + 1
        year = self.year
        if idx >= len(TERMS):
            idx = 0
            year += 1
        return Semester(year, idx)

    def previous(self) -> "Semester":
        if self.term_index == 0:
            return Semester(self.year - 1, len(TERMS) - 1)
        return Semester(self.year, self.term_index - 1)

    def __str__(self) -> str:
        return self.label


def parse_semester(label) -> Semester:
    """'fall 2026' → Semester(2026, Fall). Raises ValueError on anything else."""
    if isinstance(label, Semester):
        return label
    m = SEM_RE.match(str(label or "").strip())
    if not m:
        raise ValueError(f"Not a valid semester label (e.g. 'Fall 2026'): {label!r}")
    term = m.group(1).capitalize()
    return Semester(int(m.group(2)), _TERM_INDEX[term])


def semesters_after(start: Semester, count: int) -> list[Semester]:
    """The `count` semesters strictly after start."""
    out = []
    current = start
    for _ in range(count):
        current = current.next()
        out.append(current)
    return out


def program_term_number(target: Semester, program_start: Semester) -> int:
    """
    1-based count of regular (Fall/Spring) terms from program_start through
    target. Summer terms are not counted; a Summer target counts as the
    regular term before it. A target before the program start counts as 1.
    """
    if target <= program_start:
        return 1
    count = 0
    current = program_start
    while current <= target:
        if current.term != "Summer":
            count += 1
        current = current.next()
    return max(1, count)
