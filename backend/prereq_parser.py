import json
import re
from dataclasses import dataclass
from typing import Union

import pandas as pd

from normalizer import CANONICAL, normalize_code

# Case-insensitive OR splitter; keeps token casing before normalize_code()
OR_SPLIT = re.compile(r'\s+or\s+', re.IGNORECASE)

# Per-course grade floor, e.g. "CS 1331 (C)", "CS 1331 (min grade C)",
# "CS 1331 (minimum grade of C or better)"
GRADE_ANNOTATION_RE = re.compile(
    r'\(\s*(?:min(?:imum)?\.?\s+grade(?:\s+of)?\s+)?([A-DF])\s*(?:or\s+(?:better|higher|above))?\s*\)',
    re.IGNORECASE,
)

# Regex to strip remaining parenthetical annotation clauses, e.g. "(may be concurrent)"
ANNOTATION_RE = re.compile(r'\s*\([^)]*\)')
# Same, but leaves a bare grade floor such as "(C)" in place
NON_GRADE_ANNOTATION_RE = re.compile(r'\s*\((?![A-DF]\))[^)]*\)')

# Signals that the prerequisite text contains grammar outside the AND/OR model.
UNSUPPORTED_SIGNALS = [
    "permission",
    "standing",
    "instructor",
    "admitted",
    "enrollment",
    "consent",
    "placement",
    "gpa",
    "credit hours",
]

NONE_VALUES = {"none", "none listed", "n/a", "nan", ""}

# Ordinal grade scale for grade floors. W (withdrawn), I (incomplete) and any
# other mark are off the scale and never satisfy a floor.
GRADE_SCALE = {"A": 4, "B": 3, "C": 2, "D": 1, "F": 0}


class PrerequisiteDataError(ValueError):
    """A catalog data problem that makes one course's prerequisites unusable."""

    error_code = "DATA_INTEGRITY"

    def __init__(self, message: str, course_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.course_code = course_code

    def for_course(self, course_code: str) -> "PrerequisiteDataError":
        """Return a copy of this error attributed to course_code."""
        return type(self)(self.message, course_code=course_code)

    def to_dict(self) -> dict:
        return {
            "course_code": self.course_code,
            "error_code": self.error_code,
            "message": self.message,
        }


class PrerequisiteParseError(PrerequisiteDataError):
    error_code = "UNPARSEABLE_PREREQUISITE"


# ── Expression model ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Leaf:
    """A single required course, optionally with a minimum grade."""

    course: str
    min_grade: str | None = None

    def __post_init__(self):
        code = normalize_code(self.course)
        if code is None:
            raise PrerequisiteParseError("Prerequisite leaf has an empty course code.")
        object.__setattr__(self, "course", code)
        if self.min_grade is not None:
            grade = str(self.min_grade).strip().upper().rstrip("+-")
            if grade and grade not in GRADE_SCALE:
                raise PrerequisiteParseError(f"Unknown minimum grade {self.min_grade!r} for {code}.")
            object.__setattr__(self, "min_grade", grade or None)


@dataclass(frozen=True)
class And:
    children: tuple

    def __post_init__(self):
        object.__setattr__(self, "children", tuple(self.children))


@dataclass(frozen=True)
class Or:
    children: tuple

    def __post_init__(self):
        object.__setattr__(self, "children", tuple(self.children))


@dataclass(frozen=True)
class NoPrerequisite:
    pass


NO_PREREQUISITE = NoPrerequisite()

PrereqExpr = Union[Leaf, And, Or, NoPrerequisite]


def _combine(kind, children: list) -> PrereqExpr:
    """Build And/Or, collapsing empty and single-child groups."""
    children = [c for c in children if not isinstance(c, NoPrerequisite)]
    if not children:
        return NO_PREREQUISITE
    if len(children) == 1:
        return children[0]
    return kind(tuple(children))


def prereq_course_codes(expr: PrereqExpr) -> list[str]:
    """Course codes referenced by expr, in left-to-right first-appearance order."""
    if isinstance(expr, Leaf):
        return [expr.course]
    if isinstance(expr, (And, Or)):
        result: list[str] = []
        for child in expr.children:
            result.extend(prereq_course_codes(child))
        return list(dict.fromkeys(result))
    if isinstance(expr, NoPrerequisite):
        return []
    raise TypeError(f"Unknown prerequisite node: {expr!r}")


# ── Parsing ──────────────────────────────────────────────────────────────────

def _parse_json_node(node) -> PrereqExpr:
    """
    Parses the catalog JSON form:
      ["and", {"id": "CS 1331", "grade": "C"}, ["or", {"id": "MATH 1551"}, ...]]
    A list without a leading operator is treated as AND.
    """
    if node is None:
        return NO_PREREQUISITE
    if isinstance(node, str):
        return Leaf(node)
    if isinstance(node, dict):
        code = node.get("id") or node.get("code") or node.get("course")
        if not code:
            raise PrerequisiteParseError(f"Prerequisite object has no course id: {node!r}")
        grade = node.get("grade") or node.get("min_grade")
        return Leaf(str(code), str(grade) if grade else None)
    if isinstance(node, list):
        if not node:
            return NO_PREREQUISITE
        head = node[0]
        if isinstance(head, str) and head.strip().lower() in {"and", "or"}:
            kind = And if head.strip().lower() == "and" else Or
            return _combine(kind, [_parse_json_node(child) for child in node[1:]])
        return _combine(And, [_parse_json_node(child) for child in node])
    raise PrerequisiteParseError(f"Unsupported prerequisite node: {node!r}")


def _parse_text_token(token: str, raw: str) -> Leaf:
    grade = None
    m = GRADE_ANNOTATION_RE.search(token)
    if m:
        grade = m.group(1).upper()
        token = GRADE_ANNOTATION_RE.sub("", token, count=1)
    token = ANNOTATION_RE.sub("", token).strip().rstrip(".")
    code = normalize_code(token)
    if code is None or not CANONICAL.match(code):
        raise PrerequisiteParseError(f"Unrecognized course code {token!r} in prerequisite {raw!r}.")
    return Leaf(code, grade)


def _parse_text_clause(clause: str, raw: str) -> PrereqExpr:
    # Grade floors may themselves contain "or" ("(C or better)").
    clause = GRADE_ANNOTATION_RE.sub(lambda m: f" ({m.group(1).upper()})", clause)
    clause = NON_GRADE_ANNOTATION_RE.sub("", clause)
    parts = [p.strip() for p in OR_SPLIT.split(clause) if p.strip()]
    return _combine(Or, [_parse_text_token(p, raw) for p in parts])


def parse_prereqs(prereq_value) -> PrereqExpr:
    """
    Parses a catalog prerequisite field into an expression tree.

    Supported input:
      None / NaN / "none"              → NoPrerequisite
      JSON list / dict (or its text)   → nested And/Or of Leaf
      CODE                             → Leaf
      CODE (C)                         → Leaf with min_grade "C"
      CODE;CODE;...                    → And
      CODE or CODE                     → Or
      CODE; CODE or CODE               → And(Leaf, Or(Leaf, Leaf))

    Parenthetical annotations other than grade floors (e.g. "(may be concurrent)")
    are stripped. Anything else raises PrerequisiteParseError.
    """
    if isinstance(prereq_value, (list, dict)):
        return _parse_json_node(prereq_value)
    if prereq_value is None or (isinstance(prereq_value, float) and pd.isna(prereq_value)):
        return NO_PREREQUISITE

    s = str(prereq_value).strip()
    if s.lower() in NONE_VALUES:
        return NO_PREREQUISITE

    if s[0] in "[{":
        try:
            decoded = json.loads(s)
        except json.JSONDecodeError as exc:
            raise PrerequisiteParseError(f"Malformed prerequisite JSON {s!r}: {exc}") from exc
        return _parse_json_node(decoded)

    without_grades = GRADE_ANNOTATION_RE.sub("", s)
    lowered = ANNOTATION_RE.sub("", without_grades).lower()
    for signal in UNSUPPORTED_SIGNALS:
        if signal in lowered:
            raise PrerequisiteParseError(f"Unsupported prerequisite format: {s!r}")

    clauses = [c.strip() for c in s.split(";") if c.strip()]
    return _combine(And, [_parse_text_clause(c, s) for c in clauses])


# ── Rendering ────────────────────────────────────────────────────────────────

def _leaf_text(leaf: Leaf) -> str:
    if leaf.min_grade:
        return f"{leaf.course} ({leaf.min_grade})"
    return leaf.course


def describe_prereqs(expr: PrereqExpr) -> str:
    """
    Human-readable form. Top-level AND uses ';' like the catalog text grammar;
    nested groups are parenthesized.
    """
    def render(node, nested: bool) -> str:
        if isinstance(node, Leaf):
            return _leaf_text(node)
        if isinstance(node, NoPrerequisite):
            return "none"
        if isinstance(node, And):
            sep = " and " if nested else "; "
            text = sep.join(render(c, True) for c in node.children)
        elif isinstance(node, Or):
            text = " or ".join(render(c, True) for c in node.children)
        else:
            raise TypeError(f"Unknown prerequisite node: {node!r}")
        return f"({text})" if nested else text

    return render(expr, False)


def prereqs_to_json(expr: PrereqExpr):
    """Inverse of the JSON parsing form."""
    if isinstance(expr, NoPrerequisite):
        return []
    if isinstance(expr, Leaf):
        out = {"id": expr.course}
        if expr.min_grade:
            out["grade"] = expr.min_grade
        return out
    if isinstance(expr, And):
        return ["and"] + [prereqs_to_json(c) for c in expr.children]
    if isinstance(expr, Or):
        return ["or"] + [prereqs_to_json(c) for c in expr.children]
    raise TypeError(f"Unknown prerequisite node: {expr!r}")


def build_prereq_check_string(
    expr: PrereqExpr,
    completed: set,
    in_progress: set,
) -> str:
    """
    Returns a human-readable string showing which prereqs are satisfied and how.
    Examples:
      "CS 1331 ✓"
      "CS 1331 ✓; MATH 1551 (in progress) ✗"
      "MATH 1551 ✓ (or MATH 1550)"
    """
    def label_code(leaf: Leaf) -> str:
        text = _leaf_text(leaf)
        if leaf.course in completed:
            return f"{text} ✓"
        if leaf.course in in_progress:
            return f"{text} (in progress) ✗"
        return f"{text} ✗"

    if isinstance(expr, NoPrerequisite):
        return "No prerequisites"
    if isinstance(expr, Leaf):
        return label_code(expr)
    if isinstance(expr, And):
        parts = []
        for child in expr.children:
            part = build_prereq_check_string(child, completed, in_progress)
            parts.append(f"({part})" if isinstance(child, And) else part)
        return "; ".join(parts)
    if isinstance(expr, Or):
        leaves = [c for c in expr.children if isinstance(c, Leaf)]
        done = [c for c in leaves if c.course in completed]
        if done and len(leaves) == len(expr.children):
            others = [_leaf_text(c) for c in leaves if c is not done[0]]
            return f"{label_code(done[0])} (or {' or '.join(others)})"
        parts = []
        for child in expr.children:
            part = build_prereq_check_string(child, completed, in_progress)
            parts.append(part if isinstance(child, Leaf) else f"({part})")
        return " or ".join(parts)
    raise TypeError(f"Unknown prerequisite node: {expr!r}")
