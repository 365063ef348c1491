from dataclasses import dataclass
from typing import Mapping

import networkx as nx

from prereq_parser import (
    GRADE_SCALE,
    And,
    Leaf,
    NoPrerequisite,
    Or,
    PrereqExpr,
    PrerequisiteDataError,
    prereq_course_codes,
)
from student_record import CourseStatus, StatusIndex

DEFAULT_RECOMMENDED_GRADE = "C"


class CyclicPrerequisiteError(PrerequisiteDataError):
    error_code = "CYCLIC_PREREQUISITE"


class UnknownPrerequisiteError(PrerequisiteDataError):
    error_code = "UNKNOWN_PREREQUISITE"


@dataclass(frozen=True)
class EvaluationResult:
    satisfied: bool
    unmet_leaves: tuple = ()
    satisfied_leaves: tuple = ()
    # Satisfied leaves whose recorded grade is below the recommended grade.
    weak_leaves: tuple = ()

    @property
    def unmet_codes(self) -> list[str]:
        return list(dict.fromkeys(leaf.course for leaf in self.unmet_leaves))


def grade_rank(grade) -> int | None:
    g = str(grade or "").strip().upper().rstrip("+-")
    return GRADE_SCALE.get(g)


def grade_meets(grade, floor) -> bool:
    """True iff grade is on the scale and at or above floor."""
    have = grade_rank(grade)
    need = grade_rank(floor)
    if have is None or need is None:
        return False
    return have >= need


def _union(groups) -> tuple:
    out: list = []
    for group in groups:
        for item in group:
            if item not in out:
                out.append(item)
    return tuple(out)


def _evaluate_leaf(leaf: Leaf, status_index: StatusIndex, recommended_grade: str) -> EvaluationResult:
    rec = status_index.get(leaf.course)
    if rec is None or rec.status is not CourseStatus.COMPLETED:
        return EvaluationResult(False, unmet_leaves=(leaf,))
    if leaf.min_grade and not grade_meets(rec.grade, leaf.min_grade):
        return EvaluationResult(False, unmet_leaves=(leaf,))
    weak = ()
    if recommended_grade and rec.grade and not grade_meets(rec.grade, recommended_grade):
        weak = (leaf,)
    return EvaluationResult(True, satisfied_leaves=(leaf,), weak_leaves=weak)


def evaluate(
    expr: PrereqExpr,
    status_index: StatusIndex,
    resolving: frozenset = frozenset(),
    recommended_grade: str | None = DEFAULT_RECOMMENDED_GRADE,
) -> EvaluationResult:
    """
    Evaluate a prerequisite expression against a student's status index.

    Leaf  - satisfied iff the course is completed and meets its grade floor.
    And   - all children satisfied; unmet leaves are the union of every child's.
    Or    - any child satisfied; when none is, unmet leaves are the union across
            all alternatives so every option can be shown.
    None  - always satisfied.

    `resolving` holds the course codes currently being resolved further up the
    call stack. Reaching one of them again raises CyclicPrerequisiteError rather
    than reporting the leaf as unsatisfied.
    """
    if isinstance(expr, NoPrerequisite):
        return EvaluationResult(True)

    if isinstance(expr, Leaf):
        if expr.course in resolving:
            raise CyclicPrerequisiteError(
                f"Prerequisite cycle: {expr.course} requires itself.",
                course_code=expr.course,
            )
        return _evaluate_leaf(expr, status_index, recommended_grade)

    if isinstance(expr, And):
        results = [evaluate(c, status_index, resolving, recommended_grade) for c in expr.children]
        return EvaluationResult(
            all(r.satisfied for r in results),
            unmet_leaves=_union(r.unmet_leaves for r in results),
            satisfied_leaves=_union(r.satisfied_leaves for r in results if r.satisfied),
            weak_leaves=_union(r.weak_leaves for r in results if r.satisfied),
        )

    if isinstance(expr, Or):
        results = [evaluate(c, status_index, resolving, recommended_grade) for c in expr.children]
        passed = [r for r in results if r.satisfied]
        if not passed:
            return EvaluationResult(False, unmet_leaves=_union(r.unmet_leaves for r in results))
        # One alternative met cleanly is enough to silence low-grade warnings.
        if any(not r.weak_leaves for r in passed):
            weak = ()
        else:
            weak = _union(r.weak_leaves for r in passed)
        return EvaluationResult(
            True,
            satisfied_leaves=_union(r.satisfied_leaves for r in passed),
            weak_leaves=weak,
        )

    raise TypeError(f"Unknown prerequisite node: {expr!r}")


def resolve_course(
    course_code: str,
    prereq_map: Mapping[str, PrereqExpr],
    status_index: StatusIndex,
    resolving: frozenset = frozenset(),
    recommended_grade: str | None = DEFAULT_RECOMMENDED_GRADE,
) -> EvaluationResult:
    """Evaluate a catalog course's own prerequisites with the cycle guard seeded."""
    if course_code in resolving:
        raise CyclicPrerequisiteError(
            f"Prerequisite cycle through {course_code}.",
            course_code=course_code,
        )
    if course_code not in prereq_map:
        raise UnknownPrerequisiteError(
            f"{course_code} is not in the course catalog.",
            course_code=course_code,
        )
    return evaluate(
        prereq_map[course_code],
        status_index,
        resolving | {course_code},
        recommended_grade,
    )


def prerequisite_graph(prereq_map: Mapping[str, PrereqExpr]) -> nx.DiGraph:
    """Directed graph course -> prerequisite course, catalog courses only."""
    G = nx.DiGraph()
    G.add_nodes_from(prereq_map)
    for code, expr in prereq_map.items():
        for ref in prereq_course_codes(expr):
            if ref in prereq_map:
                G.add_edge(code, ref)
    return G


def find_integrity_issues(prereq_map: Mapping[str, PrereqExpr]) -> dict[str, PrerequisiteDataError]:
    """
    Walk the whole prerequisite graph once and return {course_code: error} for:
      - every course that sits on a prerequisite cycle (CyclicPrerequisiteError)
      - every course whose expression names a code missing from the catalog
        (UnknownPrerequisiteError)

    Cycles are the strongly connected components of the prerequisite graph
    (plus self-loops), so a course that merely depends on a cyclic course is
    not flagged itself.
    """
    issues: dict[str, PrerequisiteDataError] = {}

    for code in sorted(prereq_map):
        unknown = [r for r in prereq_course_codes(prereq_map[code]) if r not in prereq_map]
        if unknown:
            issues[code] = UnknownPrerequisiteError(
                f"{code} lists prerequisite(s) not in the catalog: {', '.join(unknown)}.",
                course_code=code,
            )

    G = prerequisite_graph(prereq_map)
    cycles: list[list[str]] = [sorted(comp) for comp in nx.strongly_connected_components(G) if len(comp) > 1]
    on_cycle = {c for members in cycles for c in members}
    cycles.extend([u] for u, _ in nx.selfloop_edges(G) if u not in on_cycle)

    for members in cycles:
        path = " -> ".join(members + [members[0]])
        for member in members:
            issues[member] = CyclicPrerequisiteError(
                f"Prerequisite cycle: {path}.",
                course_code=member,
            )

    return issues
