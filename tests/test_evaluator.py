import pytest
from evaluator import (
    CyclicPrerequisiteError,
    UnknownPrerequisiteError,
    evaluate,
    find_integrity_issues,
    grade_meets,
    prerequisite_graph,
    resolve_course,
)
from prereq_parser import NO_PREREQUISITE, And, Leaf, Or
from student_record import StudentCourseRecord, build_status_index


def _index(*rows):
    """rows: (code, status) or (code, status, grade)."""
    return build_status_index([StudentCourseRecord(*row) for row in rows])


class TestGradeMeets:
    def test_at_floor(self):
        assert grade_meets("C", "C")

    def test_above_floor(self):
        assert grade_meets("A-", "C")

    def test_below_floor(self):
        assert not grade_meets("D", "C")

    def test_off_scale_never_meets(self):
        assert not grade_meets("W", "D")
        assert not grade_meets(None, "D")


class TestEvaluate:
    def test_no_prerequisite(self):
        assert evaluate(NO_PREREQUISITE, _index()).satisfied

    def test_leaf_completed(self):
        result = evaluate(Leaf("CS 1301"), _index(("CS 1301", "completed", "A")))
        assert result.satisfied
        assert result.unmet_leaves == ()

    def test_leaf_in_progress_is_unmet(self):
        result = evaluate(Leaf("CS 1301"), _index(("CS 1301", "in-progress")))
        assert not result.satisfied
        assert result.unmet_codes == ["CS 1301"]

    def test_leaf_planned_is_unmet(self):
        assert not evaluate(Leaf("CS 1301"), _index(("CS 1301", "planned"))).satisfied

    def test_grade_floor_not_met(self):
        result = evaluate(Leaf("CS 1331", "B"), _index(("CS 1331", "completed", "C")))
        assert not result.satisfied

    def test_grade_floor_without_grade(self):
        assert not evaluate(Leaf("CS 1331", "D"), _index(("CS 1331", "completed"))).satisfied

    def test_and_collects_all_unmet(self):
        expr = And((Leaf("A 1000"), Leaf("B 1000"), Leaf("C 1000")))
        result = evaluate(expr, _index(("B 1000", "completed", "A")))
        assert not result.satisfied
        assert result.unmet_codes == ["A 1000", "C 1000"]

    def test_or_any_child(self):
        expr = Or((Leaf("A 1000"), Leaf("B 1000")))
        assert evaluate(expr, _index(("B 1000", "completed", "A"))).satisfied

    def test_or_unmet_lists_every_alternative(self):
        expr = Or((Leaf("A 1000"), Leaf("B 1000")))
        assert evaluate(expr, _index()).unmet_codes == ["A 1000", "B 1000"]

    def test_nested(self):
        expr = And((Leaf("CS 1332"), Or((Leaf("CS 2050"), Leaf("MATH 2106")))))
        index = _index(("CS 1332", "completed", "B"), ("MATH 2106", "completed", "A"))
        assert evaluate(expr, index).satisfied

    def test_weak_leaf_below_recommended_grade(self):
        result = evaluate(Leaf("MATH 1551", "D"), _index(("MATH 1551", "completed", "D")))
        assert result.satisfied
        assert result.weak_leaves == (Leaf("MATH 1551", "D"),)

    def test_or_with_clean_alternative_has_no_weak_leaves(self):
        expr = Or((Leaf("A 1000"), Leaf("B 1000")))
        index = _index(("A 1000", "completed", "D"), ("B 1000", "completed", "A"))
        assert evaluate(expr, index).weak_leaves == ()

    def test_missing_grade_is_not_weak(self):
        result = evaluate(Leaf("A 1000"), _index(("A 1000", "completed")))
        assert result.satisfied
        assert result.weak_leaves == ()

    def test_no_recommended_grade(self):
        result = evaluate(Leaf("A 1000"), _index(("A 1000", "completed", "D")), recommended_grade=None)
        assert result.weak_leaves == ()

    def test_cycle_guard_raises(self):
        with pytest.raises(CyclicPrerequisiteError):
            evaluate(Leaf("CS 1331"), _index(), resolving=frozenset({"CS 1331"}))


class TestResolveCourse:
    def test_resolves_catalog_entry(self):
        prereq_map = {"CS 1331": Leaf("CS 1301"), "CS 1301": NO_PREREQUISITE}
        assert resolve_course("CS 1331", prereq_map, _index(("CS 1301", "completed", "B"))).satisfied

    def test_self_reference_raises(self):
        with pytest.raises(CyclicPrerequisiteError):
            resolve_course("CS 1331", {"CS 1331": Leaf("CS 1331")}, _index())

    def test_unknown_course(self):
        with pytest.raises(UnknownPrerequisiteError):
            resolve_course("CS 9999", {}, _index())


class TestFindIntegrityIssues:
    def test_clean_graph(self):
        prereq_map = {"A 1000": NO_PREREQUISITE, "B 1000": Leaf("A 1000")}
        assert find_integrity_issues(prereq_map) == {}

    def test_two_course_cycle(self):
        prereq_map = {
            "AA 1000": Leaf("BB 1000"),
            "BB 1000": Leaf("AA 1000"),
            "CC 1000": NO_PREREQUISITE,
        }
        issues = find_integrity_issues(prereq_map)
        assert set(issues) == {"AA 1000", "BB 1000"}
        assert all(isinstance(e, CyclicPrerequisiteError) for e in issues.values())
        assert issues["AA 1000"].message == "Prerequisite cycle: AA 1000 -> BB 1000 -> AA 1000."

    def test_dependent_of_cycle_not_flagged(self):
        prereq_map = {
            "AA 1000": Leaf("BB 1000"),
            "BB 1000": Leaf("AA 1000"),
            "CC 1000": Leaf("AA 1000"),
        }
        assert "CC 1000" not in find_integrity_issues(prereq_map)

    def test_self_loop(self):
        issues = find_integrity_issues({"AA 1000": Leaf("AA 1000")})
        assert isinstance(issues["AA 1000"], CyclicPrerequisiteError)

    def test_cycle_through_or(self):
        prereq_map = {
            "AA 1000": Or((Leaf("BB 1000"), Leaf("CC 1000"))),
            "BB 1000": Leaf("AA 1000"),
            "CC 1000": NO_PREREQUISITE,
        }
        assert set(find_integrity_issues(prereq_map)) == {"AA 1000", "BB 1000"}

    def test_unknown_reference(self):
        issues = find_integrity_issues({"AA 1000": Leaf("ZZ 9999")})
        err = issues["AA 1000"]
        assert isinstance(err, UnknownPrerequisiteError)
        assert "ZZ 9999" in err.message
        assert err.to_dict()["error_code"] == "UNKNOWN_PREREQUISITE"

    def test_self_loop_inside_larger_cycle_keeps_cycle_path(self):
        prereq_map = {
            "AA 1000": And((Leaf("AA 1000"), Leaf("BB 1000"))),
            "BB 1000": Leaf("AA 1000"),
        }
        issues = find_integrity_issues(prereq_map)
        assert issues["AA 1000"].message == "Prerequisite cycle: AA 1000 -> BB 1000 -> AA 1000."

    def test_long_chain_is_clean(self):
        depth = 5000
        prereq_map = {"C 0": NO_PREREQUISITE}
        for i in range(1, depth):
            prereq_map[f"C {i}"] = Leaf(f"C {i - 1}")
        assert find_integrity_issues(prereq_map) == {}

    def test_long_chain_closing_into_cycle(self):
        depth = 5000
        prereq_map = {f"C {i}": Leaf(f"C {i - 1}") for i in range(1, depth)}
        prereq_map["C 0"] = Leaf(f"C {depth - 1}")
        issues = find_integrity_issues(prereq_map)
        assert len(issues) == depth
        assert all(isinstance(e, CyclicPrerequisiteError) for e in issues.values())


class TestPrerequisiteGraph:
    def test_edges_point_at_prerequisites(self):
        G = prerequisite_graph({
            "AA 1000": NO_PREREQUISITE,
            "BB 1000": Or((Leaf("AA 1000"), Leaf("ZZ 9999"))),
        })
        assert set(G.nodes) == {"AA 1000", "BB 1000"}
        assert list(G.edges) == [("BB 1000", "AA 1000")]
