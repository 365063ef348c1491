from catalog import Catalog
from prereq_parser import prereq_course_codes
from student_record import CourseStatus, StatusIndex


def build_reverse_prereq_map(catalog: Catalog) -> dict[str, list[str]]:
    """
    Builds a reverse prerequisite map: for each course, which courses directly
    list it as a prerequisite (in any AND/OR position).

    Returns: {"CS 1331": ["CS 1332", "CS 2340"], ...}

    Only direct prerequisites (one level deep). No transitive graph traversal.
    Dependents are listed in catalog order.
    """
    reverse: dict[str, list[str]] = {}

    for course in catalog:
        for prereq_code in prereq_course_codes(course.prerequisites):
            reverse.setdefault(prereq_code, [])
            if course.code not in reverse[prereq_code]:
                reverse[prereq_code].append(course.code)

    return reverse


def compute_chain_depths(
    reverse_map: dict[str, list[str]],
) -> dict[str, int]:
    """
    Compute the longest downstream prerequisite chain depth for every course.

    A course with no downstream dependents has depth 0.
    CS 1301 -> CS 1331 -> CS 1332 -> CS 3510 gives CS 1301 depth 3.

    O(V+E) with memoization. Cyclic courses stop the walk instead of looping.
    """
    memo: dict[str, int] = {}
    in_stack: set[str] = set()

    def _depth(course: str) -> int:
        if course in memo:
            return memo[course]
        if course in in_stack:
            return 0  # cycle guard
        in_stack.add(course)
        children = reverse_map.get(course, [])
        result = (1 + max(_depth(c) for c in children)) if children else 0
        in_stack.discard(course)
        memo[course] = result
        return result

    for course in reverse_map:
        _depth(course)

    return memo


def get_direct_unlocks(
    course_code: str,
    reverse_map: dict[str, list[str]],
    limit: int = 3,
) -> list[str]:
    """
    Returns up to `limit` courses directly unlocked by completing `course_code`.
    A course is "unlocked" if it lists `course_code` as a direct prerequisite.
    """
    return reverse_map.get(course_code, [])[:limit]


def get_blocking_warnings(
    candidate_codes: list[str],
    reverse_map: dict[str, list[str]],
    status_index: StatusIndex,
    threshold: int = 2,
) -> list[str]:
    """
    For each candidate course, counts how many courses the student has not
    started that list it as a direct prerequisite.

    Returns warning strings for candidates blocking >= threshold such courses.

    Example: "Completing CS 1331 would unlock 4 courses you can't yet take."
    """
    started = {
        code for code, rec in status_index.items()
        if rec.status in (CourseStatus.COMPLETED, CourseStatus.IN_PROGRESS)
    }

    warnings: list[str] = []
    for code in candidate_codes:
        if code in started:
            continue
        blocked = [c for c in reverse_map.get(code, []) if c not in started]
        if len(blocked) >= threshold:
            warnings.append(
                f"Completing {code} would unlock "
                f"{len(blocked)} courses you can't yet take."
            )

    return warnings
