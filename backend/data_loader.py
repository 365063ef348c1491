import os
import time
from types import MappingProxyType

import pandas as pd

from catalog import OFFERING_TERMS, Catalog, CatalogSnapshot, Course
from normalizer import normalize_code
from prereq_parser import NO_PREREQUISITE, PrerequisiteParseError, parse_prereqs

_BOOL_TRUTHY = {"true", "1", "yes", "y"}

COURSES_FILE = "courses.csv"
PROGRAMS_FILE = "programs.csv"

REQUIRED_COURSE_COLUMNS = ("course_code",)


def _safe_bool_col(df: pd.DataFrame, col: str, default: bool = False) -> pd.DataFrame:
    """Normalize a boolean column to Python bool regardless of Excel/CSV format.

    Handles: Python bool, Excel int/float (1/0), and string variants
    (TRUE/FALSE, true/false, 1/0, yes/no, y/n). NaN → default.
    A missing column is added filled with default.
    """
    def _coerce(x):
        if pd.isna(x):
            return default
        if isinstance(x, bool):
            return x
        if isinstance(x, (int, float)):
            return bool(x)
        return str(x).strip().lower() in _BOOL_TRUTHY

    if col in df.columns:
        df[col] = df[col].apply(_coerce)
    else:
        df[col] = default
    return df


def _clean_str(val) -> str:
    if val is None or (not isinstance(val, (list, dict)) and pd.isna(val)):
        return ""
    return str(val).strip()


def _split_list(val) -> list[str]:
    s = _clean_str(val)
    if not s or s.lower() in ("none", "n/a"):
        return []
    return [p.strip() for p in s.replace(",", ";").split(";") if p.strip()]


def _int_or_default(val, default: int) -> int:
    s = _clean_str(val)
    if not s:
        return default
    return int(float(s))


def _read_tables(data_path: str) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Read the courses and programs tables from a CSV directory or a workbook."""
    if os.path.isdir(data_path):
        courses_path = os.path.join(data_path, COURSES_FILE)
        if not os.path.isfile(courses_path):
            raise FileNotFoundError(courses_path)
        courses_df = pd.read_csv(courses_path, dtype=str)
        programs_path = os.path.join(data_path, PROGRAMS_FILE)
        if os.path.isfile(programs_path):
            programs_df = pd.read_csv(programs_path, dtype=str)
        else:
            programs_df = pd.DataFrame(columns=["major_id", "course_code"])
        return courses_df, programs_df

    if not os.path.isfile(data_path):
        raise FileNotFoundError(data_path)
    xl = pd.ExcelFile(data_path)
    courses_df = xl.parse("courses", dtype=str)
    if "programs" in xl.sheet_names:
        programs_df = xl.parse("programs", dtype=str)
    else:
        programs_df = pd.DataFrame(columns=["major_id", "course_code"])
    return courses_df, programs_df


def _normalize_courses_df(courses_df: pd.DataFrame) -> pd.DataFrame:
    courses_df = courses_df.copy()

    # Backward/forward compatibility for column naming.
    rename_map = {}
    if "title" not in courses_df.columns and "course_name" in courses_df.columns:
        rename_map["course_name"] = "title"
    if "prerequisites" not in courses_df.columns and "prereq_hard" in courses_df.columns:
        rename_map["prereq_hard"] = "prerequisites"
    if rename_map:
        courses_df = courses_df.rename(columns=rename_map)

    missing = [c for c in REQUIRED_COURSE_COLUMNS if c not in courses_df.columns]
    if missing:
        raise ValueError(f"courses table is missing required column(s): {missing}")

    for term in OFFERING_TERMS:
        courses_df = _safe_bool_col(courses_df, f"offered_{term}", default=True)

    for col in ("title", "description", "department", "college", "tracks",
                "prerequisites", "corequisites", "course_type", "credits", "difficulty"):
        if col not in courses_df.columns:
            courses_df[col] = ""

    courses_df["course_code"] = courses_df["course_code"].map(_clean_str)
    courses_df = courses_df[courses_df["course_code"] != ""]
    return courses_df


def _course_from_row(row: pd.Series, prerequisites) -> Course:
    return Course(
        code=row["course_code"],
        title=_clean_str(row.get("title")),
        credits=_int_or_default(row.get("credits"), 3),
        offerings=frozenset(t for t in OFFERING_TERMS if row.get(f"offered_{t}")),
        difficulty=_int_or_default(row.get("difficulty"), 3),
        department=_clean_str(row.get("department")),
        college=_clean_str(row.get("college")),
        tracks=tuple(_split_list(row.get("tracks"))),
        prerequisites=prerequisites,
        corequisites=tuple(_split_list(row.get("corequisites"))),
        description=_clean_str(row.get("description")),
        course_type=_clean_str(row.get("course_type")),
    )


def build_catalog(courses_df: pd.DataFrame) -> Catalog:
    """
    Build a Catalog from a courses table.

    Unparseable prerequisites do not stop the load: the course is kept with
    no prerequisites and flagged, so it shows up as unavailable instead of
    eligible. Rows with invalid values or a duplicated code are skipped.
    """
    courses_df = _normalize_courses_df(courses_df)
    courses: list[Course] = []
    parse_issues: dict[str, PrerequisiteParseError] = {}
    seen: set[str] = set()
    skipped: list[str] = []

    for _, row in courses_df.iterrows():
        code = normalize_code(row["course_code"])
        if code in seen:
            skipped.append(f"{code} (duplicate)")
            continue

        try:
            prerequisites = parse_prereqs(row.get("prerequisites"))
        except PrerequisiteParseError as exc:
            parse_issues[code] = exc.for_course(code)
            prerequisites = NO_PREREQUISITE

        try:
            course = _course_from_row(row, prerequisites)
        except (TypeError, ValueError) as exc:
            skipped.append(f"{code} ({exc})")
            parse_issues.pop(code, None)
            continue

        seen.add(code)
        courses.append(course)

    if skipped:
        print(f"[WARN] {len(skipped)} course row(s) skipped: {skipped}")

    return Catalog(courses, integrity_issues=parse_issues)


def build_programs(programs_df: pd.DataFrame) -> MappingProxyType:
    """programs table (major_id, course_code) → {MAJOR_ID: frozenset(codes)}."""
    if programs_df is None or len(programs_df) == 0:
        return MappingProxyType({})
    if "major_id" not in programs_df.columns and "program_id" in programs_df.columns:
        programs_df = programs_df.rename(columns={"program_id": "major_id"})
    missing = [c for c in ("major_id", "course_code") if c not in programs_df.columns]
    if missing:
        raise ValueError(f"programs table is missing required column(s): {missing}")

    programs: dict[str, set] = {}
    for _, row in programs_df.iterrows():
        major = _clean_str(row["major_id"]).upper()
        code = normalize_code(_clean_str(row["course_code"]))
        if not major or not code:
            continue
        programs.setdefault(major, set()).add(code)
    return MappingProxyType({k: frozenset(v) for k, v in programs.items()})


def load_data(data_path: str, now: float | None = None) -> CatalogSnapshot:
    """Load and parse the catalog data. Raises on file/schema errors."""
    courses_df, programs_df = _read_tables(data_path)
    catalog = build_catalog(courses_df)
    programs = build_programs(programs_df)

    # ── Startup data integrity checks ──────────────────────────────────────
    issues = catalog.integrity_issues
    if issues:
        by_kind: dict[str, list[str]] = {}
        for code, err in issues.items():
            by_kind.setdefault(err.error_code, []).append(code)
        for kind, codes in sorted(by_kind.items()):
            print(f"[WARN] {len(codes)} course(s) flagged {kind} (unavailable for recommendation): {sorted(codes)}")

    orphaned = sorted(
        code for codes in programs.values() for code in codes if code not in catalog
    )
    if orphaned:
        print(f"[WARN] {len(orphaned)} course(s) in programs not found in courses table: {orphaned}")

    return CatalogSnapshot(
        catalog=catalog,
        fetched_at=time.time() if now is None else now,
        programs=programs,
        source=str(data_path),
    )
