"""
Catalog data-integrity validator.

Checks the rules a catalog must pass before it is served: no prerequisite
cycles, no references to unknown courses, and programs that only list catalog
courses. Unparseable prerequisite text and courses with no offering term are
reported as warnings (manual review). Importable for tests and runnable as a
standalone CLI.

Usage:
    python scripts/validate_catalog.py
    python scripts/validate_catalog.py --path path/to/data_dir_or_workbook.xlsx
    python scripts/validate_catalog.py --strict
"""

import argparse
import os
import sys

# Add backend/ to path so the catalog modules import directly
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend"))

from catalog import CatalogSnapshot  # noqa: E402
from evaluator import CyclicPrerequisiteError, UnknownPrerequisiteError  # noqa: E402
from prereq_parser import PrerequisiteParseError  # noqa: E402


# ── Validation result ─────────────────────────────────────────────────────────

class ValidationResult:
    """Collects errors and warnings for a single catalog validation run."""

    def __init__(self, source: str):
        self.source = source
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def error(self, msg: str) -> None:
        self.errors.append(msg)

    def warn(self, msg: str) -> None:
        self.warnings.append(msg)

    @property
    def passed(self) -> bool:
        return len(self.errors) == 0

    def summary(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        lines = [f"[{status}] Catalog '{self.source}'"]
        for e in self.errors:
            lines.append(f"  [ERROR] {e}")
        for w in self.warnings:
            lines.append(f"  [WARN]  {w}")
        if self.passed and not self.warnings:
            lines.append("  All checks passed.")
        return "\n".join(lines)


# ── Individual checks ─────────────────────────────────────────────────────────

def check_not_empty(snapshot: CatalogSnapshot, result: ValidationResult) -> None:
    if len(snapshot.catalog) == 0:
        result.error("Catalog has no courses.")


def check_prerequisite_cycles(snapshot: CatalogSnapshot, result: ValidationResult) -> None:
    """Every course on a cycle is an error; the message carries the cycle path."""
    for code, err in sorted(snapshot.catalog.integrity_issues.items()):
        if isinstance(err, CyclicPrerequisiteError):
            result.error(f"{code}: {err.message}")


def check_unknown_prerequisites(snapshot: CatalogSnapshot, result: ValidationResult) -> None:
    for code, err in sorted(snapshot.catalog.integrity_issues.items()):
        if isinstance(err, UnknownPrerequisiteError):
            result.error(err.message)


def check_unparseable_prerequisites(snapshot: CatalogSnapshot, result: ValidationResult) -> None:
    """Text outside the AND/OR grammar needs manual review; not a publish blocker."""
    for code, err in sorted(snapshot.catalog.integrity_issues.items()):
        if isinstance(err, PrerequisiteParseError):
            result.warn(f"{code}: {err.message}")


def check_corequisite_references(snapshot: CatalogSnapshot, result: ValidationResult) -> None:
    catalog = snapshot.catalog
    for course in catalog:
        unknown = [c for c in course.corequisites if c not in catalog]
        if unknown:
            result.error(f"{course.code} lists corequisite(s) not in the catalog: {unknown}")


def check_offerings(snapshot: CatalogSnapshot, result: ValidationResult) -> None:
    never = sorted(c.code for c in snapshot.catalog if not c.offerings)
    if never:
        result.warn(f"{len(never)} course(s) are not offered in any term: {never}")


def check_program_references(snapshot: CatalogSnapshot, result: ValidationResult) -> None:
    for major_id, codes in sorted(snapshot.programs.items()):
        orphaned = sorted(c for c in codes if c not in snapshot.catalog)
        if orphaned:
            result.error(f"Program '{major_id}' lists course(s) not in the catalog: {orphaned}")


# ── Main validate function ────────────────────────────────────────────────────

def validate_catalog(snapshot: CatalogSnapshot) -> ValidationResult:
    """Run all integrity checks for a loaded catalog. Returns a ValidationResult."""
    result = ValidationResult(snapshot.source or "<in-memory>")

    check_not_empty(snapshot, result)
    check_prerequisite_cycles(snapshot, result)
    check_unknown_prerequisites(snapshot, result)
    check_unparseable_prerequisites(snapshot, result)
    check_corequisite_references(snapshot, result)
    check_offerings(snapshot, result)
    check_program_references(snapshot, result)

    return result


# ── CLI entry point ───────────────────────────────────────────────────────────

def main(args=None):
    parser = argparse.ArgumentParser(
        description="Validate catalog data integrity before serving it.",
    )
    parser.add_argument(
        "--path", type=str,
        default=os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "data"),
        help="Data directory (courses.csv, programs.csv) or .xlsx workbook.",
    )
    parser.add_argument(
        "--strict", action="store_true",
        help="Treat warnings as failures.",
    )
    opts = parser.parse_args(args)

    from data_loader import load_data

    try:
        snapshot = load_data(opts.path)
    except FileNotFoundError as exc:
        print(f"[FATAL] Data file not found: {exc}", file=sys.stderr)
        return 2

    result = validate_catalog(snapshot)
    print(result.summary())
    if not result.passed:
        return 1
    if opts.strict and result.warnings:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
