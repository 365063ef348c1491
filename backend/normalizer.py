import re

# Matches: DEPT NNNN, DEPT-NNNN, DEPTNNN, cs1331, MATH 1551L, etc.
CANONICAL = re.compile(r'^([A-Za-z]{2,6})\s*[-]?\s*(\d{3,4}[A-Za-z]?)$')
_WHITESPACE = re.compile(r'\s+')


def normalize_code(raw: str) -> str | None:
    """
    Normalizes a course code to a comparison-safe key.

    Codes shaped like a department + number are canonicalized to 'DEPT NNNN'
    ('cs1331', 'CS-1331', ' cs 1331 ' -> 'CS 1331'). Anything else is treated as
    an opaque identifier: trimmed, whitespace collapsed, upper-cased.
    Returns None for empty input.
    """
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    m = CANONICAL.match(s)
    if m:
        dept = m.group(1).upper()
        num = m.group(2).upper()
        return f"{dept} {num}"
    return _WHITESPACE.sub(" ", s).upper()


def split_code(code: str) -> tuple[str, str]:
    """'CS 1331' -> ('CS', '1331'). Opaque codes split on the first space."""
    normalized = normalize_code(code) or ""
    dept, _, number = normalized.partition(" ")
    return dept, number


def course_number_tier(code: str) -> int | None:
    """
    Leading digit of the course number: 'CS 1331' -> 1, 'MATH 2551' -> 2.
    Returns None when the code carries no number.
    """
    _, number = split_code(code)
    m = re.match(r'(\d)', number)
    if not m:
        return None
    return int(m.group(1))


def normalize_input(raw_str: str, catalog_codes: set) -> dict:
    """
    Splits comma/newline/semicolon-separated input and normalizes each code.

    Returns:
      {
        "valid":          ["CS 1331", "MATH 1551"],   # normalized + found in catalog
        "invalid":        ["???"],                    # could not be normalized
        "not_in_catalog": ["CS 9999"]                 # valid format but unknown course
      }
    """
    if not raw_str or not raw_str.strip():
        return {"valid": [], "invalid": [], "not_in_catalog": []}

    tokens = re.split(r'[,\n;]+', raw_str)
    valid = []
    invalid = []
    not_in_catalog = []
    seen: set[str] = set()

    for token in tokens:
        token = token.strip()
        if not token:
            continue
        normalized = normalize_code(token)
        if normalized is None or not CANONICAL.match(normalized):
            if token not in seen:
                invalid.append(token)
                seen.add(token)
        elif normalized in seen:
            pass  # deduplicate silently
        elif normalized not in catalog_codes:
            not_in_catalog.append(normalized)
            seen.add(normalized)
        else:
            valid.append(normalized)
            seen.add(normalized)

    return {"valid": valid, "invalid": invalid, "not_in_catalog": not_in_catalog}
