"""
Tunable recommendation policy.

The point values, thresholds and keyword lists below were tuned by hand rather
than derived from a documented advising policy, so every one of them can be
overridden from a JSON file (SCORING_POLICY_PATH) or, for the point values,
from individual environment variables.
"""

import json
import os
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType

# Category precedence, highest first. A course gets exactly one category: the
# first of these it qualifies for.
CATEGORY_PRECEDENCE = (
    "prerequisite-ready",
    "major-requirement",
    "foundation",
    "thread-related",
    "other",
)

# Thread/track keywords matched against course titles and descriptions. A
# declared track picks up every entry whose key appears in its name.
DEFAULT_TRACK_KEYWORDS = MappingProxyType({
    "intelligence": ("intelligence", "machine", "learning", "vision", "robotics"),
    "ai": ("intelligence", "machine", "learning", "vision", "robotics"),
    "systems": ("systems", "operating", "network", "distributed"),
    "architecture": ("systems", "operating", "network", "distributed"),
    "theory": ("algorithm", "complexity", "theory", "discrete"),
    "media": ("graphics", "media", "animation", "audio"),
    "people": ("human", "interaction", "design", "psychology"),
    "information": ("database", "information", "data", "security"),
    "devices": ("embedded", "mobile", "devices", "sensor"),
    "modeling": ("simulation", "modeling", "numerical", "scientific"),
})

# Environment overrides for the integer policy fields.
_ENV_OVERRIDES = {
    "SCORE_FULLY_ELIGIBLE": "fully_eligible",
    "SCORE_SOFT_ELIGIBLE": "soft_eligible",
    "SCORE_MISSING_PREREQ": "missing_prerequisite",
    "SCORE_MAJOR_REQUIREMENT": "major_requirement",
    "SCORE_TRACK_MATCH": "track_match",
    "SCORE_FOUNDATION": "foundation",
    "SCORE_EARLY_HARD_COURSE": "early_hard_course",
    "PRIORITY_HIGH_THRESHOLD": "high_threshold",
    "PRIORITY_MEDIUM_THRESHOLD": "medium_threshold",
}


@dataclass(frozen=True)
class ScoringPolicy:
    fully_eligible: int = 30
    soft_eligible: int = 20
    missing_prerequisite: int = -5
    major_requirement: int = 25
    track_match: int = 15
    foundation: int = 10
    early_hard_course: int = -10

    high_threshold: int = 40
    medium_threshold: int = 15

    hard_difficulty: int = 4
    early_terms: int = 2
    recommended_grade: str = "C"

    track_keywords: MappingProxyType = field(default_factory=lambda: DEFAULT_TRACK_KEYWORDS)
    category_precedence: tuple = CATEGORY_PRECEDENCE

    def priority_for(self, score: int) -> str:
        if score >= self.high_threshold:
            return "high"
        if score >= self.medium_threshold:
            return "medium"
        return "low"


DEFAULT_POLICY = ScoringPolicy()


def _coerce_field(name: str, value):
    if name == "track_keywords":
        if not isinstance(value, dict):
            raise ValueError("track_keywords must be an object of keyword lists.")
        return MappingProxyType({
            str(k).strip().lower(): tuple(str(w).strip().lower() for w in v)
            for k, v in value.items()
        })
    if name == "category_precedence":
        order = tuple(str(c).strip().lower() for c in value)
        unknown = sorted(set(order) - set(CATEGORY_PRECEDENCE))
        if unknown:
            raise ValueError(f"Unknown recommendation categories: {', '.join(unknown)}")
        if "other" not in order:
            order = order + ("other",)
        return order
    if name == "recommended_grade":
        return str(value).strip().upper()
    return int(value)


def policy_from_dict(overrides: dict, base: ScoringPolicy = DEFAULT_POLICY) -> ScoringPolicy:
    known = {f.name for f in fields(ScoringPolicy)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown scoring policy field(s): {', '.join(unknown)}")
    return replace(base, **{k: _coerce_field(k, v) for k, v in overrides.items()})


def load_policy(environ=None) -> ScoringPolicy:
    """
    Build the scoring policy from SCORING_POLICY_PATH (JSON object of field
    overrides) and then the SCORE_* / PRIORITY_* environment variables.
    Malformed values are reported and ignored.
    """
    env = os.environ if environ is None else environ
    policy = DEFAULT_POLICY

    path = env.get("SCORING_POLICY_PATH")
    if path:
        try:
            with open(path, encoding="utf-8") as f:
                policy = policy_from_dict(json.load(f), policy)
            print(f"[INFO] Scoring policy loaded from {path}")
        except (OSError, ValueError, TypeError) as exc:
            print(f"[WARN] Ignoring scoring policy file {path}: {exc}")

    env_values = {}
    for var, field_name in _ENV_OVERRIDES.items():
        raw = env.get(var, "")
        if raw == "":
            continue
        try:
            env_values[field_name] = int(raw)
        except (TypeError, ValueError):
            print(f"[WARN] Ignoring {var}={raw!r}: not an integer")
    if env_values:
        policy = replace(policy, **env_values)
    return policy
