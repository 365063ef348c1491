import os
import sys
import time
import threading
import hashlib
import json
from collections import OrderedDict, defaultdict

# Ensure backend/ is on sys.path so sibling imports work
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv

from catalog import refresh_snapshot
from normalizer import normalize_code
from prereq_parser import describe_prereqs, prereqs_to_json
from policy import load_policy
from validators import (
    RequestValidationError,
    find_inconsistent_records,
    parse_int_field,
    parse_semester_field,
    parse_status_index,
    parse_string_list,
    require_json_object,
    validate_priority_filter,
)
from unlocks import build_reverse_prereq_map, compute_chain_depths, get_direct_unlocks
from eligibility import check_can_add, validate_plan
from data_loader import load_data
from scoring import StudentProfile
from semester_recommender import RecommendationOptions, build_recommendation_report
from llm_recommender import enhance_with_result

load_dotenv()

app = Flask(__name__)

API_VERSION = "1.0.0"

# ── Paths ─────────────────────────────────────────────────────────────────────
BACKEND_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BACKEND_DIR)
_DEFAULT_DATA_PATH = os.path.join(PROJECT_ROOT, "data")
_env_data_path = os.environ.get("DATA_PATH")
if not _env_data_path:
    DATA_PATH = _DEFAULT_DATA_PATH
elif not os.path.isabs(_env_data_path):
    DATA_PATH = os.path.join(PROJECT_ROOT, _env_data_path)
else:
    DATA_PATH = _env_data_path
_data_lock = threading.Lock()
_data_mtime = None

# -- Rate limiting (manual token bucket, 10 req/min per IP) ----------------
_RATE_LIMIT_MAX = 10
_RATE_LIMIT_WINDOW = 60  # seconds
_rate_limit_lock = threading.Lock()
_rate_limit_tracker: dict[str, list[float]] = defaultdict(list)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, float(raw))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, int(raw))
    except (TypeError, ValueError):
        return default


_SLOW_REQUEST_LOG_MS = _env_float("SLOW_REQUEST_LOG_MS", 750.0, minimum=0.0)
_REQUEST_CACHE_SIZE = _env_int("REQUEST_CACHE_SIZE", 128, minimum=1)
# 0 disables time-based expiry; file changes still trigger a reload.
_CATALOG_TTL_SECONDS = _env_float("CATALOG_TTL_SECONDS", 3600.0, minimum=0.0)
_ENHANCER_TIMEOUT_SECONDS = _env_float("ENHANCER_TIMEOUT_SECONDS", 10.0, minimum=0.1)

_policy = load_policy()


class _LruResponseCache:
    """Thread-safe bounded in-memory cache for JSON-serializable responses."""

    def __init__(self, max_size: int):
        self.max_size = max(1, int(max_size))
        self._lock = threading.Lock()
        self._items: OrderedDict[str, dict] = OrderedDict()

    def get(self, key: str):
        with self._lock:
            if key not in self._items:
                return None
            value = self._items.pop(key)
            self._items[key] = value
            return value

    def set(self, key: str, value: dict) -> None:
        with self._lock:
            if key in self._items:
                self._items.pop(key)
            self._items[key] = value
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


_recommend_response_cache = _LruResponseCache(_REQUEST_CACHE_SIZE)
_validate_response_cache = _LruResponseCache(_REQUEST_CACHE_SIZE)


def _cache_enabled() -> bool:
    return not app.config.get("TESTING", False)


def _stable_payload_hash(payload) -> str:
    normalized = payload if payload is not None else {}
    encoded = json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def _data_version_tag() -> str:
    if _snapshot is None:
        return "none"
    return f"{_snapshot.fetched_at}:{_data_mtime}"


def _request_cache_key(prefix: str, payload) -> str:
    return f"{prefix}:{_data_version_tag()}:{_stable_payload_hash(payload)}"


def _clear_request_caches() -> None:
    _recommend_response_cache.clear()
    _validate_response_cache.clear()


def _check_rate_limit(ip: str) -> bool:
    """Return True if request is allowed, False if rate-limited."""
    now = time.time()
    with _rate_limit_lock:
        timestamps = _rate_limit_tracker[ip]
        _rate_limit_tracker[ip] = [t for t in timestamps if now - t < _RATE_LIMIT_WINDOW]
        if len(_rate_limit_tracker[ip]) >= _RATE_LIMIT_MAX:
            return False
        _rate_limit_tracker[ip].append(now)
        return True


def _data_file_mtime(path: str):
    try:
        if os.path.isdir(path):
            mtimes = [
                os.path.getmtime(os.path.join(path, f))
                for f in os.listdir(path)
                if f.endswith(".csv")
            ]
            return max(mtimes) if mtimes else None
        return os.path.getmtime(path)
    except OSError:
        return None


def _error_response(error_code: str, message: str, status: int = 400, details: dict | None = None):
    error = {"error_code": error_code, "message": message}
    if details:
        error["details"] = details
    return jsonify({"mode": "error", "error": error}), status


# ── Startup data load ──────────────────────────────────────────────────────────
_snapshot = None
try:
    _snapshot = load_data(DATA_PATH)
    _data_mtime = _data_file_mtime(DATA_PATH)
    print(f"[OK] Loaded {len(_snapshot.catalog)} courses from {DATA_PATH}")
except FileNotFoundError:
    # If DATA_PATH env var is stale, fall back to the repo data directory.
    if DATA_PATH != _DEFAULT_DATA_PATH and os.path.exists(_DEFAULT_DATA_PATH):
        print(
            f"[WARN] DATA_PATH not found ({DATA_PATH}); "
            f"falling back to default data ({_DEFAULT_DATA_PATH}).",
            file=sys.stderr,
        )
        DATA_PATH = _DEFAULT_DATA_PATH
        _snapshot = load_data(DATA_PATH)
        _data_mtime = _data_file_mtime(DATA_PATH)
        print(f"[OK] Loaded {len(_snapshot.catalog)} courses from {DATA_PATH}")
    else:
        print(f"[FATAL] Data file not found: {DATA_PATH}", file=sys.stderr)
        sys.exit(1)
except Exception as exc:
    print(f"[FATAL] Failed to load data: {exc}", file=sys.stderr)
    sys.exit(1)

_reverse_map = build_reverse_prereq_map(_snapshot.catalog)
_chain_depths = compute_chain_depths(_reverse_map)


def _mtime_advanced(mtime) -> bool:
    if mtime is None:
        return False
    return _data_mtime is None or mtime > _data_mtime


def _reload_data_if_changed(force: bool = False) -> bool:
    """
    Swap in a new catalog snapshot when DATA_PATH changes on disk or the
    current snapshot has outlived CATALOG_TTL_SECONDS.

    Requests already holding the old snapshot keep using it.
    Returns True when a reload occurred, else False.
    """
    global _snapshot, _reverse_map, _chain_depths, _data_mtime

    candidate_mtime = _data_file_mtime(DATA_PATH)
    if not force and not _mtime_advanced(candidate_mtime):
        if _snapshot is not None and not _snapshot.is_expired(time.time(), _CATALOG_TTL_SECONDS):
            return False

    with _data_lock:
        latest_mtime = _data_file_mtime(DATA_PATH)
        current = None if force or _mtime_advanced(latest_mtime) else _snapshot

        try:
            new_snapshot = refresh_snapshot(
                current,
                lambda: load_data(DATA_PATH),
                time.time(),
                _CATALOG_TTL_SECONDS,
            )
            if new_snapshot is _snapshot:
                return False
            new_reverse_map = build_reverse_prereq_map(new_snapshot.catalog)
            new_chain_depths = compute_chain_depths(new_reverse_map)
        except Exception as exc:
            print(f"[WARN] Data reload failed; keeping previous dataset: {exc}", file=sys.stderr)
            return False

        _snapshot = new_snapshot
        _reverse_map = new_reverse_map
        _chain_depths = new_chain_depths
        _data_mtime = latest_mtime if latest_mtime is not None else candidate_mtime
        _clear_request_caches()
        print(f"[OK] Reloaded {len(new_snapshot.catalog)} courses from {DATA_PATH}")
        return True


def _refresh_data_if_needed() -> None:
    try:
        _reload_data_if_changed()
    except Exception as exc:
        print(f"[WARN] Data reload check failed: {exc}", file=sys.stderr)


# -- Security headers ------------------------------------------------------
@app.before_request
def _start_request_timer():
    g._request_start_time = time.perf_counter()


@app.after_request
def _add_security_headers(response):
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "same-origin"

    started = getattr(g, "_request_start_time", None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000.0
        if duration_ms >= _SLOW_REQUEST_LOG_MS:
            endpoint = request.endpoint or "unknown"
            print(
                f"[SLOW] {request.method} {request.path} "
                f"endpoint={endpoint} status={response.status_code} duration_ms={duration_ms:.1f}"
            )
    return response


# ── Error handlers ─────────────────────────────────────────────────────────────
@app.errorhandler(RequestValidationError)
def handle_request_validation_error(e):
    return _error_response(e.error_code, e.message, 400, e.details)


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return _error_response(e.name.upper().replace(" ", "_"), e.description, e.code)
    print(f"[WARN] Unhandled error on {request.method} {request.path}: {e}", file=sys.stderr)
    return _error_response("SERVER_ERROR", "An unexpected server error occurred.", 500)


# -- Health endpoint --------------------------------------------------------
@app.route("/health", methods=["GET"])
def health_endpoint():
    snapshot = _snapshot
    return jsonify({
        "status": "ok",
        "version": API_VERSION,
        "course_count": len(snapshot.catalog),
        "unavailable_count": len(snapshot.catalog.integrity_issues),
        "catalog_age_seconds": round(snapshot.age(time.time()), 1),
    })


# ── Routes ─────────────────────────────────────────────────────────────────────
def _course_summary(course) -> dict:
    return {
        "course_code": course.code,
        "course_name": course.title,
        "credits": course.credits,
        "department": course.department,
        "difficulty": course.difficulty,
        "offered": [t for t in ("fall", "spring", "summer") if course.is_offered(t)],
    }


@app.route("/courses", methods=["GET"])
def get_courses():
    _refresh_data_if_needed()
    catalog = _snapshot.catalog
    return jsonify({"courses": [_course_summary(c) for c in catalog]})


@app.route("/courses/<path:course_code>", methods=["GET"])
def get_course_detail(course_code):
    _refresh_data_if_needed()
    snapshot, reverse_map, chain_depths = _snapshot, _reverse_map, _chain_depths
    code = normalize_code(course_code) or course_code
    course = snapshot.catalog.get(code)
    if course is None:
        return _error_response("UNKNOWN_COURSE", f"{code} is not in the course catalog.", 404)

    issue = snapshot.catalog.integrity_issue(code)
    payload = _course_summary(course)
    payload.update({
        "description": course.description,
        "college": course.college,
        "tracks": list(course.tracks),
        "course_type": course.course_type,
        "prerequisites": describe_prereqs(course.prerequisites),
        "prerequisites_tree": prereqs_to_json(course.prerequisites),
        "corequisites": list(course.corequisites),
        "unlocks": get_direct_unlocks(code, reverse_map, limit=10),
        "chain_depth": chain_depths.get(code, 0),
        "unavailable": issue.to_dict() if issue is not None else None,
    })
    return jsonify(payload)


@app.route("/validate", methods=["POST"])
def validate_endpoint():
    """Can this course be added to the target semester? Does not run recommendations."""
    _refresh_data_if_needed()
    snapshot = _snapshot

    body = require_json_object(request.get_json(force=True, silent=True))
    cache_key = _request_cache_key("validate", body)
    if _cache_enabled():
        cached = _validate_response_cache.get(cache_key)
        if cached is not None:
            return jsonify(cached)

    course_raw = str(body.get("course_code") or "").strip()
    if not course_raw:
        raise RequestValidationError("course_code is required.")
    target = parse_semester_field(body, "target_semester")
    current = parse_semester_field(body, "current_semester", required=False)
    status_index = parse_status_index(body, snapshot.catalog.codes)

    result = check_can_add(course_raw, snapshot.catalog, status_index, target, _policy, current)
    response_payload = {"mode": "validate", **result}
    if _cache_enabled():
        _validate_response_cache.set(cache_key, response_payload)
    return jsonify(response_payload)


@app.route("/validate-plan", methods=["POST"])
def validate_plan_endpoint():
    _refresh_data_if_needed()
    snapshot = _snapshot

    body = require_json_object(request.get_json(force=True, silent=True))
    codes = parse_string_list(body, "course_codes")
    if not codes:
        raise RequestValidationError("course_codes must list at least one course.")
    target = parse_semester_field(body, "target_semester")
    status_index = parse_status_index(body, snapshot.catalog.codes)

    result = validate_plan(codes, snapshot.catalog, status_index, target, _policy)
    return jsonify({"mode": "validate_plan", **result})


@app.route("/validate-records", methods=["POST"])
def validate_records_endpoint():
    """Flags completed courses whose required prerequisites are not completed."""
    _refresh_data_if_needed()
    snapshot = _snapshot

    body = require_json_object(request.get_json(force=True, silent=True))
    status_index = parse_status_index(body, snapshot.catalog.codes)
    return jsonify({
        "inconsistencies": find_inconsistent_records(status_index, snapshot.catalog.prereq_map),
    })


def _build_profile(body: dict, snapshot) -> StudentProfile:
    major = str(body.get("major") or "").strip().upper()
    if major and snapshot.programs and major not in snapshot.programs:
        raise RequestValidationError(
            f"Unknown major '{major}'.",
            error_code="UNKNOWN_MAJOR",
            details={"known_majors": sorted(snapshot.programs)},
        )
    return StudentProfile(
        major=major,
        tracks=tuple(parse_string_list(body, "tracks")),
        minors=tuple(parse_string_list(body, "minors")),
        major_required=snapshot.major_requirements(major),
        start_semester=parse_semester_field(body, "start_semester", required=False),
    )


@app.route("/recommend", methods=["POST"])
def recommend():
    client_ip = request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip()
    if not app.config.get("TESTING") and not _check_rate_limit(client_ip):
        return _error_response(
            "RATE_LIMITED", "Too many requests. Please wait before submitting again.", 429
        )
    _refresh_data_if_needed()
    snapshot = _snapshot

    body = require_json_object(request.get_json(force=True, silent=True))
    cache_key = _request_cache_key("recommend", body)
    if _cache_enabled():
        cached = _recommend_response_cache.get(cache_key)
        if cached is not None:
            return jsonify(cached)

    target = parse_semester_field(body, "target_semester")
    options = RecommendationOptions(
        target_semester=target,
        max_courses=parse_int_field(body, "max_courses", 10, 1, 50),
        per_category=parse_int_field(body, "per_category", 6, 1, 20),
        priority_filter=validate_priority_filter(body),
        current_semester=parse_semester_field(body, "current_semester", required=False),
    )
    status_index = parse_status_index(body, snapshot.catalog.codes)
    profile = _build_profile(body, snapshot)

    enhancer = None
    if bool(body.get("enhance", False)):
        def enhancer(recs):
            return enhance_with_result(
                recs, profile, options.max_courses, timeout=_ENHANCER_TIMEOUT_SECONDS
            )

    report = build_recommendation_report(
        snapshot.catalog, status_index, profile, options, _policy, enhancer=enhancer
    )
    response_payload = {"mode": "recommendations", **report}
    # Fallback responses are not cached.
    if _cache_enabled() and not report.get("enhancement_note"):
        _recommend_response_cache.set(cache_key, response_payload)
    return jsonify(response_payload)


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
