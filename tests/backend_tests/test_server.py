"""
API tests against the shipped sample catalog (data/).

Covers:
- GET /health, /courses, /courses/<code>
- POST /validate, /validate-plan, /validate-records, /recommend
- JSON error envelopes, security headers and rate limiting
"""

import pytest
import server
from llm_recommender import Enhanced


@pytest.fixture(scope="module")
def client():
    server.app.config["TESTING"] = True
    with server.app.test_client() as c:
        yield c


def _post(client, path, payload):
    resp = client.post(path, json=payload)
    return resp, resp.get_json()


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["status"] == "ok"
        assert data["version"] == server.API_VERSION
        assert data["course_count"] == 19
        assert data["unavailable_count"] == 1
        assert data["catalog_age_seconds"] >= 0

    def test_security_headers(self, client):
        resp = client.get("/health")
        assert resp.headers.get("X-Frame-Options") == "DENY"
        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
        assert resp.headers.get("Referrer-Policy") == "same-origin"

    def test_unknown_route_is_json(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["error_code"] == "NOT_FOUND"


class TestCourses:
    def test_list(self, client):
        courses = client.get("/courses").get_json()["courses"]
        assert len(courses) == 19
        first = courses[0]
        assert first["course_code"] == "CS 1301"
        assert first["offered"] == ["fall", "spring", "summer"]

    def test_detail(self, client):
        resp = client.get("/courses/cs3510")
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["course_code"] == "CS 3510"
        assert data["prerequisites"] == "CS 1332 (C); (CS 2050 (C) or MATH 2106 (C))"
        assert data["prerequisites_tree"][0] == "and"
        assert data["unavailable"] is None

    def test_detail_unlocks_and_depth(self, client):
        data = client.get("/courses/cs1331").get_json()
        assert data["unlocks"] == ["CS 1332", "CS 2110", "CS 2340"]
        assert data["chain_depth"] == 3

    def test_detail_flagged_course(self, client):
        data = client.get("/courses/cs4803").get_json()
        assert data["unavailable"]["error_code"] == "UNPARSEABLE_PREREQUISITE"

    def test_detail_unknown(self, client):
        resp = client.get("/courses/cs9999")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["error_code"] == "UNKNOWN_COURSE"


class TestValidate:
    def test_eligible(self, client):
        resp, data = _post(client, "/validate", {
            "course_code": "cs1331",
            "target_semester": "Fall 2026",
            "records": [{"course_code": "CS 1301", "status": "completed", "grade": "B"}],
        })
        assert resp.status_code == 200
        assert data["mode"] == "validate"
        assert data["can_add"] is True
        assert data["prereq_check"] == "CS 1301 (C) ✓"

    def test_grade_floor_not_met(self, client):
        _, data = _post(client, "/validate", {
            "course_code": "CS 1331",
            "target_semester": "Fall 2026",
            "records": [{"course_code": "CS 1301", "status": "completed", "grade": "D"}],
        })
        assert data["can_add"] is False
        assert data["missing_prerequisites"] == ["CS 1301"]

    def test_missing_with_suggestions(self, client):
        _, data = _post(client, "/validate", {
            "course_code": "CS 1331",
            "target_semester": "Fall 2026",
        })
        assert data["can_add"] is False
        assert data["suggested_semesters"] == ["Spring 2027", "Summer 2027"]
        assert data["projection_note"]

    def test_or_alternatives_listed(self, client):
        _, data = _post(client, "/validate", {
            "course_code": "CS 3510",
            "target_semester": "Fall 2026",
            "records": [{"course_code": "CS 1332", "status": "completed", "grade": "A"}],
        })
        assert data["missing_prerequisites"] == ["CS 2050", "MATH 2106"]

    def test_off_term_warning(self, client):
        _, data = _post(client, "/validate", {
            "course_code": "CS 4210",
            "target_semester": "Fall 2026",
            "records": [{"course_code": "CS 2200", "status": "completed", "grade": "A"}],
        })
        assert data["can_add"] is True
        assert data["warnings"] == ["CS 4210 is not usually offered in Fall; it is offered in Spring."]

    def test_unknown_course(self, client):
        resp, data = _post(client, "/validate", {"course_code": "CS 9999", "target_semester": "Fall 2026"})
        assert resp.status_code == 200
        assert data["can_add"] is False
        assert data["why_not"] == "CS 9999 is not in the course catalog."

    def test_flagged_course(self, client):
        _, data = _post(client, "/validate", {"course_code": "CS 4803", "target_semester": "Fall 2026"})
        assert data["can_add"] is False
        assert data["unavailable"]["error_code"] == "UNPARSEABLE_PREREQUISITE"

    def test_missing_target_semester(self, client):
        resp, data = _post(client, "/validate", {"course_code": "CS 1331"})
        assert resp.status_code == 400
        assert data["mode"] == "error"
        assert data["error"]["error_code"] == "INVALID_INPUT"

    def test_missing_course_code(self, client):
        resp, _ = _post(client, "/validate", {"target_semester": "Fall 2026"})
        assert resp.status_code == 400

    def test_invalid_course_code_in_history(self, client):
        resp, data = _post(client, "/validate", {
            "course_code": "CS 1331",
            "target_semester": "Fall 2026",
            "completed_courses": "CS 1301, ???",
        })
        assert resp.status_code == 400
        assert data["error"]["error_code"] == "INVALID_COURSE_CODE"
        assert data["error"]["details"] == {"invalid": ["???"]}

    def test_body_not_json_object(self, client):
        resp = client.post("/validate", data="not json", content_type="text/plain")
        assert resp.status_code == 400


class TestValidatePlan:
    def test_corequisites_together(self, client):
        resp, data = _post(client, "/validate-plan", {
            "course_codes": ["PHYS 2211", "PHYS 2211L"],
            "target_semester": "Fall 2026",
            "records": [{"course_code": "MATH 1551", "status": "completed", "grade": "A"}],
        })
        assert resp.status_code == 200
        assert data["mode"] == "validate_plan"
        assert data["overall"] is True

    def test_blocked_plan(self, client):
        _, data = _post(client, "/validate-plan", {
            "course_codes": "CS 3510, CS 4400",
            "target_semester": "Fall 2026",
        })
        assert data["overall"] is False
        assert "CS 3510" in data["critical_blocks"]
        assert data["optimizations"]

    def test_requires_courses(self, client):
        resp, _ = _post(client, "/validate-plan", {"target_semester": "Fall 2026"})
        assert resp.status_code == 400


class TestValidateRecords:
    def test_inconsistency(self, client):
        _, data = _post(client, "/validate-records", {
            "records": [
                {"course_code": "CS 1332", "status": "completed", "grade": "A"},
                {"course_code": "CS 1331", "status": "in-progress"},
            ],
        })
        assert data["inconsistencies"] == [
            {"course_code": "CS 1332", "prereqs_not_completed": ["CS 1331"]},
        ]


class TestRecommend:
    PAYLOAD = {
        "major": "CS_BS",
        "tracks": ["intelligence"],
        "target_semester": "Fall 2026",
        "records": [
            {"course_code": "CS 1301", "status": "completed", "grade": "A", "semester": "Fall 2025"},
            {"course_code": "MATH 1551", "status": "completed", "grade": "B", "semester": "Fall 2025"},
        ],
        "max_courses": 5,
    }

    def test_shape_and_order(self, client):
        resp, data = _post(client, "/recommend", self.PAYLOAD)
        assert resp.status_code == 200
        assert data["mode"] == "recommendations"
        recs = data["recommendations"]
        assert len(recs) == 5
        keys = [(-r["score"], r["course_code"]) for r in recs]
        assert keys == sorted(keys)
        assert recs[0]["course_code"] == "CS 1331"
        assert data["enhanced"] is False

    def test_history_excluded(self, client):
        _, data = _post(client, "/recommend", self.PAYLOAD)
        codes = [r["course_code"] for r in data["recommendations"]]
        assert "CS 1301" not in codes
        assert "MATH 1551" not in codes

    def test_unavailable_reported(self, client):
        _, data = _post(client, "/recommend", self.PAYLOAD)
        assert [u["course_code"] for u in data["unavailable"]] == ["CS 4803"]

    def test_deterministic(self, client):
        _, first = _post(client, "/recommend", self.PAYLOAD)
        _, second = _post(client, "/recommend", self.PAYLOAD)
        assert first == second

    def test_by_category_consistent(self, client):
        _, data = _post(client, "/recommend", {**self.PAYLOAD, "per_category": 2})
        by_score = {r["course_code"]: r["score"] for r in data["recommendations"]}
        for recs in data["by_category"].values():
            assert len(recs) <= 2
            for r in recs:
                if r["course_code"] in by_score:
                    assert r["score"] == by_score[r["course_code"]]

    def test_priority_filter(self, client):
        _, data = _post(client, "/recommend", {**self.PAYLOAD, "priority_filter": "high"})
        assert data["recommendations"]
        assert all(r["priority"] == "high" for r in data["recommendations"])

    def test_unknown_major(self, client):
        resp, data = _post(client, "/recommend", {**self.PAYLOAD, "major": "ART_BA"})
        assert resp.status_code == 400
        assert data["error"]["error_code"] == "UNKNOWN_MAJOR"
        assert "CS_BS" in data["error"]["details"]["known_majors"]

    @pytest.mark.parametrize("field,value", [
        ("max_courses", 0),
        ("max_courses", 51),
        ("per_category", "lots"),
        ("priority_filter", "urgent"),
        ("target_semester", "Fall"),
    ])
    def test_invalid_options(self, client, field, value):
        resp, data = _post(client, "/recommend", {**self.PAYLOAD, field: value})
        assert resp.status_code == 400
        assert data["error"]["error_code"] == "INVALID_INPUT"

    def test_enhance_without_key_falls_back(self, client, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        _, plain = _post(client, "/recommend", self.PAYLOAD)
        _, data = _post(client, "/recommend", {**self.PAYLOAD, "enhance": True})
        assert data["enhanced"] is False
        assert data["enhancement_note"].startswith("advisor failed")
        assert data["recommendations"] == plain["recommendations"]

    def test_enhance_success(self, client, monkeypatch):
        monkeypatch.setattr(
            server,
            "enhance_with_result",
            lambda recs, profile, limit, timeout=None: Enhanced(tuple(recs)),
        )
        _, data = _post(client, "/recommend", {**self.PAYLOAD, "enhance": True})
        assert data["enhanced"] is True
        assert data["enhancement_note"] is None


class TestRateLimiting:
    """Rate limit: 10 req/min per IP on /recommend. TESTING mode bypasses it."""

    PAYLOAD = {"target_semester": "Fall 2026", "max_courses": 1}

    def test_rate_limit_enforced_outside_testing(self):
        server.app.config["TESTING"] = False
        try:
            with server.app.test_client() as c:
                test_ip = "10.99.88.77"
                with server._rate_limit_lock:
                    server._rate_limit_tracker[test_ip] = []

                statuses = []
                for _ in range(server._RATE_LIMIT_MAX + 1):
                    resp = c.post("/recommend", json=self.PAYLOAD, environ_base={"REMOTE_ADDR": test_ip})
                    statuses.append(resp.status_code)

                assert all(s == 200 for s in statuses[:server._RATE_LIMIT_MAX]), statuses
                assert statuses[-1] == 429
        finally:
            server.app.config["TESTING"] = True
            server._clear_request_caches()

    def test_rate_limit_bypassed_in_testing(self, client):
        test_ip = "10.99.00.01"
        with server._rate_limit_lock:
            server._rate_limit_tracker[test_ip] = []
        for _ in range(server._RATE_LIMIT_MAX + 2):
            resp = client.post("/recommend", json=self.PAYLOAD, environ_base={"REMOTE_ADDR": test_ip})
            assert resp.status_code == 200
