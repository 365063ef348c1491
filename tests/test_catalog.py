import pytest
from catalog import Catalog, CatalogSnapshot, Course, refresh_snapshot
from evaluator import CyclicPrerequisiteError
from prereq_parser import Leaf, PrerequisiteParseError


class TestCourse:
    def test_defaults(self):
        c = Course("cs1331", title="Intro OOP")
        assert c.code == "CS 1331"
        assert c.department == "CS"
        assert c.offerings == frozenset({"fall", "spring", "summer"})
        assert c.number_tier == 1

    def test_tracks_lowercased_and_deduplicated(self):
        assert Course("CS 3600", tracks=("AI", "ai", " Intelligence ")).tracks == ("ai", "intelligence")

    def test_corequisites_normalized_without_self(self):
        c = Course("PHYS 2211", corequisites=("phys2211l", "PHYS 2211", "PHYS 2211L"))
        assert c.corequisites == ("PHYS 2211L",)

    @pytest.mark.parametrize("kwargs", [
        {"credits": 0},
        {"difficulty": 6},
        {"difficulty": 0},
        {"offerings": ("winter",)},
    ])
    def test_invalid_fields(self, kwargs):
        with pytest.raises(ValueError):
            Course("CS 1331", **kwargs)

    def test_is_offered(self):
        c = Course("CS 1331", offerings=("fall",))
        assert c.is_offered("Fall")
        assert not c.is_offered("spring")

    def test_offering_label(self):
        assert Course("CS 1331", offerings=("spring", "fall")).offering_label() == "Fall and Spring"
        assert Course("CS 1331", offerings=()).offering_label() == "no listed term"


class TestCatalog:
    def _catalog(self):
        return Catalog([
            Course("CS 1301"),
            Course("CS 1331", prerequisites=Leaf("CS 1301")),
            Course("CS 3510", prerequisites=Leaf("CS 1331")),
            Course("MATH 2106"),
        ])

    def test_lookup_normalizes(self):
        catalog = self._catalog()
        assert catalog.get("cs1331").code == "CS 1331"
        assert "cs-1301" in catalog
        assert catalog.get("CS 9999") is None

    def test_len_and_iteration_order(self):
        catalog = self._catalog()
        assert len(catalog) == 4
        assert [c.code for c in catalog] == ["CS 1301", "CS 1331", "CS 3510", "MATH 2106"]

    def test_duplicate_rejected(self):
        with pytest.raises(ValueError):
            Catalog([Course("CS 1301"), Course("cs 1301")])

    def test_department_min_tier(self):
        catalog = self._catalog()
        assert catalog.department_min_tier("cs") == 1
        assert catalog.department_min_tier("MATH") == 2
        assert catalog.department_min_tier("BIO") is None

    def test_prereq_map_read_only(self):
        with pytest.raises(TypeError):
            self._catalog().prereq_map["CS 1301"] = None

    def test_cycle_flagged_on_build(self):
        catalog = Catalog([
            Course("AA 1000", prerequisites=Leaf("BB 1000")),
            Course("BB 1000", prerequisites=Leaf("AA 1000")),
            Course("CC 1000"),
        ])
        assert isinstance(catalog.integrity_issue("AA 1000"), CyclicPrerequisiteError)
        assert catalog.integrity_issue("CC 1000") is None

    def test_supplied_issues_kept(self):
        err = PrerequisiteParseError("Unsupported prerequisite format", course_code="CS 4803")
        catalog = Catalog([Course("CS 4803")], integrity_issues={"CS 4803": err})
        assert catalog.integrity_issue("cs4803") is err


class TestCatalogSnapshot:
    def _snapshot(self, fetched_at=100.0):
        return CatalogSnapshot(
            Catalog([Course("CS 1301")]),
            fetched_at=fetched_at,
            programs={"CS_BS": frozenset({"CS 1301"})},
        )

    def test_age(self):
        assert self._snapshot().age(130.0) == 30.0

    def test_expiry(self):
        snap = self._snapshot()
        assert not snap.is_expired(150.0, 60)
        assert snap.is_expired(160.0, 60)

    def test_no_ttl_never_expires(self):
        assert not self._snapshot().is_expired(1e9, None)
        assert not self._snapshot().is_expired(1e9, 0)

    def test_major_requirements(self):
        snap = self._snapshot()
        assert snap.major_requirements("cs_bs") == frozenset({"CS 1301"})
        assert snap.major_requirements("ART") == frozenset()

    def test_refresh_keeps_fresh_snapshot(self):
        snap = self._snapshot()
        calls = []
        result = refresh_snapshot(snap, lambda: calls.append(1), now=110.0, ttl_seconds=60)
        assert result is snap
        assert calls == []

    def test_refresh_replaces_expired_snapshot(self):
        old = self._snapshot()
        new = self._snapshot(fetched_at=500.0)
        result = refresh_snapshot(old, lambda: new, now=500.0, ttl_seconds=60)
        assert result is new
        assert old.fetched_at == 100.0

    def test_refresh_without_snapshot_loads(self):
        new = self._snapshot()
        assert refresh_snapshot(None, lambda: new, now=0.0, ttl_seconds=60) is new
