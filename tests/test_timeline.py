import pytest
from timeline import (
    Semester,
    parse_semester,
    program_term_number,
    semesters_after,
)


class TestParseSemester:
    def test_basic(self):
        sem = parse_semester("Fall 2026")
        assert sem.year == 2026
        assert sem.term == "Fall"

    def test_case_insensitive(self):
        assert parse_semester("spring 2027").label == "Spring 2027"

    def test_passthrough(self):
        sem = Semester(2026, 2)
        assert parse_semester(sem) is sem

    @pytest.mark.parametrize("bad", ["", None, "Fall", "Autumn 2026", "2026 Fall"])
    def test_invalid(self, bad):
        with pytest.raises(ValueError):
            parse_semester(bad)


class TestOrdering:
    def test_chronological(self):
        assert parse_semester("Spring 2026") < parse_semester("Summer 2026") < parse_semester("Fall 2026")
        assert parse_semester("Fall 2026") < parse_semester("Spring 2027")

    def test_next_wraps_year(self):
        assert parse_semester("Fall 2026").next() == parse_semester("Spring 2027")

    def test_previous(self):
        assert parse_semester("Spring 2027").previous() == parse_semester("Fall 2026")

    def test_offering_key(self):
        assert parse_semester("Summer 2026").offering_key == "summer"

    def test_semesters_after(self):
        labels = [s.label for s in semesters_after(parse_semester("Fall 2026"), 3)]
        assert labels == ["Spring 2027", "Summer 2027", "Fall 2027"]


class TestProgramTermNumber:
    START = parse_semester("Fall 2025")

    def test_first_term(self):
        assert program_term_number(self.START, self.START) == 1

    def test_second_term(self):
        assert program_term_number(parse_semester("Spring 2026"), self.START) == 2

    def test_summer_not_counted(self):
        assert program_term_number(parse_semester("Fall 2026"), self.START) == 3

    def test_summer_target_counts_as_previous_regular_term(self):
        assert program_term_number(parse_semester("Summer 2026"), self.START) == 2

    def test_target_before_start(self):
        assert program_term_number(parse_semester("Spring 2025"), self.START) == 1
