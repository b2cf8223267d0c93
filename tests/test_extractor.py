"""Field extractor tests (pure regex rules, no OCR involved)."""
from __future__ import annotations

import pytest

from gatescan.extraction.extractor import ExtractedFields, extract_fields


SAMPLE_CARD_TEXT = """STATE INSTITUTE OF TECHNOLOGY
Jane Doe
Branch: Computer Science
ID: CS1234
Valid till 2027
"""


def test_extract_all_three_fields() -> None:
    result = extract_fields("Jane Doe\nBranch: Computer Science\nID: CS1234")
    assert result == ExtractedFields(name="Jane Doe", branch="Computer Science", student_id="CS1234")


def test_extract_returns_wire_dict() -> None:
    result = extract_fields("Jane Doe\nBranch: Computer Science\nID: CS1234")
    assert result.as_dict() == {
        "name": "Jane Doe",
        "branch": "Computer Science",
        "studentId": "CS1234",
    }


def test_extract_noise_returns_empty_fields() -> None:
    result = extract_fields("random noise with no labels")
    assert result == ExtractedFields(name="", branch="", student_id="")
    assert result.is_empty


def test_labels_are_case_insensitive() -> None:
    result = extract_fields("BRANCH: ee\nid: 99xy")
    assert result.branch == "ee"
    assert result.student_id == "99xy"
    assert result.name == ""


def test_name_is_found_on_a_later_line() -> None:
    result = extract_fields(SAMPLE_CARD_TEXT)
    assert result.name == "Jane Doe"


def test_name_is_line_anchored() -> None:
    # "Jane Doe" is preceded by other text on its line, so it does not count.
    result = extract_fields("holder: Jane Doe\n")
    assert result.name == ""


def test_name_with_uppercase_suffix() -> None:
    result = extract_fields("John Smith JR\nID: 42")
    assert result.name == "John Smith JR"


def test_name_stops_at_end_of_line() -> None:
    result = extract_fields("Jane Doe\nBranch: Mechanical")
    assert result.name == "Jane Doe"


def test_branch_value_is_trimmed_and_stops_at_newline() -> None:
    result = extract_fields("Branch:   Electrical Engineering   \nID: EE77")
    assert result.branch == "Electrical Engineering"
    assert result.student_id == "EE77"


def test_branch_stops_at_non_letter() -> None:
    result = extract_fields("Branch: Civil-2 Year")
    assert result.branch == "Civil"


def test_student_id_matches_inside_longer_label() -> None:
    result = extract_fields("Student ID: AB12345")
    assert result.student_id == "AB12345"


def test_first_match_wins() -> None:
    result = extract_fields("ID: FIRST1\nID: SECOND2")
    assert result.student_id == "FIRST1"


def test_partial_extraction_is_not_empty() -> None:
    result = extract_fields("ID: 0042")
    assert result.student_id == "0042"
    assert not result.is_empty


@pytest.mark.parametrize("value", [None, 42, b"Jane Doe"])
def test_non_string_input_returns_empty(value) -> None:
    assert extract_fields(value).is_empty


def test_empty_text_returns_defaults() -> None:
    assert extract_fields("") == ExtractedFields()
