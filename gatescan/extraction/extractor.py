"""Pattern-based field extraction for student ID cards.

The recognizer output is treated as an unstructured block of text. Each field
has one regular expression; the first match in the text wins and the rules do
not depend on each other.

    Jane Doe
    Branch: Computer Science
    ID: CS1234

All separators inside a match are horizontal whitespace, so a value never runs
onto the next line.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Capitalized words at the start of any line, optionally ending in an
# all-caps token such as a suffix or initials ("John Smith JR").
_NAME_PATTERN = re.compile(r"^[A-Z][a-z]+(?:[^\S\r\n][A-Z][a-z]+)*(?:[^\S\r\n][A-Z]+)?", re.MULTILINE)
_BRANCH_PATTERN = re.compile(r"Branch:[^\S\r\n]*([A-Za-z \t]+)", re.IGNORECASE)
_STUDENT_ID_PATTERN = re.compile(r"ID:[^\S\r\n]*(\w+)", re.IGNORECASE | re.ASCII)


@dataclass(frozen=True)
class ExtractedFields:
    name: str = ""
    branch: str = ""
    student_id: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.branch or self.student_id)

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "branch": self.branch, "studentId": self.student_id}


def extract_fields(text: str) -> ExtractedFields:
    """Map raw OCR text to ``ExtractedFields``.

    Never raises; a field that is not found is an empty string.
    """
    if not isinstance(text, str):
        logger.warning("extraction_invalid_input", extra={"input_type": type(text).__name__})
        return ExtractedFields()

    name_match = _NAME_PATTERN.search(text)
    branch_match = _BRANCH_PATTERN.search(text)
    student_id_match = _STUDENT_ID_PATTERN.search(text)

    fields = ExtractedFields(
        name=name_match.group(0).strip() if name_match else "",
        branch=branch_match.group(1).strip() if branch_match else "",
        student_id=student_id_match.group(1).strip() if student_id_match else "",
    )

    logger.debug(
        "extraction_complete",
        extra={
            "name_found": bool(fields.name),
            "branch_found": bool(fields.branch),
            "student_id_found": bool(fields.student_id),
        },
    )
    return fields
