"""Student repository tests with a mocked AsyncSession."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from gatescan.db.models import Student
from gatescan.db.students import DuplicateStudentError, StudentRepository
from gatescan.extraction.extractor import ExtractedFields


FIELDS = ExtractedFields(name="Jane Doe", branch="Computer Science", student_id="CS1234")


def _make_session(existing_id=None) -> AsyncMock:
    session = AsyncMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = existing_id
    session.execute = AsyncMock(return_value=result)
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    return session


@pytest.mark.asyncio
async def test_create_stores_verified_student() -> None:
    session = _make_session()
    repo = StudentRepository(session)

    student = await repo.create(FIELDS)

    assert isinstance(student, Student)
    assert student.student_id == "CS1234"
    assert student.name == "Jane Doe"
    assert student.branch == "Computer Science"
    assert student.verified is True
    session.add.assert_called_once_with(student)
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_create_rejects_existing_student_id() -> None:
    session = _make_session(existing_id="some-uuid")
    repo = StudentRepository(session)

    with pytest.raises(DuplicateStudentError) as exc_info:
        await repo.create(FIELDS)

    assert exc_info.value.student_id == "CS1234"
    session.add.assert_not_called()
    session.commit.assert_not_called()


@pytest.mark.asyncio
async def test_create_maps_unique_violation_to_duplicate() -> None:
    session = _make_session()
    session.commit = AsyncMock(
        side_effect=IntegrityError("INSERT INTO students", {}, Exception("unique violation"))
    )
    repo = StudentRepository(session)

    with pytest.raises(DuplicateStudentError):
        await repo.create(FIELDS)

    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_list_students_returns_rows() -> None:
    session = _make_session()
    rows = [Student(name="A", branch="B", student_id="1")]
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    session.execute = AsyncMock(return_value=result)

    students = await StudentRepository(session).list_students()

    assert students == rows
