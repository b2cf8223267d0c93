"""Student record store, keyed by the card's student ID."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatescan.db.models import Student
from gatescan.extraction.extractor import ExtractedFields

logger = logging.getLogger(__name__)


class DuplicateStudentError(Exception):
    def __init__(self, student_id: str) -> None:
        super().__init__(f"Student ID already exists: {student_id}")
        self.student_id = student_id


class StudentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, fields: ExtractedFields) -> Student:
        """Store a confirmed scan as a verified student.

        Raises:
            DuplicateStudentError: a record with the same student ID exists.
        """
        existing = await self._session.execute(
            select(Student.id).where(Student.student_id == fields.student_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateStudentError(fields.student_id)

        student = Student(
            name=fields.name,
            branch=fields.branch,
            student_id=fields.student_id,
            verified=True,
        )
        self._session.add(student)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent insert of the same ID.
            await self._session.rollback()
            raise DuplicateStudentError(fields.student_id) from exc

        await self._session.refresh(student)
        logger.info("student_created", extra={"student_id": student.student_id})
        return student

    async def list_students(self) -> list[Student]:
        result = await self._session.execute(select(Student).order_by(Student.scanned_at.desc()))
        return list(result.scalars().all())
