from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    # The browser client speaks camelCase (studentId, scannedAt).
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScanRequest(BaseModel):
    # Typed loosely on purpose: a non-string image is a 400, not a schema error.
    image: Any = None


class ScanResponse(_CamelModel):
    name: str
    branch: str
    student_id: str
    verified: bool = False


class ErrorResponse(BaseModel):
    error: str
    status: str | None = None


class StudentCreate(_CamelModel):
    name: str = Field(min_length=1)
    branch: str = Field(min_length=1)
    student_id: str = Field(min_length=1)


class StudentOut(_CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    branch: str
    student_id: str
    scanned_at: datetime
    verified: bool


class PoolStats(_CamelModel):
    ready: bool
    size: int
    capacity: int
    in_use: int
    waiting: int
    replacing: int


class HealthResponse(BaseModel):
    status: str
    ocr: PoolStats
