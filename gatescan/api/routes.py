from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gatescan.core.config import settings
from gatescan.db.session import get_session
from gatescan.db.students import DuplicateStudentError, StudentRepository
from gatescan.extraction.extractor import ExtractedFields
from gatescan.ocr.pool import EnginePool
from gatescan.pipeline.pipeline import ScanPipeline
from gatescan.schemas import (
    ErrorResponse,
    HealthResponse,
    PoolStats,
    ScanRequest,
    ScanResponse,
    StudentCreate,
    StudentOut,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def get_engine_pool(request: Request) -> EnginePool:
    return request.app.state.engine_pool


def get_scan_pipeline(pool: EnginePool = Depends(get_engine_pool)) -> ScanPipeline:
    return ScanPipeline(
        pool,
        acquire_timeout=settings.ocr_acquire_timeout,
        recognition_timeout=settings.ocr_recognition_timeout,
    )


def get_student_repository(session: AsyncSession = Depends(get_session)) -> StudentRepository:
    return StudentRepository(session)


def _error_response(error: str, status: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        ErrorResponse(error=error, status=status).model_dump(), status_code=status_code
    )


@router.get("/health", response_model=HealthResponse)
async def health(pool: EnginePool = Depends(get_engine_pool)) -> HealthResponse:
    stats = PoolStats(**pool.stats())
    return HealthResponse(status="ok" if stats.ready else "degraded", ocr=stats)


@router.get("/ready")
async def ready(pool: EnginePool = Depends(get_engine_pool)) -> JSONResponse:
    if pool.ready:
        return JSONResponse({"ready": True})
    return JSONResponse({"ready": False}, status_code=503)


@router.post(
    "/api/scan",
    response_model=ScanResponse,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def scan_card(
    body: ScanRequest,
    pipeline: ScanPipeline = Depends(get_scan_pipeline),
):
    if isinstance(body.image, str) and len(body.image) > settings.max_image_chars:
        return _error_response("Image payload too large", "payload_too_large", 413)

    outcome = await pipeline.scan(body.image)
    if not outcome.ok:
        return _error_response(outcome.message or "", outcome.status.value, outcome.http_status)

    fields = outcome.fields
    return ScanResponse(
        name=fields.name,
        branch=fields.branch,
        student_id=fields.student_id,
        verified=outcome.verified,
    )


@router.post(
    "/api/students",
    response_model=StudentOut,
    status_code=201,
    responses={409: {"model": ErrorResponse}},
)
async def create_student(
    body: StudentCreate,
    repo: StudentRepository = Depends(get_student_repository),
):
    fields = ExtractedFields(name=body.name, branch=body.branch, student_id=body.student_id)
    try:
        student = await repo.create(fields)
    except DuplicateStudentError as exc:
        logger.info("student_duplicate", extra={"student_id": exc.student_id})
        return _error_response("Student ID already exists", "duplicate_student", 409)
    return StudentOut.model_validate(student)


@router.get("/api/students", response_model=list[StudentOut])
async def list_students(
    repo: StudentRepository = Depends(get_student_repository),
) -> list[StudentOut]:
    students = await repo.list_students()
    return [StudentOut.model_validate(s) for s in students]
