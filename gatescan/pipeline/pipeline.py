"""Scan pipeline — validate → lease engine → recognize → extract → classify.

Every request produces exactly one ``ScanOutcome``. Nothing here raises for an
expected failure; the variants below are the whole contract with the HTTP
layer:

    SUCCESS               200  fields found
    VALIDATION_ERROR      400  payload is not base64 / an image data URI
    ENGINE_UNAVAILABLE    503  no engine free in time, or pool degraded
    RECOGNITION_ERROR     422  engine or decoder threw
    NO_TEXT_FOUND         422  engine returned nothing
    NO_FIELDS_IDENTIFIED  422  text did not match any field rule
"""
from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass

from gatescan.extraction.extractor import ExtractedFields, extract_fields
from gatescan.ocr.pool import EnginePool, EngineUnavailableError
from gatescan.validation.image_validator import decode_image_payload, is_valid_image_payload

logger = logging.getLogger(__name__)


class ScanStatus(str, enum.Enum):
    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    ENGINE_UNAVAILABLE = "engine_unavailable"
    RECOGNITION_ERROR = "recognition_error"
    NO_TEXT_FOUND = "no_text_found"
    NO_FIELDS_IDENTIFIED = "no_fields_identified"


_HTTP_STATUS = {
    ScanStatus.SUCCESS: 200,
    ScanStatus.VALIDATION_ERROR: 400,
    ScanStatus.ENGINE_UNAVAILABLE: 503,
    ScanStatus.RECOGNITION_ERROR: 422,
    ScanStatus.NO_TEXT_FOUND: 422,
    ScanStatus.NO_FIELDS_IDENTIFIED: 422,
}

_MESSAGES = {
    ScanStatus.VALIDATION_ERROR: "Invalid image data provided",
    ScanStatus.ENGINE_UNAVAILABLE: "OCR service is busy or unavailable. Please retry shortly.",
    ScanStatus.RECOGNITION_ERROR: "Error processing image. Please try again with a clearer image.",
    ScanStatus.NO_TEXT_FOUND: "Could not extract text from image",
    ScanStatus.NO_FIELDS_IDENTIFIED: (
        "Could not identify ID card format. Please ensure the image is clear and well-lit."
    ),
}


@dataclass(frozen=True)
class ScanOutcome:
    status: ScanStatus
    fields: ExtractedFields | None = None
    verified: bool = False
    confidence: float | None = None

    @property
    def ok(self) -> bool:
        return self.status is ScanStatus.SUCCESS

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.status]

    @property
    def message(self) -> str | None:
        return _MESSAGES.get(self.status)


class ScanPipeline:
    def __init__(
        self,
        pool: EnginePool,
        *,
        acquire_timeout: float | None = 10.0,
        recognition_timeout: float | None = 30.0,
    ) -> None:
        self._pool = pool
        self._acquire_timeout = acquire_timeout
        self._recognition_timeout = recognition_timeout

    async def scan(self, payload: object, *, verified: bool = False) -> ScanOutcome:
        # Payloads run to tens of megabytes; keep regex and base64 work off the loop.
        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, is_valid_image_payload, payload):
            logger.info("scan_rejected_invalid_payload")
            return ScanOutcome(ScanStatus.VALIDATION_ERROR)

        t0 = time.monotonic()
        try:
            async with self._pool.lease(self._acquire_timeout) as handle:
                wait_ms = int((time.monotonic() - t0) * 1000)
                try:
                    image_bytes = await loop.run_in_executor(None, decode_image_payload, payload)
                    result = await self._pool.recognize(
                        handle, image_bytes, timeout=self._recognition_timeout
                    )
                except Exception as exc:
                    logger.exception(
                        "scan_recognition_failed",
                        extra={"slot": handle.index, "error_type": type(exc).__name__},
                    )
                    return ScanOutcome(ScanStatus.RECOGNITION_ERROR)
        except EngineUnavailableError as exc:
            logger.warning("scan_engine_unavailable", extra={"reason": str(exc)})
            return ScanOutcome(ScanStatus.ENGINE_UNAVAILABLE)

        duration_ms = int((time.monotonic() - t0) * 1000)
        text = result.text or ""
        logger.info(
            "ocr_complete",
            extra={
                "slot": handle.index,
                "wait_ms": wait_ms,
                "duration_ms": duration_ms,
                "text_length": len(text),
                "confidence": result.confidence,
            },
        )

        if not text.strip():
            return ScanOutcome(ScanStatus.NO_TEXT_FOUND, confidence=result.confidence)

        fields = extract_fields(text)
        if fields.is_empty:
            logger.info("scan_no_fields_identified", extra={"text_length": len(text)})
            return ScanOutcome(ScanStatus.NO_FIELDS_IDENTIFIED, confidence=result.confidence)

        logger.info(
            "scan_complete",
            extra={"student_id": fields.student_id or None, "duration_ms": duration_ms},
        )
        return ScanOutcome(
            ScanStatus.SUCCESS, fields=fields, verified=verified, confidence=result.confidence
        )
