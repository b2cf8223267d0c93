from __future__ import annotations

from gatescan.ocr.base_ocr import OCREngine, OCRResult


class MockOCREngine(OCREngine):
    name = "mock"

    def __init__(self, text: str | None = None) -> None:
        self._text = text

    async def extract_text(self, image_bytes: bytes) -> OCRResult:
        # Mock OCR for development/testing
        return OCRResult(
            text=self._text
            if self._text is not None
            else "STATE INSTITUTE OF TECHNOLOGY\nJane Doe\nBranch: Computer Science\nID: CS1234\nValid till 2027",
            confidence=0.85,
        )
