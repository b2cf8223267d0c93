from __future__ import annotations

from gatescan.core.config import settings
from gatescan.ocr.base_ocr import OCREngine
from gatescan.ocr.mock_ocr import MockOCREngine


def get_ocr_engine() -> OCREngine:
    """Return a new, not yet loaded, engine instance.

    OCR_PROVIDER options:
        mock       — synthetic ID-card text (dev/test, no deps required)
        tesseract  — TesseractOCREngine (needs the tesseract binary)
        paddleocr  — LocalOCREngine (pip install "gatescan[paddle]")
    """
    provider = settings.ocr_provider.lower().strip()

    if provider == "mock":
        return MockOCREngine()

    if provider == "tesseract":
        from gatescan.ocr.engines import TesseractOCREngine
        return TesseractOCREngine(
            lang=settings.tesseract_lang,
            psm=settings.tesseract_psm,
            tesseract_cmd=settings.tesseract_cmd,
        )

    if provider == "paddleocr":
        from gatescan.ocr.engines import LocalOCREngine
        return LocalOCREngine(
            lang=settings.paddle_lang,
            use_gpu=settings.paddle_use_gpu,
        )

    raise ValueError(f"Unknown OCR_PROVIDER={settings.ocr_provider!r}")
