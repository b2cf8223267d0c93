"""TesseractOCREngine (default) and LocalOCREngine backed by PaddleOCR.

Both libraries are blocking, so every call runs in the default executor and the
event loop stays free for other requests while a recognition is in flight.
"""
from __future__ import annotations

import asyncio
import io
import logging

import pytesseract
from PIL import Image

from gatescan.ocr.base_ocr import EngineFailure, OCREngine, OCRResult

logger = logging.getLogger(__name__)


def _open_image(image_bytes: bytes) -> Image.Image:
    # PIL raises UnidentifiedImageError (an OSError) for anything it cannot parse.
    img = Image.open(io.BytesIO(image_bytes))
    img.load()
    return img.convert("RGB")


# ---------------------------------------------------------------------------
# TesseractOCREngine — pytesseract
# ---------------------------------------------------------------------------

class TesseractOCREngine(OCREngine):
    """OCR engine backed by the Tesseract binary through pytesseract.

    Config (via .env):
        OCR_PROVIDER=tesseract
        TESSERACT_LANG=eng     # any installed traineddata, '+' joins several
        TESSERACT_PSM=3
        TESSERACT_CMD=/usr/bin/tesseract   (optional)
    """

    name = "tesseract"

    def __init__(self, lang: str = "eng", psm: int = 3, tesseract_cmd: str | None = None) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self._lang = lang
        self._config = f"--psm {psm}"

    async def load(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._check_install)

    def _check_install(self) -> None:
        try:
            version = pytesseract.get_tesseract_version()
            available = set(pytesseract.get_languages(config=""))
        except pytesseract.TesseractNotFoundError as exc:
            raise EngineFailure("tesseract binary not found") from exc

        missing = [lang for lang in self._lang.split("+") if lang not in available]
        if missing:
            raise EngineFailure(f"tesseract language data missing: {', '.join(missing)}")

        logger.info("tesseract_loaded", extra={"version": str(version), "lang": self._lang})

    async def extract_text(self, image_bytes: bytes) -> OCRResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._recognize, image_bytes)

    def _recognize(self, image_bytes: bytes) -> OCRResult:
        img = _open_image(image_bytes)
        try:
            text = pytesseract.image_to_string(img, lang=self._lang, config=self._config)
            data = pytesseract.image_to_data(
                img,
                lang=self._lang,
                config=self._config,
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractNotFoundError as exc:
            raise EngineFailure("tesseract binary disappeared") from exc

        confidences = [
            float(conf) / 100.0
            for conf, word in zip(data.get("conf", []), data.get("text", []))
            if float(conf) > 0 and str(word).strip()
        ]
        avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0

        logger.info(
            "tesseract_complete",
            extra={"words": len(confidences), "avg_confidence": round(avg_confidence, 4)},
        )
        return OCRResult(text=text, confidence=avg_confidence)


# ---------------------------------------------------------------------------
# LocalOCREngine — PaddleOCR
# ---------------------------------------------------------------------------

class LocalOCREngine(OCREngine):
    """OCR engine backed by PaddleOCR (runs 100% locally, no cloud calls).

    Install dependency:
        pip install "gatescan[paddle]"

    Config (via .env):
        OCR_PROVIDER=paddleocr
        PADDLE_LANG=en      # language code: en | ch | fr | es | etc.
        PADDLE_USE_GPU=false
    """

    name = "paddleocr"

    def __init__(self, lang: str = "en", use_gpu: bool = False) -> None:
        self._lang = lang
        self._use_gpu = use_gpu
        self._ocr = None

    async def load(self) -> None:
        loop = asyncio.get_running_loop()
        self._ocr = await loop.run_in_executor(None, self._build)

    def _build(self):
        try:
            from paddleocr import PaddleOCR  # type: ignore[import]
        except ModuleNotFoundError as exc:
            raise EngineFailure(
                "PaddleOCR is not installed. Run: pip install paddlepaddle paddleocr"
            ) from exc
        return PaddleOCR(
            use_angle_cls=True,
            lang=self._lang,
            use_gpu=self._use_gpu,
            show_log=False,
        )

    async def extract_text(self, image_bytes: bytes) -> OCRResult:
        if self._ocr is None:
            raise EngineFailure("PaddleOCR engine used before load()")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._recognize, image_bytes)

    def _recognize(self, image_bytes: bytes) -> OCRResult:
        import numpy as np  # type: ignore[import]

        img_array = np.array(_open_image(image_bytes))
        result = self._ocr.ocr(img_array, cls=True)

        lines: list[str] = []
        confidences: list[float] = []

        if result and result[0]:
            for line in result[0]:
                # Each line: [bounding_box, [text, confidence]]
                text, conf = line[1]
                lines.append(text)
                confidences.append(float(conf))

        full_text = "\n".join(lines)
        avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0

        logger.info(
            "paddleocr_complete",
            extra={"lines": len(lines), "avg_confidence": round(avg_confidence, 4)},
        )
        return OCRResult(text=full_text, confidence=avg_confidence)

    async def close(self) -> None:
        self._ocr = None
