from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class OCRResult:
    text: str
    confidence: float | None = None  # 0.0 to 1.0 when the engine reports it


class EngineFailure(RuntimeError):
    """The recognizer instance is broken and must not be reused."""


class OCREngine:
    """One recognizer instance.

    ``load`` does the expensive part (loading the language model) and is called
    once before the engine serves any request. ``extract_text`` is not assumed
    to be reentrant; the pool guarantees a single caller at a time.
    """

    name = "base"

    async def load(self) -> None:
        return None

    async def extract_text(self, image_bytes: bytes) -> OCRResult:
        raise NotImplementedError

    async def close(self) -> None:
        return None
