from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    database_url: str

    # JSON list in the environment, e.g. CORS_ORIGINS='["https://gate.example.edu"]'
    cors_origins: list[str] = ["http://localhost:5173"]

    # OCR provider: mock | tesseract | paddleocr
    ocr_provider: str = "tesseract"
    tesseract_cmd: str | None = None
    tesseract_lang: str = "eng"
    tesseract_psm: int = 3
    paddle_lang: str = "en"
    paddle_use_gpu: bool = False

    # Engine pool
    ocr_pool_size: int = 2
    ocr_acquire_timeout: float = 10.0
    ocr_recognition_timeout: float = 30.0
    ocr_drain_timeout: float = 15.0
    ocr_init_attempts: int = 3
    ocr_replace_attempts: int = 5
    ocr_retry_min_wait: float = 1.0
    ocr_retry_max_wait: float = 30.0

    # Roughly a 50 MB JSON body
    max_image_chars: int = 50 * 1024 * 1024


settings = Settings()
