from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _default_face_store() -> str:
    return str(Path.home() / ".idscanner" / "face_images.json")


@dataclass(slots=True)
class Settings:
    ocr_engine: str = "auto"
    tesseract_lang: str = "eng"
    tesseract_psm: int = 3
    paddle_lang: str = "en"
    easyocr_langs: tuple[str, ...] = ("en",)
    easyocr_gpu: bool = False
    low_conf_threshold: float = 50.0
    retry_low_conf_on_original: bool = True
    max_file_size_mb: int = 12
    contrast_factor: float = 1.3
    threshold_low: int = 100
    threshold_high: int = 140
    api_base_url: str = "http://127.0.0.1:8080/api"
    api_token: str | None = None
    api_timeout: float = 15.0
    face_store_path: str = ""
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        if not self.face_store_path:
            self.face_store_path = _default_face_store()


def load_settings() -> Settings:
    langs = os.getenv("EASYOCR_LANGS", "en")
    parsed_langs = tuple(x.strip() for x in langs.split(",") if x.strip())

    return Settings(
        ocr_engine=os.getenv("OCR_ENGINE", "auto").strip().lower(),
        tesseract_lang=os.getenv("TESSERACT_LANG", "eng").strip(),
        tesseract_psm=int(os.getenv("TESSERACT_PSM", "3")),
        paddle_lang=os.getenv("PADDLE_LANG", "en").strip().lower(),
        easyocr_langs=parsed_langs or ("en",),
        easyocr_gpu=_env_bool("EASYOCR_GPU", False),
        low_conf_threshold=float(os.getenv("LOW_CONF_THRESHOLD", "50")),
        retry_low_conf_on_original=_env_bool("RETRY_LOW_CONF_ON_ORIGINAL", True),
        max_file_size_mb=int(os.getenv("MAX_FILE_SIZE_MB", "12")),
        contrast_factor=float(os.getenv("CONTRAST_FACTOR", "1.3")),
        threshold_low=int(os.getenv("THRESHOLD_LOW", "100")),
        threshold_high=int(os.getenv("THRESHOLD_HIGH", "140")),
        api_base_url=os.getenv("API_BASE_URL", "http://127.0.0.1:8080/api").strip().rstrip("/"),
        api_token=os.getenv("API_TOKEN") or None,
        api_timeout=float(os.getenv("API_TIMEOUT", "15")),
        face_store_path=os.getenv("FACE_STORE_PATH", "").strip() or _default_face_store(),
        log_level=os.getenv("LOG_LEVEL", "WARNING").strip().upper(),
    )
