from __future__ import annotations

import logging

from .config import Settings, load_settings
from .extraction import extract_fields, split_lines
from .input_loader import ImageInput, load_image
from .models import ScanResult
from .ocr_backends import OCRBackend, ProgressCallback, build_ocr_backend
from .preprocessing import enhance_for_ocr, rotate_image
from .validation import assemble_result

logger = logging.getLogger(__name__)


def scan_id_card(
    image: ImageInput,
    expected_first_name: str | None = None,
    expected_last_name: str | None = None,
    on_progress: ProgressCallback | None = None,
    *,
    settings: Settings | None = None,
    backend: OCRBackend | None = None,
    rotation: int = 0,
) -> ScanResult:
    """Read a Kenyan national ID card image into a ``ScanResult``.

    OCR runs on the enhanced image first. When its confidence falls below the
    configured threshold and the input was an original file rather than a
    data URL, the untouched image is recognized too and the more confident
    reading is kept. Failures never propagate: they come back as a result
    with ``success=False`` and a generic error.
    """
    try:
        cfg = settings or load_settings()
        loaded = load_image(image, max_file_size_mb=cfg.max_file_size_mb)
        original = rotate_image(loaded.image, rotation)

        try:
            enhanced = enhance_for_ocr(
                original,
                contrast_factor=cfg.contrast_factor,
                threshold_low=cfg.threshold_low,
                threshold_high=cfg.threshold_high,
            )
        except Exception as exc:  # noqa: BLE001 - fall back to the unprocessed image
            logger.warning("Preprocessing failed, recognizing original image: %s", exc)
            enhanced = original

        engine = backend or build_ocr_backend(cfg)
        ocr = engine.recognize(enhanced, on_progress)
        source = "preprocessed"

        if (
            cfg.retry_low_conf_on_original
            and ocr.mean_confidence < cfg.low_conf_threshold
            and not loaded.from_data_url
        ):
            logger.info("Low OCR confidence (%.1f), retrying on original image", ocr.mean_confidence)
            retry = engine.recognize(original, on_progress)
            if retry.mean_confidence > ocr.mean_confidence:
                logger.info("Using original image result (confidence %.1f)", retry.mean_confidence)
                ocr = retry
                source = "original"

        text = ocr.full_text
        lines = split_lines(text)
        logger.debug("OCR text (confidence %.1f):\n%s", ocr.mean_confidence, text)

        fields = extract_fields(text, lines)
        logger.debug("Extracted fields: %s", fields)

        result = assemble_result(
            fields,
            full_text=text,
            confidence=ocr.mean_confidence,
            expected_first_name=expected_first_name,
            expected_last_name=expected_last_name,
            low_conf_threshold=cfg.low_conf_threshold,
        )
        result.ocr_engine = engine.name
        result.ocr_source = source
        return result
    except Exception:  # noqa: BLE001 - callers inspect the result, never an exception
        logger.exception("ID scan failed")
        return ScanResult.failed()
