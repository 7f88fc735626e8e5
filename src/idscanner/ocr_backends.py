from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass

import cv2
import numpy as np

from .config import Settings
from .models import OCRLine, OCRResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

ENGINE_NAMES = ("tesseract", "paddle", "easy")


def _mean_conf(lines: list[OCRLine]) -> float:
    if not lines:
        return 0.0
    return float(sum(line.confidence for line in lines) / len(lines))


def _report(on_progress: ProgressCallback | None, percent: int) -> None:
    if on_progress is None:
        return
    try:
        on_progress(max(0, min(100, int(percent))))
    except Exception:  # noqa: BLE001 - a broken progress listener must not abort recognition
        logger.exception("Progress callback raised")


@dataclass(slots=True)
class OCRBackend:
    name: str

    def run(self, image_bgr: np.ndarray) -> OCRResult:  # pragma: no cover - interface method
        raise NotImplementedError

    def recognize(self, image_bgr: np.ndarray, on_progress: ProgressCallback | None = None) -> OCRResult:
        _report(on_progress, 0)
        result = self.run(image_bgr)
        _report(on_progress, 100)
        return result


class TesseractBackend(OCRBackend):
    def __init__(self, lang: str = "eng", psm: int = 3) -> None:
        super().__init__(name="tesseract")
        try:
            import pytesseract
        except ImportError as exc:
            raise RuntimeError("pytesseract is not installed.") from exc

        try:
            version = pytesseract.get_tesseract_version()
        except Exception as exc:  # noqa: BLE001 - binary missing or misconfigured
            raise RuntimeError(f"Tesseract binary is not available: {exc}") from exc
        logger.debug("Tesseract %s initialized (lang=%s, psm=%s)", version, lang, psm)

        self._tesseract = pytesseract
        self._lang = lang
        self._config = f"--psm {psm}"

    def run(self, image_bgr: np.ndarray) -> OCRResult:
        rgb = cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB)
        data = self._tesseract.image_to_data(
            rgb,
            lang=self._lang,
            config=self._config,
            output_type=self._tesseract.Output.DICT,
        )

        # Words arrive in reading order; regroup them into the engine's own lines.
        grouped: dict[tuple[int, int, int], list[tuple[str, float]]] = {}
        word_confs: list[float] = []
        for i, raw_text in enumerate(data.get("text", [])):
            text = str(raw_text).strip()
            try:
                conf = float(data["conf"][i])
            except (TypeError, ValueError):
                continue
            if not text or conf < 0:
                continue
            key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
            grouped.setdefault(key, []).append((text, conf))
            word_confs.append(conf)

        lines: list[OCRLine] = []
        for words in grouped.values():
            line_text = " ".join(word for word, _ in words)
            line_conf = sum(conf for _, conf in words) / len(words)
            lines.append(OCRLine(text=line_text, confidence=float(line_conf)))

        mean = float(sum(word_confs) / len(word_confs)) if word_confs else 0.0
        return OCRResult(lines=lines, full_text="\n".join(line.text for line in lines), mean_confidence=mean)


# PaddleOCR renamed and removed constructor kwargs between releases; try the
# richest set first and drop options the installed version rejects.
_PADDLE_KWARG_SETS = (
    {"show_log": False, "use_gpu": False},
    {"use_gpu": False},
    {},
)


def _paddle_reader(lang: str):
    try:
        from paddleocr import PaddleOCR
    except ImportError as exc:
        raise RuntimeError("PaddleOCR is not installed. Use extra: [ocr-paddle]") from exc

    rejected: Exception | None = None
    for extra in _PADDLE_KWARG_SETS:
        try:
            return PaddleOCR(use_angle_cls=True, lang=lang, **extra)
        except Exception as exc:  # noqa: BLE001 - kwargs differ per PaddleOCR release
            text = str(exc).lower()
            if "unknown argument" not in text and "unexpected keyword" not in text:
                raise
            rejected = exc
    raise RuntimeError(f"PaddleOCR rejected every constructor variant: {rejected}")


def _scaled_line(text: object, conf: object, bbox: object) -> OCRLine | None:
    """Build a line from an engine that scores 0-1; blank text is dropped."""
    value = str(text or "").strip()
    if not value:
        return None
    corners = [(float(x), float(y)) for x, y in bbox]
    return OCRLine(text=value, confidence=float(conf) * 100.0, bbox=corners)


def _result_from_lines(lines: list[OCRLine]) -> OCRResult:
    return OCRResult(
        lines=lines,
        full_text="\n".join(line.text for line in lines),
        mean_confidence=_mean_conf(lines),
    )


class PaddleBackend(OCRBackend):
    def __init__(self, lang: str) -> None:
        super().__init__(name="paddle")
        # oneDNN kernels crash on some CPU wheels; keep paddle single-threaded and off MKL-DNN.
        for key, value in (("FLAGS_use_mkldnn", "0"), ("CPU_NUM", "1"), ("OMP_NUM_THREADS", "1")):
            os.environ.setdefault(key, value)
        self._reader = _paddle_reader(lang)

    def run(self, image_bgr: np.ndarray) -> OCRResult:
        try:
            pages = self._reader.ocr(image_bgr, cls=True)
        except TypeError:
            pages = self._reader.ocr(image_bgr)

        lines: list[OCRLine] = []
        for page in pages or []:
            for entry in page or []:
                try:
                    bbox, (text, conf) = entry
                except (TypeError, ValueError):
                    continue
                line = _scaled_line(text, conf, bbox)
                if line is not None:
                    lines.append(line)
        return _result_from_lines(lines)


class EasyBackend(OCRBackend):
    def __init__(self, langs: tuple[str, ...], gpu: bool = False) -> None:
        super().__init__(name="easyocr")
        try:
            import easyocr
        except ImportError as exc:
            raise RuntimeError("EasyOCR is not installed. Use extra: [ocr-easy]") from exc
        self._reader = easyocr.Reader(list(langs), gpu=gpu, verbose=False)

    def run(self, image_bgr: np.ndarray) -> OCRResult:
        detections = self._reader.readtext(image_bgr, detail=1, paragraph=False)
        lines = []
        for entry in detections or []:
            try:
                bbox, text, conf = entry
            except (TypeError, ValueError):
                continue
            line = _scaled_line(text, conf, bbox)
            if line is not None:
                lines.append(line)
        return _result_from_lines(lines)


_ENGINE_FACTORIES = {
    "tesseract": lambda s: TesseractBackend(lang=s.tesseract_lang, psm=s.tesseract_psm),
    "paddle": lambda s: PaddleBackend(lang=s.paddle_lang),
    "easy": lambda s: EasyBackend(langs=s.easyocr_langs, gpu=s.easyocr_gpu),
}


def build_ocr_backend(settings: Settings) -> OCRBackend:
    """Build the configured engine; ``auto`` walks tesseract, paddle, easy until one loads."""
    wanted = settings.ocr_engine.strip().lower()
    if wanted == "auto":
        candidates = list(ENGINE_NAMES)
    elif wanted in _ENGINE_FACTORIES:
        candidates = [wanted]
    else:
        raise ValueError(f"Unsupported OCR_ENGINE value: {settings.ocr_engine}")

    failures: list[str] = []
    for engine in candidates:
        try:
            return _ENGINE_FACTORIES[engine](settings)
        except Exception as exc:  # noqa: BLE001 - try the next engine
            logger.info("OCR engine %s unavailable: %s", engine, exc)
            failures.append(f"{engine}: {exc}")

    raise RuntimeError("Could not initialize OCR backend. " + " | ".join(failures))
