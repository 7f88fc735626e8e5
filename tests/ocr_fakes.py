from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import numpy as np
import requests

from idscanner.models import OCRLine, OCRResult
from idscanner.ocr_backends import OCRBackend

KENYAN_ID_TEXT = "\n".join(
    [
        "JAMHURI YA KENYA REPUBLIC OF KENYA",
        "SERIAL NUMBER: 123456789 ID NUMBER: 12345678",
        "FULL NAMES",
        "JOHN KAMAU OTIENO",
        "DATE OF BIRTH",
        "15.08.1990",
        "SEX",
        "MALE",
        "DISTRICT OF BIRTH",
        "NAIROBI",
        "PLACE OF ISSUE",
        "KIBERA",
        "DATE OF ISSUE",
        "20.05.2010",
    ]
)


def blank_card(height: int = 40, width: int = 60) -> np.ndarray:
    return np.full((height, width, 3), 200, dtype=np.uint8)


class FakeBackend(OCRBackend):
    """Replays canned (text, confidence) readings, repeating the last one."""

    def __init__(self, *readings: tuple[str, float], error: Exception | None = None) -> None:
        super().__init__(name="fake")
        self.readings = list(readings)
        self.error = error
        self.calls: list[np.ndarray] = []

    def run(self, image_bgr: np.ndarray) -> OCRResult:
        self.calls.append(image_bgr)
        if self.error is not None:
            raise self.error
        text, conf = self.readings.pop(0) if len(self.readings) > 1 else self.readings[0]
        lines = [OCRLine(text=line, confidence=conf) for line in text.split("\n") if line.strip()]
        return OCRResult(lines=lines, full_text=text, mean_confidence=conf)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class StubSession:
    """Stands in for ``requests.Session``; routes are keyed by (method, path suffix)."""

    def __init__(self, routes: dict[tuple[str, str], Any] | None = None) -> None:
        self.routes = dict(routes or {})
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        for (route_method, suffix), outcome in self.routes.items():
            if route_method == method and url.endswith(suffix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        raise requests.ConnectionError(f"No route for {method} {url}")

    def calls_to(self, method: str, suffix: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["url"].endswith(suffix)]
