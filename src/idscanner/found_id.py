from __future__ import annotations

import logging
from typing import Any

from .api_client import ApiClient, RateLimitStatus
from .config import Settings, load_settings
from .errors import ApiError, RateLimitedError
from .input_loader import ImageInput
from .models import ScanErr, ScanResult
from .ocr_backends import OCRBackend, ProgressCallback
from .pipeline import scan_id_card

logger = logging.getLogger(__name__)

# Mirrors the backend's daily allowance per device.
MAX_SCANS = 5


def format_remaining_time(seconds: int) -> str:
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    minute_part = f"{minutes} minute{'s' if minutes != 1 else ''}"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} and {minute_part}"
    return minute_part


def build_found_id_payload(
    result: ScanResult,
    finder_phone: str,
    found_location: str | None = None,
    collection_location: str | None = None,
) -> dict[str, Any]:
    name = result.display_name
    if isinstance(result.outcome(), ScanErr) or not name:
        raise ValueError("Cannot upload: ID number and name are required. Please scan a clearer image.")
    if not finder_phone or not finder_phone.strip():
        raise ValueError("Please enter your phone number so the owner can contact you.")

    return {
        "idNumber": result.id_number,
        "fullName": name,
        "dateOfBirth": result.date_of_birth,
        "finderPhone": finder_phone.strip(),
        "foundLocation": (found_location or "").strip() or None,
        "collectionLocation": (collection_location or "").strip() or None,
    }


class FoundIdScanner:
    """Public flow for registering an ID card someone has found."""

    def __init__(
        self,
        client: ApiClient,
        settings: Settings | None = None,
        backend: OCRBackend | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or load_settings()
        self.backend = backend
        self.rate_limited = False
        self.remaining_seconds = 0
        self.scans_remaining = MAX_SCANS

    def _apply_status(self, status: RateLimitStatus) -> None:
        self.scans_remaining = status.scans_remaining
        self.rate_limited = not status.allowed or status.scans_remaining == 0
        self.remaining_seconds = status.remaining_seconds if self.rate_limited else 0

    def _lock_out(self, remaining_seconds: int) -> None:
        self.rate_limited = True
        self.remaining_seconds = remaining_seconds
        self.scans_remaining = 0

    def refresh_rate_limit(self) -> RateLimitStatus | None:
        try:
            status = self.client.get_found_id_rate_limit()
        except ApiError as exc:
            logger.warning("Failed to fetch rate limit status: %s", exc)
            return None
        self._apply_status(status)
        return status

    def scan(
        self,
        image: ImageInput,
        on_progress: ProgressCallback | None = None,
        rotation: int = 0,
    ) -> ScanResult:
        status = self.refresh_rate_limit()
        if status is not None and not status.allowed:
            wait = format_remaining_time(status.remaining_seconds)
            raise RateLimitedError(
                f"You have reached the maximum of {MAX_SCANS} scans. Please try again in {wait}.",
                remaining_seconds=status.remaining_seconds,
            )

        result = scan_id_card(
            image,
            on_progress=on_progress,
            settings=self.settings,
            backend=self.backend,
            rotation=rotation,
        )
        if result.ocr_engine is None:
            # No OCR reading, nothing to record.
            return result
        self._record_scan()
        return result

    def _record_scan(self) -> None:
        try:
            self._apply_status(self.client.record_found_id_scan())
        except RateLimitedError as exc:
            self._lock_out(exc.remaining_seconds)
        except ApiError as exc:
            # Recording is bookkeeping; the scan result stands regardless.
            logger.warning("Failed to record scan: %s", exc)

    def submit(
        self,
        result: ScanResult,
        finder_phone: str,
        found_location: str | None = None,
        collection_location: str | None = None,
    ) -> dict[str, Any]:
        payload = build_found_id_payload(result, finder_phone, found_location, collection_location)
        try:
            response = self.client.submit_found_id(payload)
        except RateLimitedError as exc:
            self._lock_out(exc.remaining_seconds)
            raise
        self.refresh_rate_limit()
        return response
