from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests

from .config import Settings
from .errors import AlreadyRegisteredError, ApiError, RateLimitedError, SessionExpiredError

logger = logging.getLogger(__name__)

CONNECTION_ERROR = "Failed to connect to server. Please check your connection and try again."
DEFAULT_LOCKOUT_SECONDS = 86400


@dataclass(slots=True)
class RateLimitStatus:
    allowed: bool
    scans_remaining: int
    max_scans: int
    remaining_seconds: int

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> RateLimitStatus:
        allowed = data.get("allowed")
        return cls(
            allowed=True if allowed is None else bool(allowed),
            scans_remaining=_int_field(data, "scansRemaining"),
            max_scans=_int_field(data, "maxScans"),
            remaining_seconds=_int_field(data, "remainingSeconds"),
        )


def _int_field(data: dict[str, Any], key: str, default: int = 0) -> int:
    # Missing, null and non-numeric values all read as the default.
    try:
        return int(data.get(key) or default)
    except (TypeError, ValueError):
        return default


def _json_or_empty(response: requests.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class ApiClient:
    """Thin wrapper over the backend endpoints used by the scan flows."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, session: requests.Session | None = None) -> ApiClient:
        return cls(settings.api_base_url, token=settings.api_token, timeout=settings.api_timeout, session=session)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, auth: bool, json_body: bool = True) -> dict[str, str]:
        headers: dict[str, str] = {}
        if json_body:
            headers["Content-Type"] = "application/json"
        if auth and self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, auth: bool = False, **kwargs: Any) -> requests.Response:
        json_body = "files" not in kwargs
        try:
            response = self.session.request(
                method,
                self._url(path),
                headers=self._headers(auth, json_body=json_body),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiError(CONNECTION_ERROR) from exc

        if auth and response.status_code in (401, 403):
            # Token is expired or invalid.
            self.token = None
            raise SessionExpiredError("Session expired. Please log in again.", status=response.status_code)
        return response

    def file_url(self, filename: str | None) -> str:
        if not filename:
            return ""
        if filename.startswith(("http://", "https://")):
            return filename
        return self._url(f"files/{filename}")

    # --- found IDs ---

    def get_found_id_rate_limit(self) -> RateLimitStatus:
        response = self._request("GET", "found-ids/rate-limit")
        if not response.ok:
            raise ApiError("Failed to fetch rate limit status", status=response.status_code)
        return RateLimitStatus.from_json(_json_or_empty(response))

    def record_found_id_scan(self) -> RateLimitStatus:
        response = self._request("POST", "found-ids/scan")
        data = _json_or_empty(response)
        if response.status_code == 429:
            raise RateLimitedError(
                data.get("error") or "Scan limit reached.",
                remaining_seconds=_int_field(data, "remainingSeconds", DEFAULT_LOCKOUT_SECONDS),
            )
        if not response.ok:
            raise ApiError("Failed to record scan", status=response.status_code)
        return RateLimitStatus.from_json(data)

    def submit_found_id(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", "found-ids", json=payload)
        data = _json_or_empty(response)
        if response.ok:
            return data

        code = data.get("code")
        if code == "RATE_LIMITED" or response.status_code == 429:
            raise RateLimitedError(
                "Upload limit reached. Please try again after 24 hours.",
                remaining_seconds=_int_field(data, "remainingSeconds", DEFAULT_LOCKOUT_SECONDS),
            )
        if code == "ALREADY_REGISTERED":
            raise AlreadyRegisteredError(
                "This ID has already been registered by someone else.",
                status=response.status_code,
                code=code,
            )
        raise ApiError(
            data.get("error") or "Failed to upload ID. Please try again.",
            status=response.status_code,
            code=code,
        )

    # --- verification ---

    def upload_file(self, content: bytes | str | Path, filename: str = "national-id.png") -> dict[str, Any]:
        if isinstance(content, (str, Path)):
            path = Path(content)
            filename = path.name
            content = path.read_bytes()
        response = self._request("POST", "files/upload", auth=True, files={"file": (filename, content)})
        if not response.ok:
            raise ApiError("Failed to upload file", status=response.status_code)
        return _json_or_empty(response)

    def submit_verification(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", "auth/verification/submit", auth=True, json=payload)
        data = _json_or_empty(response)
        if not response.ok:
            raise ApiError(data.get("message") or "Failed to submit verification", status=response.status_code)
        return data

    def get_verification_status(self) -> dict[str, Any]:
        response = self._request("GET", "auth/verification/status", auth=True)
        if not response.ok:
            raise ApiError("Failed to get verification status", status=response.status_code)
        return _json_or_empty(response)
