from __future__ import annotations


class IDScannerError(Exception):
    """Base class for failures raised by the scan flows and the API client."""


class ApiError(IDScannerError):
    def __init__(self, message: str, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class SessionExpiredError(ApiError):
    pass


class RateLimitedError(ApiError):
    def __init__(self, message: str, remaining_seconds: int = 86400) -> None:
        super().__init__(message, status=429, code="RATE_LIMITED")
        self.remaining_seconds = remaining_seconds


class AlreadyRegisteredError(ApiError):
    pass


class VerificationError(IDScannerError):
    pass


class IdentityMismatchError(VerificationError):
    pass
