from __future__ import annotations

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
sys.path.insert(0, str(Path(__file__).resolve().parent))

import requests

from idscanner.api_client import CONNECTION_ERROR, DEFAULT_LOCKOUT_SECONDS, ApiClient, RateLimitStatus
from idscanner.config import Settings
from idscanner.errors import AlreadyRegisteredError, ApiError, RateLimitedError
from idscanner.found_id import MAX_SCANS, FoundIdScanner, build_found_id_payload, format_remaining_time
from idscanner.models import ScanResult
from ocr_fakes import KENYAN_ID_TEXT, FakeBackend, FakeResponse, StubSession, blank_card

BASE_URL = "http://api.test/api"


def _status(allowed: bool = True, remaining: int = 4, seconds: int = 0) -> FakeResponse:
    return FakeResponse(
        200,
        {"allowed": allowed, "scansRemaining": remaining, "maxScans": MAX_SCANS, "remainingSeconds": seconds},
    )


def _scanner(routes: dict, backend: FakeBackend | None = None) -> tuple[FoundIdScanner, StubSession]:
    session = StubSession(routes)
    client = ApiClient(BASE_URL, session=session)
    settings = Settings(face_store_path="unused.json")
    backend = backend or FakeBackend((KENYAN_ID_TEXT, 91.0))
    return FoundIdScanner(client, settings=settings, backend=backend), session


def _scanned() -> ScanResult:
    return ScanResult(success=True, id_number="12345678", full_names="JOHN KAMAU OTIENO", date_of_birth="1990-08-15")


class RemainingTimeTests(unittest.TestCase):
    def test_format(self) -> None:
        self.assertEqual(format_remaining_time(2 * 3600 + 5 * 60), "2 hours and 5 minutes")
        self.assertEqual(format_remaining_time(3600 + 60), "1 hour and 1 minute")
        self.assertEqual(format_remaining_time(60), "1 minute")
        self.assertEqual(format_remaining_time(30), "0 minutes")


class PayloadTests(unittest.TestCase):
    def test_payload_fields(self) -> None:
        payload = build_found_id_payload(_scanned(), " 0712345678 ", "Bus stop", "  ")
        self.assertEqual(
            payload,
            {
                "idNumber": "12345678",
                "fullName": "JOHN KAMAU OTIENO",
                "dateOfBirth": "1990-08-15",
                "finderPhone": "0712345678",
                "foundLocation": "Bus stop",
                "collectionLocation": None,
            },
        )

    def test_name_falls_back_to_first_and_last(self) -> None:
        result = ScanResult(success=True, id_number="12345678", first_name="JOHN", last_name="OTIENO")
        self.assertEqual(build_found_id_payload(result, "0712")["fullName"], "JOHN OTIENO")

    def test_requires_id_name_and_phone(self) -> None:
        with self.assertRaises(ValueError):
            build_found_id_payload(ScanResult(full_names="JOHN OTIENO"), "0712")
        with self.assertRaises(ValueError):
            build_found_id_payload(ScanResult(success=True, id_number="12345678"), "0712")
        with self.assertRaises(ValueError):
            build_found_id_payload(_scanned(), "   ")


class FoundIdScannerTests(unittest.TestCase):
    def test_scan_records_usage(self) -> None:
        scanner, session = _scanner(
            {
                ("GET", "found-ids/rate-limit"): _status(remaining=4),
                ("POST", "found-ids/scan"): _status(remaining=3),
            }
        )
        result = scanner.scan(blank_card())

        self.assertEqual(result.id_number, "12345678")
        self.assertEqual(scanner.scans_remaining, 3)
        self.assertFalse(scanner.rate_limited)
        self.assertEqual(len(session.calls_to("POST", "found-ids/scan")), 1)

    def test_last_scan_locks_out(self) -> None:
        scanner, _ = _scanner(
            {
                ("GET", "found-ids/rate-limit"): _status(remaining=1),
                ("POST", "found-ids/scan"): _status(allowed=True, remaining=0, seconds=7200),
            }
        )
        scanner.scan(blank_card())
        self.assertTrue(scanner.rate_limited)
        self.assertEqual(scanner.remaining_seconds, 7200)

    def test_scan_refused_when_limit_reached(self) -> None:
        scanner, session = _scanner(
            {("GET", "found-ids/rate-limit"): _status(allowed=False, remaining=0, seconds=2 * 3600 + 5 * 60)}
        )
        with self.assertRaises(RateLimitedError) as ctx:
            scanner.scan(blank_card())

        self.assertIn("maximum of 5 scans", str(ctx.exception))
        self.assertIn("2 hours and 5 minutes", str(ctx.exception))
        self.assertEqual(ctx.exception.remaining_seconds, 2 * 3600 + 5 * 60)
        self.assertTrue(scanner.rate_limited)
        self.assertEqual(session.calls_to("POST", "found-ids/scan"), [])

    def test_server_429_on_record_locks_out_but_keeps_result(self) -> None:
        scanner, _ = _scanner(
            {
                ("GET", "found-ids/rate-limit"): _status(),
                ("POST", "found-ids/scan"): FakeResponse(429, {"error": "limit"}),
            }
        )
        result = scanner.scan(blank_card())
        self.assertTrue(result.success)
        self.assertTrue(scanner.rate_limited)
        self.assertEqual(scanner.remaining_seconds, DEFAULT_LOCKOUT_SECONDS)
        self.assertEqual(scanner.scans_remaining, 0)

    def test_unreachable_server_does_not_block_scanning(self) -> None:
        scanner, _ = _scanner({})
        with self.assertLogs("idscanner.found_id", level="WARNING"):
            result = scanner.scan(blank_card())
        self.assertTrue(result.success)
        self.assertFalse(scanner.rate_limited)

    def test_crashed_scan_is_not_recorded(self) -> None:
        scanner, session = _scanner(
            {
                ("GET", "found-ids/rate-limit"): _status(remaining=4),
                ("POST", "found-ids/scan"): _status(remaining=3),
            },
            backend=FakeBackend(error=RuntimeError("engine crashed")),
        )
        with self.assertLogs("idscanner.pipeline", level="ERROR"):
            result = scanner.scan(blank_card())

        self.assertFalse(result.success)
        self.assertEqual(session.calls_to("POST", "found-ids/scan"), [])
        self.assertEqual(scanner.scans_remaining, 4)

    def test_unreadable_card_is_still_recorded(self) -> None:
        scanner, session = _scanner(
            {
                ("GET", "found-ids/rate-limit"): _status(remaining=4),
                ("POST", "found-ids/scan"): _status(remaining=3),
            },
            backend=FakeBackend(("JAMHURI YA KENYA", 80.0)),
        )
        result = scanner.scan(blank_card())
        self.assertFalse(result.success)
        self.assertEqual(len(session.calls_to("POST", "found-ids/scan")), 1)
        self.assertEqual(scanner.scans_remaining, 3)

    def test_malformed_rate_limit_reply_does_not_block_scanning(self) -> None:
        scanner, _ = _scanner(
            {
                ("GET", "found-ids/rate-limit"): FakeResponse(
                    200, {"allowed": None, "scansRemaining": "lots", "maxScans": None, "remainingSeconds": None}
                ),
                ("POST", "found-ids/scan"): FakeResponse(200, {"scansRemaining": 2, "remainingSeconds": "soon"}),
            }
        )
        result = scanner.scan(blank_card())
        self.assertTrue(result.success)
        self.assertEqual(scanner.scans_remaining, 2)
        self.assertFalse(scanner.rate_limited)

    def test_rate_limit_status_parsing_defaults(self) -> None:
        status = RateLimitStatus.from_json({"remainingSeconds": None, "scansRemaining": "x"})
        self.assertTrue(status.allowed)
        self.assertEqual(status.remaining_seconds, 0)
        self.assertEqual(status.scans_remaining, 0)
        self.assertEqual(RateLimitStatus.from_json({"allowed": False, "remainingSeconds": "90"}).remaining_seconds, 90)

    def test_refresh_with_no_scans_left_locks_out(self) -> None:
        scanner, _ = _scanner({("GET", "found-ids/rate-limit"): _status(allowed=True, remaining=0, seconds=600)})
        scanner.refresh_rate_limit()
        self.assertTrue(scanner.rate_limited)
        self.assertEqual(scanner.remaining_seconds, 600)
        self.assertEqual(scanner.scans_remaining, 0)

    def test_submit(self) -> None:
        scanner, session = _scanner(
            {
                ("GET", "found-ids/rate-limit"): _status(remaining=2),
                ("POST", "found-ids"): FakeResponse(201, {"id": 7}),
            }
        )
        response = scanner.submit(_scanned(), "0712345678", "Market")

        self.assertEqual(response, {"id": 7})
        sent = session.calls_to("POST", "found-ids")[0]
        self.assertEqual(sent["json"]["idNumber"], "12345678")
        self.assertEqual(sent["json"]["fullName"], "JOHN KAMAU OTIENO")
        self.assertEqual(sent["headers"], {"Content-Type": "application/json"})
        self.assertEqual(scanner.scans_remaining, 2)

    def test_submit_rate_limited_by_code(self) -> None:
        scanner, _ = _scanner({("POST", "found-ids"): FakeResponse(400, {"code": "RATE_LIMITED"})})
        with self.assertRaises(RateLimitedError) as ctx:
            scanner.submit(_scanned(), "0712345678")
        self.assertIn("Upload limit reached", str(ctx.exception))
        self.assertTrue(scanner.rate_limited)
        self.assertEqual(scanner.remaining_seconds, DEFAULT_LOCKOUT_SECONDS)

    def test_submit_already_registered(self) -> None:
        scanner, _ = _scanner({("POST", "found-ids"): FakeResponse(409, {"code": "ALREADY_REGISTERED"})})
        with self.assertRaises(AlreadyRegisteredError) as ctx:
            scanner.submit(_scanned(), "0712345678")
        self.assertEqual(ctx.exception.status, 409)
        self.assertFalse(scanner.rate_limited)

    def test_submit_other_error_uses_server_message(self) -> None:
        scanner, _ = _scanner({("POST", "found-ids"): FakeResponse(500, {"error": "Database unavailable"})})
        with self.assertRaises(ApiError) as ctx:
            scanner.submit(_scanned(), "0712345678")
        self.assertEqual(str(ctx.exception), "Database unavailable")
        self.assertEqual(ctx.exception.status, 500)

    def test_connection_failure(self) -> None:
        scanner, _ = _scanner({("POST", "found-ids"): requests.Timeout("slow")})
        with self.assertRaises(ApiError) as ctx:
            scanner.submit(_scanned(), "0712345678")
        self.assertEqual(str(ctx.exception), CONNECTION_ERROR)


if __name__ == "__main__":
    unittest.main()
