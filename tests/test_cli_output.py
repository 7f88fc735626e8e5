from __future__ import annotations

import io
import json
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from idscanner.cli import build_parser, main, save_result_json
from idscanner.models import ScanResult


class CliOutputTests(unittest.TestCase):
    def test_save_result_json_writes_file(self) -> None:
        payload = {"id_number": "12345678"}
        with tempfile.TemporaryDirectory() as tmp:
            out_path = save_result_json(payload, input_file="photos/Kenyan ID (front).jpg", output_dir=tmp)
            self.assertTrue(out_path.exists())
            data = json.loads(out_path.read_text(encoding="utf-8"))
            self.assertEqual(data["id_number"], "12345678")
            self.assertTrue(out_path.name.startswith("Kenyan_ID_front_"))
            self.assertEqual(out_path.suffix, ".json")

    def test_parser_defaults(self) -> None:
        args = build_parser().parse_args(["--file", "card.jpg"])
        self.assertEqual(args.rotation, 0)
        self.assertIsNone(args.ocr_engine)
        self.assertFalse(args.submit_found)

    def test_main_prints_and_saves_result(self) -> None:
        scanned = ScanResult(success=True, id_number="12345678", full_names="JOHN KAMAU OTIENO")
        with tempfile.TemporaryDirectory() as tmp:
            image = Path(tmp) / "card.jpg"
            image.write_bytes(b"placeholder")
            out = io.StringIO()
            with mock.patch("idscanner.pipeline.scan_id_card", return_value=scanned) as scan, redirect_stdout(out):
                main(["--file", str(image), "--output-dir", tmp, "--expected-first-name", "John", "--rotation", "90"])

            printed = json.loads(out.getvalue())
            self.assertEqual(printed["id_number"], "12345678")
            self.assertTrue(Path(printed["output_file"]).exists())
            self.assertEqual(scan.call_args.args[1], "John")
            self.assertEqual(scan.call_args.kwargs["rotation"], 90)

    def test_main_exits_non_zero_on_failed_scan(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            image = Path(tmp) / "card.jpg"
            image.write_bytes(b"placeholder")
            with mock.patch("idscanner.pipeline.scan_id_card", return_value=ScanResult.failed()), redirect_stdout(
                io.StringIO()
            ):
                with self.assertRaises(SystemExit) as ctx:
                    main(["--file", str(image), "--output-dir", tmp])
            self.assertEqual(ctx.exception.code, 1)

    def test_main_rejects_missing_file(self) -> None:
        with self.assertRaises(SystemExit):
            main(["--file", "/nonexistent/card.jpg"])


if __name__ == "__main__":
    unittest.main()
