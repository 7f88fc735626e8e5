from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import load_settings
from .ocr_backends import ENGINE_NAMES


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kenyan national ID card scanner (OCR + field extraction).")
    parser.add_argument("--file", required=True, help="Path to the ID card image.")
    parser.add_argument("--expected-first-name", default=None, help="Account holder's first name.")
    parser.add_argument("--expected-last-name", default=None, help="Account holder's last name.")
    parser.add_argument(
        "--output-dir",
        default="output",
        help="Where the result JSON is written (default: output).",
    )
    parser.add_argument(
        "--ocr-engine",
        default=None,
        choices=["auto", *ENGINE_NAMES],
        help="OCR engine for this run (defaults to OCR_ENGINE).",
    )
    parser.add_argument(
        "--rotation",
        type=int,
        default=0,
        choices=[0, 90, 180, 270],
        help="Rotate the image clockwise before scanning.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log OCR text and extracted fields.")

    found = parser.add_argument_group("found ID registry")
    found.add_argument("--submit-found", action="store_true", help="Register the scanned card as found.")
    found.add_argument("--finder-phone", default=None, help="Phone number the owner can call.")
    found.add_argument("--found-location", default=None)
    found.add_argument("--collection-location", default=None)
    found.add_argument("--api-url", default=None, help="Override API_BASE_URL.")
    return parser


def _safe_stem(path: Path) -> str:
    stem = re.sub(r"[^A-Za-z0-9_.-]+", "_", path.stem).strip("._")
    return stem or "id_card"


def save_result_json(payload: dict[str, Any], input_file: str, output_dir: str) -> Path:
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    src = Path(input_file)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    filename = f"{_safe_stem(src)}_{timestamp}.json"
    out_path = out_dir / filename
    out_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return out_path


def main(argv: list[str] | None = None) -> None:
    from .api_client import ApiClient
    from .errors import IDScannerError
    from .found_id import FoundIdScanner
    from .pipeline import scan_id_card

    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings()
    if args.ocr_engine:
        settings = replace(settings, ocr_engine=args.ocr_engine)
    if args.api_url:
        settings = replace(settings, api_base_url=args.api_url.rstrip("/"))

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not Path(args.file).exists():
        raise SystemExit(f"Input file does not exist: {args.file}")

    submission: dict[str, Any] | None = None
    if args.submit_found:
        scanner = FoundIdScanner(ApiClient.from_settings(settings), settings=settings)
        try:
            result = scanner.scan(args.file, rotation=args.rotation)
            submission = scanner.submit(
                result,
                finder_phone=args.finder_phone or "",
                found_location=args.found_location,
                collection_location=args.collection_location,
            )
        except (IDScannerError, ValueError) as exc:
            raise SystemExit(str(exc)) from exc
    else:
        result = scan_id_card(
            args.file,
            args.expected_first_name,
            args.expected_last_name,
            settings=settings,
            rotation=args.rotation,
        )

    payload = result.to_dict()
    if submission is not None:
        payload["submission"] = submission
    out_path = save_result_json(payload, input_file=args.file, output_dir=args.output_dir)
    payload["output_file"] = str(out_path)
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
