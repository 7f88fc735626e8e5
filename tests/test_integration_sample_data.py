from __future__ import annotations

import os
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

_RUN = os.getenv("RUN_OCR_INTEGRATION", "0") == "1"
_SAMPLE = Path(os.getenv("SAMPLE_ID_IMAGE", Path(__file__).resolve().parents[1] / "sample_data" / "kenyan-id.jpg"))


@unittest.skipUnless(_RUN and _SAMPLE.exists(), "Set RUN_OCR_INTEGRATION=1 and provide sample_data/kenyan-id.jpg")
class SampleKenyanIDIntegrationTests(unittest.TestCase):
    def test_reads_id_number_from_sample_card(self) -> None:
        from idscanner.config import load_settings
        from idscanner.pipeline import scan_id_card

        result = scan_id_card(str(_SAMPLE), settings=load_settings())

        self.assertTrue(result.success, result.errors)
        self.assertRegex(result.id_number, r"^\d{7,8}$")
        self.assertNotEqual(result.id_number, result.serial_number)

        expected_id = os.getenv("SAMPLE_ID_NUMBER")
        if expected_id:
            self.assertEqual(result.id_number, expected_id)


if __name__ == "__main__":
    unittest.main()
