from __future__ import annotations

import json
from pathlib import Path
import tempfile
import unittest
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.api import convert_file
from storymap_conversion.artifacts import safe_stem, write_conversion_outputs
from storymap_conversion.config import ConversionConfig


EXAMPLES_DIR = Path(__file__).resolve().parents[1] / "examples" / "classic"


class ConversionArtifactsTest(unittest.TestCase):
    def test_series_writes_one_document_per_entry(self) -> None:
        result = convert_file(EXAMPLES_DIR / "series.json", ConversionConfig.offline())
        with tempfile.TemporaryDirectory() as tmp_dir:
            artifacts = write_conversion_outputs(result, Path(tmp_dir), "Atlas of change")
            names = [path.name for path in artifacts.document_files]
            summary = json.loads(artifacts.summary_file.read_text())
            first = json.loads(artifacts.document_files[0].read_text())

        self.assertEqual(names, ["Atlas-of-change-1.json", "Atlas-of-change-2.json", "Atlas-of-change-3.json"])
        self.assertEqual(summary["entry_titles"], ["Overview", "Land use", "Field notes"])
        self.assertEqual(summary["series_settings"]["panelPosition"], "start")
        self.assertEqual(summary["artifacts"]["document_files"][0], "Atlas-of-change-1.json")
        self.assertEqual(first["root"], result.documents[0].root)

    def test_media_list_and_single_document(self) -> None:
        result = convert_file(EXAMPLES_DIR / "tour.json", ConversionConfig.offline())
        with tempfile.TemporaryDirectory() as tmp_dir:
            artifacts = write_conversion_outputs(result, Path(tmp_dir), "tour")
            media = artifacts.media_file.read_text().splitlines()
            self.assertEqual([p.name for p in artifacts.document_files], ["tour.json"])

        self.assertEqual(media, result.media_urls)
        self.assertIn("https://example.com/tour/1.jpg", media)
        self.assertIsNone(result.to_dict().get("series_settings"))

    def test_safe_stem(self) -> None:
        self.assertEqual(safe_stem("My story / v2"), "My-story-v2")
        self.assertEqual(safe_stem("///"), "story")


if __name__ == "__main__":
    unittest.main()
