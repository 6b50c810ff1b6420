from __future__ import annotations

from pathlib import Path
import tempfile
import unittest
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.config import ConversionConfig, EnrichmentConfig


class ConversionConfigTest(unittest.TestCase):
    def test_defaults(self) -> None:
        cfg = ConversionConfig()

        self.assertEqual(cfg.theme_id, "auto")
        self.assertEqual(cfg.html_engine, "dom")
        self.assertTrue(cfg.emit_metadata)
        self.assertTrue(cfg.enrichment.enrich_maps)
        self.assertTrue(cfg.enrichment.enrich_scenes)
        self.assertEqual(cfg.enrichment.portal_url, "https://www.arcgis.com")

    def test_offline_preset_disables_enrichment(self) -> None:
        cfg = ConversionConfig.offline(theme_id="obsidian")
        self.assertEqual(cfg.theme_id, "obsidian")
        self.assertFalse(cfg.enrichment.enrich_maps)
        self.assertFalse(cfg.enrichment.enrich_scenes)

    def test_invalid_choices_are_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, "Allowed values: auto, summit, obsidian"):
            ConversionConfig(theme_id="sunset")
        with self.assertRaises(ValueError):
            ConversionConfig(html_engine="lxml")

    def test_enrichment_validation(self) -> None:
        self.assertEqual(EnrichmentConfig(portal_url="https://org.example.com/portal/").portal_url,
                         "https://org.example.com/portal")
        with self.assertRaises(ValueError):
            EnrichmentConfig(portal_url="ftp://example.com")
        with self.assertRaises(ValueError):
            EnrichmentConfig(request_timeout=0)
        with self.assertRaises(ValueError):
            EnrichmentConfig(max_concurrency=0)

    def test_from_dict_inverts_legacy_suppress_flag(self) -> None:
        loaded = ConversionConfig.from_dict(
            {
                "theme_id": "summit",
                "suppress_metadata": True,
                "output_dir": "outputs/custom",
                "enrichment": {"enrich_scenes": False, "max_concurrency": 2},
            }
        )

        self.assertFalse(loaded.emit_metadata)
        self.assertEqual(loaded.output_dir, Path("outputs/custom"))
        self.assertFalse(loaded.enrichment.enrich_scenes)
        self.assertTrue(loaded.enrichment.enrich_maps)
        self.assertEqual(loaded.enrichment.max_concurrency, 2)

    def test_json_round_trip(self) -> None:
        cfg = ConversionConfig(theme_id="obsidian", html_engine="regex", emit_metadata=False)
        cfg.enrichment.token = "secret"

        with tempfile.TemporaryDirectory() as tmp_dir:
            config_path = Path(tmp_dir) / "config.json"
            cfg.to_json(config_path)
            loaded = ConversionConfig.from_json(config_path)

        self.assertEqual(loaded.theme_id, "obsidian")
        self.assertEqual(loaded.html_engine, "regex")
        self.assertFalse(loaded.emit_metadata)
        self.assertEqual(loaded.enrichment.token, "secret")
        self.assertIsInstance(loaded.to_dict()["output_dir"], str)


if __name__ == "__main__":
    unittest.main()
