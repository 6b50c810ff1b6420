from __future__ import annotations

from argparse import Namespace
import contextlib
import io
import json
from pathlib import Path
import tempfile
from unittest.mock import patch
import unittest
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.cli import _configure_logging, _parse_cli_args, build_config, main
from storymap_conversion.config import ConversionConfig
from storymap_conversion.errors import ConversionCancelled


EXAMPLES_DIR = Path(__file__).resolve().parents[1] / "examples" / "classic"


def _run_main(argv: list[str]) -> str:
    buffer = io.StringIO()
    with contextlib.redirect_stdout(buffer):
        main(argv)
    return buffer.getvalue()


class CliConfigBuildTest(unittest.TestCase):
    def _base_args(self) -> Namespace:
        return Namespace(
            input=Path("story.json"),
            output_dir=None,
            stem=None,
            config_json=None,
            theme=None,
            html_engine=None,
            no_enrich=False,
            no_metadata=False,
            portal_url=None,
            token=None,
            log_level="INFO",
        )

    def test_defaults_build_default_config(self) -> None:
        cfg = build_config(self._base_args())
        self.assertEqual(cfg, ConversionConfig())

    def test_flags_override_config(self) -> None:
        args = self._base_args()
        args.theme = "obsidian"
        args.html_engine = "regex"
        args.no_enrich = True
        args.no_metadata = True
        args.portal_url = "https://gis.example.com/portal/"
        args.token = "abc"
        args.output_dir = Path("/tmp/out")

        cfg = build_config(args)

        self.assertEqual((cfg.theme_id, cfg.html_engine), ("obsidian", "regex"))
        self.assertFalse(cfg.emit_metadata)
        self.assertFalse(cfg.enrichment.enrich_maps or cfg.enrichment.enrich_scenes)
        self.assertEqual(cfg.enrichment.portal_url, "https://gis.example.com/portal")
        self.assertEqual(cfg.enrichment.token, "abc")
        self.assertEqual(cfg.output_dir, Path("/tmp/out"))

    def test_config_json_is_the_base(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            config_path = Path(tmp_dir) / "config.json"
            ConversionConfig(theme_id="summit", html_engine="regex").to_json(config_path)
            args = self._base_args()
            args.config_json = config_path
            args.theme = "obsidian"

            cfg = build_config(args)

        self.assertEqual((cfg.theme_id, cfg.html_engine), ("obsidian", "regex"))

    def test_invalid_portal_url_is_rejected(self) -> None:
        args = self._base_args()
        args.portal_url = "ftp://example.com"
        with self.assertRaises(ValueError):
            build_config(args)

    def test_invalid_log_level(self) -> None:
        with self.assertRaisesRegex(ValueError, "Invalid --log-level"):
            _configure_logging("LOUD")


class CliParseTest(unittest.TestCase):
    def test_convert_is_the_default_command(self) -> None:
        command, args = _parse_cli_args(["story.json", "--no-enrich"])
        self.assertEqual(command, "convert")
        self.assertEqual(args.input, Path("story.json"))
        self.assertTrue(args.no_enrich)

    def test_subcommands(self) -> None:
        command, args = _parse_cli_args(["detect", "story.json"])
        self.assertEqual((command, args.input), ("detect", Path("story.json")))
        command, args = _parse_cli_args(["validate", "out.json", "--log-level", "DEBUG"])
        self.assertEqual((command, args.log_level), ("validate", "DEBUG"))

    def test_theme_choices_are_enforced(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                _parse_cli_args(["story.json", "--theme", "neon"])


class CliEndToEndTest(unittest.TestCase):
    def test_detect_prints_template(self) -> None:
        self.assertEqual(_run_main(["detect", str(EXAMPLES_DIR / "tour.json")]).strip(), "Map Tour")

    def test_convert_then_validate(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            out_dir = Path(tmp_dir)
            output = _run_main(
                [str(EXAMPLES_DIR / "swipe.json"), "--output-dir", str(out_dir), "--no-enrich"]
            )
            self.assertIn("Template: Swipe", output)
            self.assertIn("Documents: 1", output)
            self.assertTrue((out_dir / "swipe.json").exists())
            self.assertTrue((out_dir / "swipe.media.txt").exists())
            summary = json.loads((out_dir / "swipe.summary.json").read_text())
            self.assertEqual(summary["template"], "Swipe")

            report = _run_main(["validate", str(out_dir / "swipe.json")])
            self.assertIn("Schema valid:", report)
            self.assertNotIn("Warnings:", report)

    def test_cancellation_exits_with_code_three(self) -> None:
        with patch("storymap_conversion.api.convert_file", side_effect=ConversionCancelled()):
            with contextlib.redirect_stderr(io.StringIO()) as stderr:
                with self.assertRaises(SystemExit) as ctx:
                    _run_main([str(EXAMPLES_DIR / "swipe.json"), "--no-enrich"])
        self.assertEqual(ctx.exception.code, 3)
        self.assertIn("cancelled", stderr.getvalue())

    def test_errors_exit_with_code_two(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            missing = Path(tmp_dir) / "missing.json"
            with self.assertLogs("storymap_conversion.cli", level="ERROR"):
                with self.assertRaises(SystemExit) as ctx:
                    _run_main(["detect", str(missing)])
        self.assertEqual(ctx.exception.code, 2)


if __name__ == "__main__":
    unittest.main()
