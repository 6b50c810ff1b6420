"""Command-line entrypoints for storymap_conversion."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from importlib import metadata

from .config import SUPPORTED_HTML_ENGINES, SUPPORTED_THEME_IDS, ConversionConfig
from .errors import ConversionCancelled


COMMANDS = ("convert", "detect", "validate")


def _package_version() -> str:
    try:
        return metadata.version("classic-storymap-conversion")
    except metadata.PackageNotFoundError:
        return "0.1.0"


def _configure_logging(log_level: str) -> None:
    level_name = (log_level or "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ValueError(
            f"Invalid --log-level: {log_level!r}. "
            "Allowed values: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        )
    logging.basicConfig(level=level, format="%(message)s", force=True)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--version",
        action="version",
        version=f"smconvert {_package_version()}",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        help="Python logging level.",
    )


def _build_convert_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smconvert convert",
        description=(
            "Convert a classic story application JSON document into one or more "
            "story graph documents. Use `smconvert detect` to only classify the input."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    _add_common_arguments(parser)
    parser.add_argument("input", type=Path, help="Classic application JSON (bare or {item, data}).")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory for documents, media list and summary (default: config output_dir).",
    )
    parser.add_argument(
        "--stem",
        type=str,
        default=None,
        help="Base file name for outputs (default: input file stem).",
    )
    parser.add_argument(
        "--config-json",
        type=Path,
        default=None,
        help="Optional JSON file serialized from ConversionConfig.",
    )
    parser.add_argument(
        "--theme",
        type=str,
        default=None,
        choices=SUPPORTED_THEME_IDS,
        help="Force a theme instead of deriving it from the legacy document.",
    )
    parser.add_argument(
        "--html-engine",
        type=str,
        default=None,
        choices=SUPPORTED_HTML_ENGINES,
        help="Markup parser used for narrative content.",
    )
    parser.add_argument(
        "--no-enrich",
        action="store_true",
        help="Do not contact the portal; map and scene resources stay minimal placeholders.",
    )
    parser.add_argument(
        "--no-metadata",
        action="store_true",
        help="Do not emit the converter-metadata resource.",
    )
    parser.add_argument("--portal-url", type=str, default=None, help="Portal base URL.")
    parser.add_argument("--token", type=str, default=None, help="Portal access token.")
    return parser


def _build_detect_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smconvert detect",
        description="Print the template label of a classic application JSON document.",
    )
    _add_common_arguments(parser)
    parser.add_argument("input", type=Path)
    return parser


def _build_validate_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smconvert validate",
        description="Validate a converted story document JSON and print a report.",
    )
    _add_common_arguments(parser)
    parser.add_argument("input", type=Path)
    return parser


def _parse_cli_args(argv: list[str] | None = None) -> tuple[str, argparse.Namespace]:
    tokens = list(sys.argv[1:] if argv is None else argv)
    command = "convert"
    if tokens and tokens[0] in COMMANDS:
        command = tokens[0]
        tokens = tokens[1:]
    if command == "detect":
        return command, _build_detect_parser().parse_args(tokens)
    if command == "validate":
        return command, _build_validate_parser().parse_args(tokens)
    return command, _build_convert_parser().parse_args(tokens)


def build_config(args: argparse.Namespace) -> ConversionConfig:
    if args.config_json is not None:
        config = ConversionConfig.from_json(args.config_json)
    else:
        config = ConversionConfig()
    if args.theme is not None:
        config.theme_id = args.theme
    if args.html_engine is not None:
        config.html_engine = args.html_engine
    if args.no_metadata:
        config.emit_metadata = False
    if args.output_dir is not None:
        config.output_dir = args.output_dir
    enrichment = config.enrichment
    if args.no_enrich:
        enrichment.enrich_maps = False
        enrichment.enrich_scenes = False
    if args.portal_url is not None:
        enrichment.portal_url = args.portal_url
    if args.token is not None:
        enrichment.token = args.token
    config.__post_init__()
    enrichment.__post_init__()
    return config


def _read_classic(input_path: Path) -> dict:
    payload = json.loads(input_path.read_text(encoding="utf-8"))
    if isinstance(payload, dict) and "values" not in payload and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload


def _run_convert(args: argparse.Namespace) -> None:
    from .api import convert_file
    from .artifacts import write_conversion_outputs

    config = build_config(args)
    result = convert_file(args.input, config)
    artifacts = write_conversion_outputs(result, config.output_dir, args.stem or args.input.stem)

    print(f"Template: {result.template}")
    print(f"Output: {artifacts.output_dir}")
    print(f"Documents: {len(artifacts.document_files)}")
    for title, path in zip(result.entry_titles, artifacts.document_files):
        print(f"  {title} -> {path}")
    print(f"Media URLs: {len(result.media_urls)} -> {artifacts.media_file}")
    if result.warnings:
        print("Warnings:")
        for warning in result.warnings:
            print(f"  - {warning}")


def _run_detect(args: argparse.Namespace) -> None:
    from .classifier import detect_template

    print(detect_template(_read_classic(args.input)))


def _run_validate(args: argparse.Namespace) -> None:
    from .schema import validate_storymap_file

    report = validate_storymap_file(args.input)
    print(f"Schema valid: {args.input}")
    print(f"  schema_version: {report['schema_version']}")
    print(f"  root: {report['root']}")
    print(
        f"  nodes={report['num_nodes']} resources={report['num_resources']} "
        f"actions={report['num_actions']}"
    )
    if report["warnings"]:
        print("Warnings:")
        for warning in report["warnings"]:
            print(f"  - {warning}")


def main(argv: list[str] | None = None) -> None:
    command, args = _parse_cli_args(argv)
    try:
        _configure_logging(getattr(args, "log_level", "INFO"))
        if command == "detect":
            _run_detect(args)
            return
        if command == "validate":
            _run_validate(args)
            return
        _run_convert(args)
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        raise SystemExit(130) from None
    except ConversionCancelled as exc:
        print(str(exc), file=sys.stderr)
        raise SystemExit(3) from None
    except Exception as exc:  # noqa: BLE001
        logger = logging.getLogger(__name__)
        if logging.getLogger().handlers:
            logger.error("Error: %s", exc)
            if logger.isEnabledFor(logging.DEBUG):
                logger.exception("Detailed traceback")
        else:
            print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(2) from None


if __name__ == "__main__":
    main()
