#!/usr/bin/env python3
"""Regenerate converted sample documents under samples/ from examples/classic."""

from __future__ import annotations

import argparse
from pathlib import Path
import shutil
import sys


def _resolve_src_dir() -> Path:
    return Path(__file__).resolve().parents[1] / "src"


SRC_DIR = _resolve_src_dir()
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.api import convert_file  # noqa: E402
from storymap_conversion.artifacts import write_conversion_outputs  # noqa: E402
from storymap_conversion.config import ConversionConfig  # noqa: E402


def _sample_inputs(project_root: Path) -> list[Path]:
    return sorted((project_root / "examples" / "classic").glob("*.json"))


def _check_output_root(project_root: Path, output_root: Path) -> None:
    if output_root == project_root or output_root in project_root.parents:
        raise SystemExit(f"Refusing unsafe output_root: {output_root}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Regenerate samples/ from examples/classic")
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path(__file__).resolve().parents[1],
        help="Repository root",
    )
    parser.add_argument(
        "--output-root",
        type=Path,
        default=Path("samples"),
        help="Sample output root (relative to project root unless absolute)",
    )
    parser.add_argument(
        "--no-clean",
        action="store_true",
        help="Do not remove existing output root before regeneration",
    )
    parser.add_argument(
        "--theme",
        type=str,
        default="auto",
        help="Theme id passed to every conversion",
    )
    args = parser.parse_args()

    project_root = args.project_root.resolve()
    output_root = args.output_root if args.output_root.is_absolute() else (project_root / args.output_root)
    output_root = output_root.resolve()
    _check_output_root(project_root, output_root)

    if not args.no_clean and output_root.exists():
        shutil.rmtree(output_root)
    output_root.mkdir(parents=True, exist_ok=True)

    config = ConversionConfig.offline(theme_id=args.theme)
    for sample_input in _sample_inputs(project_root):
        result = convert_file(sample_input, config)
        sample_dir = output_root / sample_input.stem
        artifacts = write_conversion_outputs(result, sample_dir, sample_input.stem)
        print(f"[ok] {sample_input.name}: {result.template} -> {len(artifacts.document_files)} document(s)")
        for warning in result.warnings:
            print(f"  warning: {warning}")


if __name__ == "__main__":
    main()
