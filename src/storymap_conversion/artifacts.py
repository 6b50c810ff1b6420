"""Conversion results and their on-disk serialization."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
import re
from typing import Any, Optional

from .document import StoryDocument
from .strategies import SeriesSettings


_STEM_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _path_for_summary(path: Path, *, base: Optional[Path] = None) -> str:
    candidate = Path(path)
    if base is not None:
        try:
            return str(candidate.relative_to(base))
        except ValueError:
            pass
    try:
        return str(candidate.relative_to(Path.cwd()))
    except ValueError:
        return str(candidate)


def safe_stem(name: str, default: str = "story") -> str:
    stem = _STEM_RE.sub("-", name).strip("-.")
    return stem or default


@dataclass
class ConversionResult:
    """
    Everything one conversion produced.

    `documents` holds one entry for single-document templates and one per entry for
    Map Series (aligned with `entry_titles`). `story_meta` carries the authoring-only
    title/description/cover of the first document.
    """

    template: str
    documents: list[StoryDocument] = field(default_factory=list)
    media_urls: list[str] = field(default_factory=list)
    entry_titles: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    series_settings: Optional[SeriesSettings] = None
    story_meta: Optional[dict[str, Any]] = None

    @property
    def document(self) -> StoryDocument:
        """The primary (first) document."""
        return self.documents[0]

    @property
    def is_series(self) -> bool:
        return self.series_settings is not None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "template": self.template,
            "documents": [doc.to_dict() for doc in self.documents],
            "media_urls": list(self.media_urls),
            "entry_titles": list(self.entry_titles),
            "warnings": list(self.warnings),
            "story_meta": self.story_meta,
        }
        if self.series_settings is not None:
            payload["series_settings"] = self.series_settings.to_dict()
        return payload


@dataclass
class ConversionArtifacts:
    """Files written for one conversion result."""

    output_dir: Path
    document_files: list[Path] = field(default_factory=list)
    media_file: Optional[Path] = None
    summary_file: Optional[Path] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "output_dir": _path_for_summary(self.output_dir),
            "document_files": [_path_for_summary(p, base=self.output_dir) for p in self.document_files],
            "media_file": _path_for_summary(self.media_file, base=self.output_dir) if self.media_file else None,
            "summary_file": _path_for_summary(self.summary_file, base=self.output_dir) if self.summary_file else None,
        }


def write_document(document: StoryDocument, output_path_stem: Path) -> Path:
    """Serialize one output document into JSON."""
    output_path = output_path_stem.with_suffix(".json")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(document.to_dict(), indent=2))
    return output_path


def write_conversion_outputs(result: ConversionResult, output_dir: Path, stem: str) -> ConversionArtifacts:
    """
    Write `<stem>.json` (or `<stem>-<n>.json` per series entry), the media list and a
    summary JSON with template, titles, warnings and series settings.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    stem = safe_stem(stem)
    artifacts = ConversionArtifacts(output_dir=output_dir)
    if result.is_series:
        for index, document in enumerate(result.documents, start=1):
            artifacts.document_files.append(write_document(document, output_dir / f"{stem}-{index}"))
    else:
        for document in result.documents[:1]:
            artifacts.document_files.append(write_document(document, output_dir / stem))

    artifacts.media_file = output_dir / f"{stem}.media.txt"
    artifacts.media_file.write_text("".join(f"{url}\n" for url in result.media_urls))

    artifacts.summary_file = output_dir / f"{stem}.summary.json"
    summary = {
        "template": result.template,
        "entry_titles": result.entry_titles,
        "warnings": result.warnings,
        "story_meta": result.story_meta,
        "series_settings": result.series_settings.to_dict() if result.series_settings else None,
        "artifacts": artifacts.to_dict(),
    }
    artifacts.summary_file.write_text(json.dumps(summary, indent=2))
    return artifacts
