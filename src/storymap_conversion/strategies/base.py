"""Shared lifecycle of the per-template conversion strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
from typing import Any, Optional

from .._coerce import as_dict, as_str, dig
from ..builder import GraphBuilder
from ..classifier import detect_template
from ..config import ConversionConfig
from ..progress import ProgressReporter


logger = logging.getLogger(__name__)


@dataclass
class StrategyContext:
    """
    Prefetched collaborator data a strategy may read but never fetch itself.

    `embedded_apps` maps legacy app ids to their documents, `webmap_definitions` maps
    map item ids to definition JSON, `tour_features` holds feature records read from a
    tour's linked layer and `item_info` is the portal item of the converted document.
    """

    embedded_apps: dict[str, Any] = field(default_factory=dict)
    webmap_definitions: dict[str, Any] = field(default_factory=dict)
    tour_features: list[dict[str, Any]] = field(default_factory=list)
    item_info: dict[str, Any] = field(default_factory=dict)
    depth: int = 0

    def child(self) -> "StrategyContext":
        return StrategyContext(
            embedded_apps=self.embedded_apps,
            webmap_definitions=self.webmap_definitions,
            tour_features=[],
            item_info={},
            depth=self.depth + 1,
        )


@dataclass
class StrategyOutput:
    """One finished graph (still mutable until the orchestrator exports it)."""

    builder: GraphBuilder
    title: str
    media_urls: list[str] = field(default_factory=list)
    template: str = ""


@dataclass
class SeriesSettings:
    """Collection-level panel and theme settings shared by every series entry."""

    layout_id: str
    panel_position: str
    panel_size: str
    map_options: dict[str, Any] = field(default_factory=dict)
    theme_id: str = "summit"
    variable_overrides: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "layoutId": self.layout_id,
            "panelPosition": self.panel_position,
            "panelSize": self.panel_size,
            "mapOptions": dict(self.map_options),
            "themeId": self.theme_id,
            "variableOverrides": dict(self.variable_overrides),
        }


@dataclass
class StrategyRun:
    outputs: list[StrategyOutput]
    series_settings: Optional[SeriesSettings] = None


def template_provenance(document: dict[str, Any]) -> dict[str, Any]:
    """Template version plus creation/last-edit stamps for converter metadata."""
    values = as_dict(document.get("values"))
    version = (
        as_str(document.get("version"))
        or as_str(values.get("version"))
        or as_str(values.get("templateVersion"))
    )
    payload: dict[str, Any] = {}
    if version:
        payload["classicMetadata"] = {"templateVersion": version}
    if values.get("templateCreation") is not None:
        payload["classicTemplateCreation"] = as_str(values["templateCreation"])
    if values.get("templateLastEdit") is not None:
        payload["classicTemplateLastEdit"] = as_str(values["templateLastEdit"])
    return payload


def panel_size(raw: Any) -> str:
    size = as_str(raw).strip().lower()
    if size in ("small", "medium", "large"):
        return size
    if size == "wide":
        return "large"
    return "medium"


def panel_position(raw: Any) -> str:
    return "start" if as_str(raw).strip().lower() in ("left", "start") else "end"


class ConversionStrategy(ABC):
    """
    Template-specific conversion driven through four ordered phases.

    Cancellation is polled before each phase. Each phase may return a short summary
    which is reported as a progress milestone.
    """

    key = "base"

    def __init__(
        self,
        document: Any,
        config: Optional[ConversionConfig] = None,
        reporter: Optional[ProgressReporter] = None,
        context: Optional[StrategyContext] = None,
    ):
        self.document: dict[str, Any] = as_dict(document)
        self.values: dict[str, Any] = as_dict(self.document.get("values"))
        self.config = config or ConversionConfig.offline()
        self.reporter = reporter or ProgressReporter()
        self.context = context or StrategyContext()
        self.template = detect_template(self.document)
        self.media_urls: list[str] = []

    def new_builder(self, theme_id: str = "summit") -> GraphBuilder:
        return GraphBuilder(theme_id, emit_metadata=self.config.emit_metadata)

    def record_media(self, *urls: Optional[str]) -> None:
        for url in urls:
            if url and url not in self.media_urls:
                self.media_urls.append(url)

    @property
    def item_title(self) -> str:
        return as_str(dig(self.context.item_info, "title")).strip()

    @abstractmethod
    def extract_structure(self) -> Optional[str]:
        ...

    @abstractmethod
    def convert_content(self) -> Optional[str]:
        ...

    @abstractmethod
    def apply_theme(self) -> Optional[str]:
        ...

    def collect_media(self) -> Optional[str]:
        return f"Collected {len(self.media_urls)} media URL(s)"

    @abstractmethod
    def outputs(self) -> StrategyRun:
        ...

    def run(self) -> StrategyRun:
        phases = (
            ("extract", self.extract_structure, "Structure extracted"),
            ("content", self.convert_content, "Content converted"),
            ("theme", self.apply_theme, "Theme applied"),
            ("media", self.collect_media, "Media collected"),
        )
        for stage, phase, default_message in phases:
            self.reporter.check_cancelled()
            message = phase()
            self.reporter.emit(stage, message or default_message)
        return self.outputs()
