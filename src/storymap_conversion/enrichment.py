"""Fill placeholder map and scene resources from fetched definitions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Awaitable, Iterable, Optional, Protocol

from .builder import GraphBuilder
from .config import EnrichmentConfig
from .errors import ConversionError, GraphConstructionError, enrichment_exceptions
from .mapstate import (
    basemap_summary,
    map_layers,
    webmap_protocol_warning,
    webmap_version_warning,
    webmap_view_state,
    webscene_view_state,
)
from .progress import ProgressReporter
from .strategies.swipe import align_compare_panes


logger = logging.getLogger(__name__)

WEB_MAP = "Web Map"
WEB_SCENE = "Web Scene"
NODE_VIEW_KEYS = ("extent", "viewpoint", "zoom")


class DefinitionFetcher(Protocol):
    async def fetch_definition(self, kind: str, item_id: str) -> dict[str, Any]:
        ...


@dataclass(frozen=True)
class Placeholder:
    resource_id: str
    item_id: str
    item_type: str

    @property
    def kind(self) -> str:
        return "scene" if self.item_type == WEB_SCENE else "map"


@dataclass
class EnrichmentReport:
    enriched: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    version_warnings: list[dict[str, Any]] = field(default_factory=list)
    protocol_warnings: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enriched": list(self.enriched),
            "failed": dict(self.failed),
            "version_warnings": list(self.version_warnings),
            "protocol_warnings": list(self.protocol_warnings),
        }


def find_placeholder_resources(
    builder: GraphBuilder,
    item_types: tuple[str, ...] = (WEB_MAP, WEB_SCENE),
) -> list[Placeholder]:
    out = []
    for resource_id, resource in builder.resources.items():
        data = resource.data
        if (
            resource.type == "webmap"
            and data.get("type") == "minimal"
            and data.get("itemType") in item_types
            and isinstance(data.get("itemId"), str)
        ):
            out.append(Placeholder(resource_id, data["itemId"], data["itemType"]))
    return out


def fill_webmap_resource(builder: GraphBuilder, resource_id: str, definition: dict[str, Any]) -> None:
    """Merge a fetched web map definition into a resource; existing view keys are kept."""
    resource = builder.resource(resource_id)
    if resource is None:
        return
    state = webmap_view_state(definition)
    basemap = basemap_summary(definition)
    layers = map_layers(definition.get("operationalLayers"))
    data = resource.data
    for key, value in state.items():
        if key == "mapLayers":
            continue
        data.setdefault(key, value)
    data.setdefault("mapLayers", layers)
    data["baseMap"] = basemap
    data["type"] = "default"
    raw = dict(data.get("raw") or {})
    raw["summary"] = {
        "baseMapLayerCount": len(basemap["baseMapLayers"]),
        "operationalLayerCount": len(layers),
    }
    data["raw"] = raw


def fill_webscene_resource(builder: GraphBuilder, resource_id: str, definition: dict[str, Any]) -> None:
    resource = builder.resource(resource_id)
    if resource is None:
        return
    state = webscene_view_state(definition)
    resource.data = {
        "itemId": resource.data.get("itemId"),
        "itemType": WEB_SCENE,
        "type": "default",
        **state,
        "raw": {
            "summary": {
                "hasCamera": "viewpoint" in state,
                "baseMapLayerCount": len(state["baseMap"]["baseMapLayers"]),
                "operationalLayerCount": len(state["mapLayers"]),
            }
        },
    }


def propagate_view_to_nodes(builder: GraphBuilder, resource_ids: set[str]) -> int:
    """Copy extent, viewpoint and zoom from enriched resources onto map nodes lacking them."""
    updated = 0
    for node_id in builder.nodes_of_type("webmap"):
        node = builder.node(node_id)
        resource = builder.resource(node.data.get("map"))
        if resource is None or node.data.get("map") not in resource_ids:
            continue
        changed = False
        for key in NODE_VIEW_KEYS:
            if node.data.get(key) is None and resource.data.get(key) is not None:
                node.data[key] = resource.data[key]
                changed = True
        updated += changed
    return updated


async def gather_cancelling(coros: Iterable[Awaitable[Any]]) -> list[Any]:
    """
    Run `coros` concurrently; on a fatal error cancel the rest and wait for them.

    No task is left running once this returns or raises.
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks)
    except ConversionError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def enrich_document(
    builder: GraphBuilder,
    fetcher: DefinitionFetcher,
    reporter: Optional[ProgressReporter] = None,
    config: Optional[EnrichmentConfig] = None,
    classic_type: str = "",
) -> EnrichmentReport:
    """
    Fetch every placeholder's definition concurrently and fill it in.

    A failed fetch is reported and leaves its placeholder untouched; only cancellation
    propagates. Web map version and protocol warnings are merged into the document's
    converter metadata, and swipe blocks are re-aligned once maps carry their extents.
    """
    reporter = reporter or ProgressReporter()
    config = config or EnrichmentConfig()
    item_types = tuple(
        t for t, enabled in ((WEB_MAP, config.enrich_maps), (WEB_SCENE, config.enrich_scenes)) if enabled
    )
    report = EnrichmentReport()
    placeholders = find_placeholder_resources(builder, item_types) if item_types else []
    if not placeholders:
        return report

    maps = sum(1 for p in placeholders if p.item_type == WEB_MAP)
    scenes = len(placeholders) - maps
    if maps:
        reporter.emit("convert", f"Enriching {maps} Web Map resource(s)...")
    if scenes:
        reporter.emit("convert", f"Enriching {scenes} Web Scene resource(s)...")

    semaphore = asyncio.Semaphore(config.max_concurrency)
    recoverable = enrichment_exceptions()

    async def _enrich(placeholder: Placeholder) -> None:
        label = placeholder.item_type
        try:
            reporter.check_cancelled()
            async with semaphore:
                reporter.check_cancelled()
                definition = await fetcher.fetch_definition(placeholder.kind, placeholder.item_id)
            reporter.check_cancelled()
            if not isinstance(definition, dict):
                raise TypeError(f"Definition for {placeholder.item_id} is not an object")
            if placeholder.item_type == WEB_SCENE:
                fill_webscene_resource(builder, placeholder.resource_id, definition)
            else:
                version = webmap_version_warning(placeholder.item_id, definition)
                if version is not None:
                    report.version_warnings.append(version)
                protocol = webmap_protocol_warning(placeholder.item_id, definition)
                if protocol is not None:
                    report.protocol_warnings.append(protocol)
                fill_webmap_resource(builder, placeholder.resource_id, definition)
            report.enriched.append(placeholder.resource_id)
            reporter.emit("convert", f"Enriched {label} {placeholder.item_id}")
        except GraphConstructionError:
            raise
        except recoverable as exc:
            report.failed[placeholder.item_id] = str(exc)
            logger.debug("Enrichment of %s failed.", placeholder.item_id, exc_info=True)
            reporter.emit("convert", f"{label} enrichment failed for {placeholder.item_id}: {exc}")

    await gather_cancelling(_enrich(p) for p in placeholders)
    reporter.check_cancelled()

    if report.version_warnings:
        reporter.emit(
            "convert",
            f"Detected {len(report.version_warnings)} web map(s) requiring version update (<2.0).",
        )
    if report.protocol_warnings:
        reporter.emit(
            "convert",
            f"Detected {len(report.protocol_warnings)} web map(s) with http:// layer URLs.",
        )
    if report.version_warnings or report.protocol_warnings:
        builder.merge_converter_metadata(
            classic_type,
            {
                "classicMetadata": {
                    "webmapVersionWarnings": report.version_warnings,
                    "webmapProtocolWarnings": report.protocol_warnings,
                }
            },
        )

    if report.enriched:
        propagate_view_to_nodes(builder, set(report.enriched))
        for swipe_id in builder.nodes_of_type("swipe"):
            align_compare_panes(builder, swipe_id)
    return report
