"""Classify, prefetch, convert, enrich and validate one legacy document."""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Protocol

from bs4 import BeautifulSoup

from ._coerce import as_dict, as_list, as_str, dig
from .artifacts import ConversionResult
from .classifier import detect_template, strategy_key
from .config import ConversionConfig
from .content import parse_compare_app_id
from .enrichment import DefinitionFetcher, enrich_document, gather_cancelling
from .errors import enrichment_exceptions
from .pipeline import run_strategy
from .progress import CancelCheck, ProgressCallback, ProgressReporter
from .strategies import StrategyContext
from .strategies.journal import journal_sections
from .strategies.series import entry_app_id, series_entries
from .strategies.swipe import webmap_ids
from .strategies.tour import features_from_webmap
from .validation import validate_document


logger = logging.getLogger(__name__)

_APP_ID_RE = re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE)
_TOUR_LAYER_RE = re.compile(r"^maptour-layer|map\s*tour", re.IGNORECASE)


class FeatureFetcher(Protocol):
    async def fetch_features(self, layer_url: str) -> list[dict[str, Any]]:
        ...


def embedded_app_ids(document: dict[str, Any], template: str) -> list[str]:
    """Legacy app ids referenced from journal iframes/web pages or series entries."""
    values = as_dict(document.get("values"))
    ids: list[str] = []
    key = strategy_key(template)
    if key == "journal":
        for section in journal_sections(values):
            urls = []
            markup = as_str(section.get("content")) or as_str(section.get("description"))
            if "<iframe" in markup.lower():
                soup = BeautifulSoup(markup, "html.parser")
                urls.extend(as_str(frame.get("src")) for frame in soup.find_all("iframe"))
            urls.append(as_str(dig(section, "media", "webpage", "url")))
            for action in as_list(section.get("contentActions")):
                urls.append(as_str(dig(action, "media", "webpage", "url")))
            for url in urls:
                app_id = parse_compare_app_id(url) if url else None
                if app_id:
                    ids.append(app_id)
    elif key == "series":
        ids.extend(app_id for app_id in map(entry_app_id, series_entries(values)) if app_id)
    return [app_id for app_id in dict.fromkeys(ids) if _APP_ID_RE.match(app_id)]


def tour_layer_url(definition: dict[str, Any], source_layer: str = "") -> Optional[str]:
    for layer in as_list(definition.get("operationalLayers")):
        if not isinstance(layer, dict):
            continue
        layer_id = as_str(layer.get("id"))
        matches = bool(source_layer and (source_layer in layer_id or layer_id in source_layer)) or bool(
            _TOUR_LAYER_RE.search(layer_id) or _TOUR_LAYER_RE.search(as_str(layer.get("title")))
        )
        url = as_str(layer.get("url") or layer.get("URL")).strip()
        if matches and url:
            return url
    return None


class ConversionOrchestrator:
    """
    Runs one conversion end to end.

    Without a fetcher nothing touches the network: embedded apps stay unresolved and
    map resources stay minimal placeholders. With one, referenced apps, compare maps
    and tour layers are prefetched before the strategy runs and placeholders are
    enriched afterwards. Prefetch failures are reported and never fatal.
    """

    def __init__(
        self,
        config: Optional[ConversionConfig] = None,
        fetcher: Optional[DefinitionFetcher] = None,
        progress: Optional[ProgressCallback] = None,
        is_cancelled: Optional[CancelCheck] = None,
    ):
        self.config = config or ConversionConfig()
        self.fetcher = fetcher
        self.reporter = ProgressReporter(progress, is_cancelled)
        self._recoverable = enrichment_exceptions()

    async def _fetch(self, kind: str, item_id: str) -> Optional[dict[str, Any]]:
        self.reporter.check_cancelled()
        try:
            payload = await self.fetcher.fetch_definition(kind, item_id)
        except self._recoverable as exc:
            self.reporter.emit("fetch", f"Could not load {kind} {item_id}: {exc}")
            return None
        self.reporter.check_cancelled()
        return payload if isinstance(payload, dict) else None

    async def prefetch(self, document: dict[str, Any], template: str) -> StrategyContext:
        context = StrategyContext()
        if self.fetcher is None:
            return context
        values = as_dict(document.get("values"))
        key = strategy_key(template)

        app_ids = embedded_app_ids(document, template)
        if app_ids:
            self.reporter.emit("fetch", f"Prefetching {len(app_ids)} embedded app(s)...")
            apps = await gather_cancelling(self._fetch("app", app_id) for app_id in app_ids)
            context.embedded_apps = {a: app for a, app in zip(app_ids, apps) if app is not None}

        map_ids: list[str] = []
        if key == "swipe":
            map_ids.extend(webmap_ids(values))
        for app in context.embedded_apps.values():
            app_values = as_dict(app.get("values"))
            if strategy_key(detect_template(app)) == "swipe":
                map_ids.extend(webmap_ids(app_values))
        if key == "tour" and as_str(values.get("webmap")).strip():
            map_ids.append(as_str(values["webmap"]).strip())
        map_ids = list(dict.fromkeys(map_ids))
        if map_ids:
            self.reporter.emit("fetch", f"Prefetching {len(map_ids)} web map definition(s)...")
            definitions = await gather_cancelling(self._fetch("map", item_id) for item_id in map_ids)
            context.webmap_definitions = {
                item_id: d for item_id, d in zip(map_ids, definitions) if d is not None
            }

        if key == "tour":
            context.tour_features = await self._prefetch_tour_features(values, context)
        return context

    async def _prefetch_tour_features(
        self, values: dict[str, Any], context: StrategyContext
    ) -> list[dict[str, Any]]:
        if as_list(values.get("places")):
            return []
        definition = as_dict(context.webmap_definitions.get(as_str(values.get("webmap")).strip()))
        source_layer = as_str(values.get("sourceLayer"))
        if not definition or features_from_webmap(definition, source_layer):
            return []
        url = tour_layer_url(definition, source_layer)
        if url is None or not hasattr(self.fetcher, "fetch_features"):
            return []
        self.reporter.check_cancelled()
        try:
            features = await self.fetcher.fetch_features(url)
        except self._recoverable as exc:
            self.reporter.emit("fetch", f"Could not query tour layer {url}: {exc}")
            return []
        self.reporter.check_cancelled()
        self.reporter.emit("fetch", f"Loaded {len(features)} tour feature(s)")
        return [f for f in as_list(features) if isinstance(f, dict)]

    async def convert(
        self,
        document: Any,
        item_info: Optional[dict[str, Any]] = None,
    ) -> ConversionResult:
        """Convert a legacy document; raises `ConversionCancelled` when the caller cancels."""
        document = as_dict(document)
        reporter = self.reporter
        reporter.check_cancelled()
        template = detect_template(document)
        key = strategy_key(template)
        reporter.emit("detect", f"Detected template: {template}")

        context = await self.prefetch(document, template)
        context.item_info = dict(item_info or {})
        reporter.check_cancelled()

        run = run_strategy(key, document, self.config, reporter, context)

        enrichment = self.config.enrichment
        if self.fetcher is not None and (enrichment.enrich_maps or enrichment.enrich_scenes):
            for output in run.outputs:
                await enrich_document(output.builder, self.fetcher, reporter, enrichment, output.template)
        reporter.check_cancelled()

        result = ConversionResult(template=template, series_settings=run.series_settings)
        media: list[str] = []
        for index, output in enumerate(run.outputs):
            document_out = output.builder.export()
            result.documents.append(document_out)
            result.entry_titles.append(output.title)
            media.extend(output.media_urls)
            prefix = f"[{output.title}] " if run.series_settings is not None else ""
            result.warnings.extend(prefix + w for w in validate_document(document_out))
            if index == 0:
                result.story_meta = output.builder.story_meta
        result.media_urls = [url for url in dict.fromkeys(media) if url]
        reporter.emit("done", f"Converted {template} into {len(result.documents)} document(s)")
        return result
