"""Map Series documents -> one independent document per entry."""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Any, Optional

from .._coerce import as_dict, as_list, as_str, dig
from ..builder import GraphBuilder
from ..classifier import detect_template, strategy_key
from ..content import detect_video_provider, parse_compare_app_id
from ..theme import compute_theme
from .base import (
    ConversionStrategy,
    SeriesSettings,
    StrategyOutput,
    StrategyRun,
    panel_position,
    panel_size,
    template_provenance,
)


logger = logging.getLogger(__name__)

ENTRY_KINDS = ("image", "video", "embed", "webmap", "classic", "unknown")
NESTED_SERIES_TEXT = "Nested Map Series detected. Convert separately."
_APP_ID_RE = re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE)
_CLASSIC_APP_URL_RE = re.compile(r"appid=|apps/(maptour|mapjournal|storymapjournal|swipe)", re.IGNORECASE)


def series_entries(values: dict[str, Any]) -> list[dict[str, Any]]:
    entries = as_list(dig(values, "story", "entries"))
    if not entries:
        entries = as_list(dig(values, "story", "sections"))
    return [entry if isinstance(entry, dict) else {} for entry in entries]


def entry_media(entry: dict[str, Any]) -> dict[str, Any]:
    return as_dict(entry.get("media")) or as_dict(entry.get("content"))


def entry_webmap_id(entry: dict[str, Any]) -> str:
    media = entry_media(entry)
    webmap = media.get("webmap")
    if isinstance(webmap, dict):
        webmap = webmap.get("id")
    return as_str(webmap).strip() or as_str(entry.get("webmap")).strip()


def entry_image_url(entry: dict[str, Any]) -> str:
    media = entry_media(entry)
    image = media.get("image")
    if isinstance(image, dict):
        image = image.get("url")
    return as_str(image).strip() or as_str(media.get("imageUrl")).strip() or as_str(media.get("photo")).strip()


def entry_video_url(entry: dict[str, Any]) -> str:
    media = entry_media(entry)
    video = media.get("video")
    if isinstance(video, dict):
        video = video.get("source") or video.get("url")
    return as_str(video).strip() or as_str(media.get("videoUrl")).strip()


def entry_embed_url(entry: dict[str, Any]) -> str:
    media = entry_media(entry)
    return (
        as_str(dig(media, "webpage", "url")).strip()
        or as_str(dig(media, "embed", "url")).strip()
        or as_str(media.get("url")).strip()
    )


def entry_app_id(entry: dict[str, Any]) -> str:
    """Legacy app id an entry points at, from its embed URL or explicit app fields."""
    embed_url = entry_embed_url(entry)
    from_url = parse_compare_app_id(embed_url) if embed_url else None
    if from_url:
        return from_url
    media = entry_media(entry)
    for candidate in (
        entry.get("appid"),
        entry.get("appId"),
        dig(entry, "content", "actions", "open", "system", "appid"),
        media.get("appid"),
        media.get("appId"),
    ):
        text = as_str(candidate).strip()
        if _APP_ID_RE.match(text):
            return text
    return ""


def inline_classic_document(entry: dict[str, Any]) -> Optional[dict[str, Any]]:
    for key in ("classicJson", "data"):
        candidate = entry.get(key)
        if isinstance(candidate, dict) and isinstance(candidate.get("values"), dict):
            return candidate
    return None


def classify_entry(entry: dict[str, Any]) -> str:
    """One of `ENTRY_KINDS`."""
    media = entry_media(entry)
    if as_str(media.get("type")).lower() == "webmap" or entry_webmap_id(entry):
        return "webmap"
    if inline_classic_document(entry) is not None:
        return "classic"
    if entry_image_url(entry):
        return "image"
    if entry_video_url(entry):
        return "video"
    embed_url = entry_embed_url(entry)
    if embed_url:
        return "classic" if _CLASSIC_APP_URL_RE.search(embed_url) else "embed"
    if entry_app_id(entry):
        return "classic"
    return "unknown"


class SeriesStrategy(ConversionStrategy):
    """
    Every entry becomes its own document. Entries pointing at another legacy app are
    converted recursively through the strategy registry; the collection-level panel
    and theme settings are returned alongside for the caller to apply.
    """

    key = "series"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.entries: list[dict[str, Any]] = []
        self.kinds: list[str] = []
        self.results: list[StrategyOutput] = []
        self.settings: Optional[SeriesSettings] = None
        self.parent_title = ""
        self.theme_id = "summit"
        self.variable_overrides: dict[str, Any] = {}

    def extract_structure(self) -> Optional[str]:
        self.entries = series_entries(self.values)
        self.kinds = [classify_entry(entry) for entry in self.entries]
        self.parent_title = as_str(self.values.get("title")).strip()
        derived = compute_theme(self.config.theme_id, self.document, self.template)
        self.theme_id = derived.theme_id
        self.variable_overrides = derived.variable_overrides
        settings = as_dict(self.values.get("settings"))
        panel = as_dict(dig(settings, "layoutOptions", "panel"))
        self.settings = SeriesSettings(
            layout_id=as_str(dig(settings, "layout", "id")),
            panel_position=panel_position(panel.get("position")),
            panel_size=panel_size(panel.get("size")),
            map_options=dict(as_dict(settings.get("mapOptions"))),
            theme_id=derived.theme_id,
            variable_overrides=dict(derived.variable_overrides),
        )
        return f"Extracted {len(self.entries)} entr{'y' if len(self.entries) == 1 else 'ies'}: {', '.join(self.kinds)}"

    def convert_content(self) -> Optional[str]:
        if not self.entries:
            return "No entries found"
        total = len(self.entries)
        for index, (entry, kind) in enumerate(zip(self.entries, self.kinds)):
            self.reporter.check_cancelled()
            title = (
                as_str(entry.get("title")).strip()
                or as_str(entry.get("headline")).strip()
                or f"Entry {index + 1}"
            )
            if kind == "classic":
                output = self._nested_entry(entry, index, title)
            else:
                output = self._simple_entry(entry, kind, index, title)
            self.results.append(output)
            self.reporter.emit("content", f"Converted Map Series entry {index + 1}", index + 1, total)
        return f"Built {len(self.results)} document(s)"

    def apply_theme(self) -> Optional[str]:
        for index, output in enumerate(self.results):
            if output.template == self.template:
                output.builder.apply_theme(self.theme_id, self.variable_overrides)
            self._entry_metadata(output, index)
        return f"Applied theme {self.theme_id} to {len(self.results)} document(s)"

    def collect_media(self) -> Optional[str]:
        for output in self.results:
            self.record_media(*output.media_urls)
        return super().collect_media()

    def outputs(self) -> StrategyRun:
        return StrategyRun(list(self.results), self.settings)

    # -------------------------------------------------------------- entries

    def _entry_builder(self, title: str, subtitle: str = "") -> GraphBuilder:
        builder = self.new_builder(self.theme_id)
        builder.add_story_scaffold(title, subtitle)
        builder.set_story_meta(title, subtitle)
        return builder

    def _simple_entry(self, entry: dict[str, Any], kind: str, index: int, title: str) -> StrategyOutput:
        builder = self._entry_builder(title, as_str(entry.get("subtitle")))
        description = as_str(entry.get("description")).strip()
        media_urls: list[str] = []
        if kind == "webmap":
            self._webmap_entry(builder, entry, description)
            media_urls.append(entry_webmap_id(entry))
        else:
            if description:
                builder.add_to_story(builder.rich_text_node(description))
            if kind == "image":
                url = entry_image_url(entry)
                media_urls.append(url)
                builder.add_to_story(builder.image_node(builder.image_resource(url), size="wide"))
            elif kind == "video":
                url = entry_video_url(entry)
                provider, video_id = detect_video_provider(url)
                if provider is not None:
                    builder.add_to_story(builder.video_embed_node(url, provider, video_id))
                else:
                    media_urls.append(url)
                    builder.add_to_story(builder.video_node(builder.video_resource(url)))
            elif kind == "embed":
                builder.add_to_story(builder.link_embed_node(entry_embed_url(entry), title=title))
            else:
                builder.add_to_story(builder.text_node(f"Converted from Map Series entry {index + 1}"))
        return StrategyOutput(builder, title, media_urls, self.template)

    def _webmap_entry(self, builder: GraphBuilder, entry: dict[str, Any], description: str) -> None:
        settings = self.settings
        handle = builder.add_sidecar("docked-panel", settings.panel_position, settings.panel_size)
        narrative = builder.text_node(description or "Map Series entry narrative")
        builder.append_child(handle.narrative_id, narrative)
        resource_id = builder.webmap_resource(entry_webmap_id(entry), "Web Map")
        map_options = settings.map_options
        overlay = {
            "extent": map_options.get("extent") if isinstance(map_options.get("extent"), dict) else None,
            "viewpoint": map_options.get("viewpoint") if isinstance(map_options.get("viewpoint"), dict) else None,
            "zoom": map_options.get("zoom") if isinstance(map_options.get("zoom"), (int, float)) else None,
        }
        builder.append_child(handle.slide_id, builder.webmap_node(resource_id, **overlay))

    def _nested_document(self, entry: dict[str, Any]) -> Optional[dict[str, Any]]:
        inline = inline_classic_document(entry)
        if inline is not None:
            return inline
        app_id = entry_app_id(entry)
        app = self.context.embedded_apps.get(app_id) if app_id else None
        return app if isinstance(app, dict) and isinstance(app.get("values"), dict) else None

    def _nested_entry(self, entry: dict[str, Any], index: int, title: str) -> StrategyOutput:
        # The registry imports this module.
        from ..pipeline import run_strategy

        child = self._nested_document(entry)
        if child is None:
            logger.warning("Series entry %d references an app that was not prefetched.", index + 1)
            builder = self._entry_builder(title)
            builder.add_to_story(builder.text_node("Linked legacy app could not be loaded; saved as embed."))
            url = entry_embed_url(entry)
            if url:
                builder.add_to_story(builder.link_embed_node(url, title=title))
            return StrategyOutput(builder, title, [], self.template)

        child_template = detect_template(child)
        child_key = strategy_key(child_template)
        if child_key == "series":
            builder = self._entry_builder(title)
            builder.add_to_story(builder.text_node(NESTED_SERIES_TEXT))
            return StrategyOutput(builder, title, [], child_template)

        child_config = dataclasses.replace(self.config, theme_id=self.theme_id)
        run = run_strategy(
            child_key,
            child,
            config=child_config,
            reporter=self.reporter.scoped(f"Entry {index + 1}: "),
            context=self.context.child(),
        )
        output = run.outputs[0]
        output.title = title
        return output

    def _entry_metadata(self, output: StrategyOutput, index: int) -> None:
        payload = template_provenance(self.document) if output.template == self.template else {}
        payload.setdefault("classicMetadata", {})["seriesEntry"] = {
            "parentTemplate": self.template,
            "childTemplate": output.template,
            "entryIndex": index + 1,
            "parentTitle": self.parent_title,
        }
        output.builder.merge_converter_metadata(output.template, payload)
