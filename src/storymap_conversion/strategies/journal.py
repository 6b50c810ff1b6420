"""Map Journal (and journal-like) documents -> one docked or floating sidecar."""

from __future__ import annotations

import copy
from functools import partial
import logging
import re
from typing import Any, Optional

from .._coerce import as_dict, as_list, as_str, dig
from ..content import ParseContext, ParseResult, detect_video_provider, make_content_parser
from ..geometry import derive_viewpoint, extent_center, scale_zoom_from_extent_height
from ..mapstate import map_layers, resolve_extent
from ..theme import build_custom_css, compute_theme, legacy_theme_settings
from .base import (
    ConversionStrategy,
    StrategyOutput,
    StrategyRun,
    panel_position,
    panel_size,
    template_provenance,
)
from .swipe import build_inline_compare


logger = logging.getLogger(__name__)

UNTITLED_STORY = "Untitled Story"
_HREF_RE = re.compile(r"href=", re.IGNORECASE)


def journal_sections(values: dict[str, Any]) -> list[dict[str, Any]]:
    """`values.story.sections`, else top-level `values.sections`; non-objects dropped."""
    sections = as_list(dig(values, "story", "sections"))
    if not sections:
        sections = as_list(values.get("sections"))
    return [section for section in sections if isinstance(section, dict)]


def link_inline_anchor(html: str, action_id: str, heading_id: str) -> str:
    """Give the flagged anchor for `action_id` an in-story href unless it already has one."""
    pattern = re.compile(
        r"<a([^>]*data-storymaps=[\"']" + re.escape(action_id) + r"[\"'][^>]*)>", re.IGNORECASE
    )

    def _replace(match: re.Match[str]) -> str:
        attrs = match.group(1)
        if _HREF_RE.search(attrs):
            return match.group(0)
        return f'<a{attrs} href="#ref-{heading_id}" target="_self">'

    return pattern.sub(_replace, html, count=1)


class JournalStrategy(ConversionStrategy):
    """
    Sections become slides of a single sidecar: heading, parsed narrative and the
    section's main stage media. Media actions swap a slide's media; navigate actions
    link to another section's heading.
    """

    key = "journal"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.builder = self.new_builder()
        self.sections: list[dict[str, Any]] = []
        self.title = UNTITLED_STORY
        self.heading_ids: list[Optional[str]] = []
        self.result = ParseResult()
        self.sidecar_id: Optional[str] = None
        self.layout_id = "side"
        self.classic_size = "medium"
        self.classic_position = "right"
        self.subtype = "docked-panel"
        self.parser = make_content_parser(
            self.config.html_engine,
            self.builder,
            ParseContext(
                embedded_apps=self.context.embedded_apps,
                build_inline_compare=partial(
                    build_inline_compare, definitions=self.context.webmap_definitions
                ),
            ),
        )

    # ------------------------------------------------------------- phases

    def extract_structure(self) -> Optional[str]:
        self.sections = journal_sections(self.values)
        self.title = as_str(self.values.get("title")).strip() or UNTITLED_STORY
        settings = as_dict(self.values.get("settings"))
        self.layout_id = as_str(dig(settings, "layout", "id")) or "side"
        layout_cfg = as_dict(dig(settings, "layoutOptions", "layoutCfg"))
        self.classic_size = as_str(layout_cfg.get("size")) or "medium"
        self.classic_position = as_str(layout_cfg.get("position")) or "right"
        self.subtype = "floating-panel" if self.layout_id == "float" else "docked-panel"
        return f"Extracted {len(self.sections)} section(s)"

    def convert_content(self) -> Optional[str]:
        builder = self.builder
        builder.add_story_scaffold(self.title, as_str(self.values.get("subtitle")))
        description = as_str(self.values.get("description")) or as_str(self.values.get("subtitle"))
        builder.set_story_meta(self.title, description.strip())

        handle = builder.add_sidecar(
            self.subtype,
            panel_position(self.classic_position),
            panel_size(self.classic_size),
            slides=False,
        )
        self.sidecar_id = handle.immersive_id

        if self.values.get("description"):
            intro = builder.text_node(as_str(self.values["description"]))
            builder.add_slide(self.sidecar_id, [intro])

        for index, section in enumerate(self.sections):
            self.reporter.check_cancelled()
            self._convert_section(section)
            self.reporter.emit("content", f"Converted section {index + 1}", index + 1, len(self.sections))

        self._resolve_navigation()
        self.record_media(*self.result.media_urls)
        slides = len(builder.node(self.sidecar_id).children or [])
        return f"Built single sidecar with {slides} slide(s)"

    def apply_theme(self) -> Optional[str]:
        classic_theme = legacy_theme_settings(self.document)
        provenance = template_provenance(self.document)
        layout_mapping = {
            "classicLayoutId": self.layout_id,
            "classicSize": self.classic_size,
            "classicPosition": self.classic_position,
            "mappedSubtype": self.subtype,
        }

        if classic_theme is None and self.layout_id == "float":
            for panel_id in self.builder.nodes_of_type("immersive-narrative-panel"):
                self.builder.update_node_data(panel_id, _pin_panel)
            theme_id = "obsidian"
            if self.config.theme_id != "auto":
                theme_id = self.config.theme_id
            self.builder.apply_theme(theme_id, {})
            layout_mapping.update(mappedNarrativePanelSize="medium", mappedNarrativePanelPosition="end")
            decisions: dict[str, Any] = {
                "baseThemeId": "obsidian",
                "forcedByMissingClassicTheme": True,
                "variableOverridesApplied": [],
                "layoutMapping": layout_mapping,
            }
            message = "Applied fallback obsidian theme (no legacy theme, float layout)"
        else:
            derived = compute_theme(self.config.theme_id, self.document, self.template)
            self.builder.apply_theme(derived.theme_id, derived.variable_overrides)
            layout_mapping.update(
                mappedNarrativePanelSize=panel_size(self.classic_size),
                mappedNarrativePanelPosition=panel_position(self.classic_position),
            )
            decisions = dict(derived.decisions, layoutMapping=layout_mapping)
            custom_css = build_custom_css(self.result.style_blocks)
            if custom_css is not None:
                decisions["customCss"] = custom_css
            message = f"Applied theme {derived.theme_id} ({len(derived.variable_overrides)} override(s))"

        decisions["videoEmbeds"] = self.result.video_embeds
        classic = provenance.setdefault("classicMetadata", {})
        classic["classicTheme"] = copy.deepcopy(classic_theme)
        classic["mappingDecisions"] = decisions
        self.builder.merge_converter_metadata(self.template, provenance)
        return message

    def outputs(self) -> StrategyRun:
        return StrategyRun([StrategyOutput(self.builder, self.title, list(self.media_urls), self.template)])

    # ------------------------------------------------------------ sections

    def _convert_section(self, section: dict[str, Any]) -> None:
        builder = self.builder
        narrative_ids: list[str] = []
        heading_id = None
        title = as_str(section.get("title")).strip()
        if title:
            heading_id = builder.text_node(title, "h3")
            narrative_ids.append(heading_id)
        self.heading_ids.append(heading_id)

        markup = as_str(section.get("content")) or as_str(section.get("description"))
        first_stub = len(self.result.action_stubs)
        if markup.strip():
            section_result = ParseResult(
                navigate_inline_stubs=self.result.navigate_inline_stubs,
                navigate_button_stubs=self.result.navigate_button_stubs,
                style_blocks=self.result.style_blocks,
                media_urls=self.result.media_urls,
            )
            self.parser.parse(markup, section_result)
            narrative_ids.extend(section_result.node_ids)
            self.result.action_stubs.extend(section_result.action_stubs)
            self.result.video_embeds += section_result.video_embeds
            self.result.inline_compares += section_result.inline_compares

        stage_id = self.media_node(as_dict(section.get("media")), title or None, "wide")
        slide = builder.add_slide(self.sidecar_id, narrative_ids, stage_id)

        actions = {
            as_str(action.get("id")): action
            for action in as_list(section.get("contentActions"))
            if isinstance(action, dict)
        }
        for stub in self.result.action_stubs[first_stub:]:
            action = actions.get(stub.action_id)
            if action is None or action.get("type") != "media":
                logger.debug("No media action %s in section %r", stub.action_id, title)
                continue
            media_id = self.media_node(as_dict(action.get("media")), None, "standard")
            if media_id is None:
                continue
            self._attach_action_media(stub.button_id, slide.slide_id, media_id, stage_id)

    def _attach_action_media(
        self, button_id: str, slide_id: str, media_id: str, stage_id: Optional[str]
    ) -> None:
        builder = self.builder
        dependents = {"actionMedia": media_id}
        media = builder.node(media_id)
        if media is not None and media.type == "swipe":
            contents = as_dict(media.data.get("contents"))
            for slot in ("0", "1"):
                if contents.get(slot):
                    dependents[f"actionMedia_content_{slot}"] = contents[slot]
            self._align_to_stage(media_id, stage_id)

        def _set_dependents(data: dict[str, Any]) -> None:
            data.setdefault("dependents", {}).update(dependents)

        builder.update_node_data(button_id, _set_dependents)
        builder.append_child(slide_id, media_id)
        builder.register_replace_media_action(button_id, slide_id, media_id)

    def _align_to_stage(self, swipe_id: str, stage_id: Optional[str]) -> None:
        """Seed compare panes that lack a view from the slide's current stage map."""
        stage = self.builder.node(stage_id)
        if stage is None:
            return
        extent = stage.data.get("extent")
        viewpoint = stage.data.get("viewpoint") or (derive_viewpoint(extent) if extent else None)
        contents = as_dict(self.builder.node(swipe_id).data.get("contents"))

        def _seed(data: dict[str, Any]) -> None:
            if not data.get("extent") and extent:
                data["extent"] = copy.deepcopy(extent)
            if not data.get("viewpoint") and viewpoint:
                data["viewpoint"] = copy.deepcopy(viewpoint)
            data.setdefault("viewPlacement", "extent")

        for slot in ("0", "1"):
            self.builder.update_node_data(as_str(contents.get(slot)), _seed)

    # --------------------------------------------------------------- media

    def media_node(self, media: dict[str, Any], title: Optional[str], image_size: str) -> Optional[str]:
        """Node for a legacy media block (image, map/scene, video or web page)."""
        builder = self.builder
        image = as_dict(media.get("image"))
        webmap = as_dict(media.get("webmap"))
        video = as_dict(media.get("video"))
        webpage = as_dict(media.get("webpage"))
        if as_str(image.get("url")):
            url = as_str(image["url"])
            self.record_media(url)
            return builder.image_node(
                builder.image_resource(url),
                as_str(image.get("caption")) or None,
                as_str(image.get("altText")) or None,
                image_size,
            )
        if as_str(webmap.get("id")):
            return self._webmap_media(webmap, title)
        if as_str(video.get("url")):
            url = as_str(video["url"])
            caption = as_str(video.get("caption")) or None
            provider, video_id = detect_video_provider(url)
            if provider is not None:
                self.result.video_embeds += 1
                return builder.video_embed_node(url, provider, video_id, caption)
            self.record_media(url)
            return builder.video_node(builder.video_resource(url), caption, as_str(video.get("altText")) or None)
        if as_str(webpage.get("url")):
            url = as_str(webpage["url"])
            compare_id = self.parser.try_inline_compare(url, self.result)
            if compare_id is not None:
                return compare_id
            return builder.link_embed_node(
                url, as_str(webpage.get("caption")) or None, as_str(webpage.get("title")) or None
            )
        return None

    def _webmap_media(self, webmap: dict[str, Any], title: Optional[str]) -> str:
        builder = self.builder
        item_id = as_str(webmap["id"]).strip()
        item_type = "Web Scene" if webmap.get("itemType") == "Web Scene" else "Web Map"
        extent = resolve_extent({"extent": webmap.get("extent")})
        view: dict[str, Any] = {}
        if extent is not None:
            view["extent"] = extent
            scale_zoom = scale_zoom_from_extent_height(extent)
            if scale_zoom is not None:
                view["viewpoint"] = {"targetGeometry": extent, "scale": scale_zoom[0]}
                view["zoom"] = scale_zoom[1]

        overrides = {
            as_str(layer.get("id")): bool(layer.get("visibility", layer.get("visible")))
            for layer in as_list(webmap.get("layers"))
            if isinstance(layer, dict) and layer.get("id") is not None
        }
        definition = as_dict(self.context.webmap_definitions.get(item_id))
        layers = map_layers(definition.get("operationalLayers")) or map_layers(webmap.get("layers"))
        for layer in layers:
            if layer["id"] in overrides:
                layer["visible"] = overrides[layer["id"]]

        # Placeholders without a legacy extent are filled by enrichment later.
        variant = "default" if extent is not None and item_type == "Web Map" else "minimal"
        resource_id = builder.webmap_resource(item_id, item_type, variant=variant)
        if variant == "default":
            builder.update_webmap_data(
                resource_id, dict(view, center=extent_center(extent), mapLayers=layers or None)
            )

        node_data: dict[str, Any] = dict(view)
        if layers:
            node_data["mapLayers"] = layers
        for control in ("overview", "legend"):
            settings = as_dict(webmap.get(control))
            if settings.get("enable"):
                node_data[control] = {"openByDefault": bool(settings.get("openByDefault"))}
        caption = None
        if title:
            caption = f"{'Scene' if item_type == 'Web Scene' else 'Map'}: {title}"
        self.record_media(item_id)
        return builder.webmap_node(resource_id, caption, **node_data)

    # ------------------------------------------------------------ navigation

    def _navigate_targets(self) -> dict[str, str]:
        targets = {}
        for section in self.sections:
            for action in as_list(section.get("contentActions")):
                if not isinstance(action, dict) or action.get("type") != "navigate":
                    continue
                index = action.get("index")
                if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(self.heading_ids):
                    heading_id = self.heading_ids[index]
                    if heading_id:
                        targets[as_str(action.get("id"))] = heading_id
        return targets

    def _resolve_navigation(self) -> None:
        targets = self._navigate_targets()
        for stub in self.result.navigate_button_stubs:
            heading_id = targets.get(stub.action_id)
            if heading_id and stub.node_id:
                self.builder.set_button_link(stub.node_id, f"#ref-{heading_id}")
        for stub in self.result.navigate_inline_stubs:
            heading_id = targets.get(stub.action_id)
            node = self.builder.node(stub.node_id)
            if not heading_id or node is None or node.type != "text" or not node.data.get("preserveHtml"):
                continue
            node.data["text"] = link_inline_anchor(as_str(node.data.get("text")), stub.action_id, heading_id)


def _pin_panel(data: dict[str, Any]) -> None:
    data["position"] = "end"
    data["size"] = "medium"
