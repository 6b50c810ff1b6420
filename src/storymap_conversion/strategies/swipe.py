"""Swipe / spyglass comparison apps -> a native swipe block of two map panes."""

from __future__ import annotations

import copy
from dataclasses import dataclass
import logging
from typing import Any, Callable, Optional

from .._coerce import as_dict, as_list, as_str, dig
from ..builder import GraphBuilder
from ..errors import StructuralIntegrityError
from ..geometry import derive_viewpoint, extent_center, normalize_center, scale_zoom_from_extent_height
from ..mapstate import has_time_animation, map_layers, resolve_center, resolve_extent
from ..sanitize import sanitize_basic_html
from ..theme import compute_theme
from .base import ConversionStrategy, StrategyOutput, StrategyRun, template_provenance


logger = logging.getLogger(__name__)

TWO_WEBMAPS = "TWO_WEBMAPS"
TWO_LAYERS = "TWO_LAYERS"
GENERIC_TITLES = ("swipe", "spyglass")
CAPTION_SEPARATOR = " \u2014 "
APP_URL = "{portal}/apps/StorymapSwipe/index.html?appid={app_id}"
ITEM_URL = "{portal}/home/item.html?id={item_id}"


@dataclass
class ComparePanes:
    left_id: str
    right_id: str
    caption: Optional[str] = None


@dataclass
class _MapInfo:
    item_id: str
    extent: Optional[dict[str, Any]] = None
    center: Any = None
    layers: Optional[list[dict[str, Any]]] = None
    title: str = ""


def data_model(values: dict[str, Any]) -> str:
    return TWO_LAYERS if as_str(values.get("dataModel")).strip().upper() == TWO_LAYERS else TWO_WEBMAPS


def compare_layout(values: dict[str, Any]) -> str:
    return "spyglass" if "spyglass" in as_str(values.get("layout")).lower() else "swipe"


def webmap_ids(values: dict[str, Any]) -> list[str]:
    """Item ids of the compared maps, in pane order."""
    ids = []
    entries = values.get("webmaps")
    if isinstance(entries, list):
        for entry in entries:
            if isinstance(entry, str) and entry.strip():
                ids.append(entry.strip())
            elif isinstance(entry, dict) and entry.get("id"):
                ids.append(as_str(entry["id"]).strip())
    elif as_str(values.get("webmap")).strip():
        ids.append(as_str(values["webmap"]).strip())
    return [item_id for item_id in ids if item_id]


def _entry_for(values: dict[str, Any], item_id: str) -> dict[str, Any]:
    for entry in as_list(values.get("webmaps")):
        if isinstance(entry, dict) and as_str(entry.get("id")).strip() == item_id:
            return entry
    return {}


def _map_info(item_id: str, entry: dict[str, Any], definitions: dict[str, Any]) -> _MapInfo:
    """Merge what the legacy entry says about a map with its prefetched definition."""
    definition = as_dict(definitions.get(item_id))
    extent = resolve_extent(entry) if entry.get("extent") is not None else None
    if extent is None:
        extent = resolve_extent(definition)
    center = normalize_center(copy.deepcopy(entry["center"])) if entry.get("center") else None
    if center is None:
        center = resolve_center(definition)
    layers = entry.get("operationalLayers")
    if not isinstance(layers, list):
        layers = definition.get("operationalLayers")
    title = as_str(entry.get("title")).strip() or as_str(definition.get("title")).strip()
    return _MapInfo(item_id, extent, center, layers if isinstance(layers, list) else None, title)


def _center_of(info: _MapInfo) -> Any:
    if info.center:
        return info.center
    return extent_center(info.extent)


def _node_view_state(info: _MapInfo, extent: Optional[dict[str, Any]], target: Any) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if extent is not None:
        data["extent"] = copy.deepcopy(extent)
        scale_zoom = scale_zoom_from_extent_height(extent)
        if scale_zoom is not None:
            data["viewpoint"] = {"targetGeometry": copy.deepcopy(target or extent), "scale": scale_zoom[0]}
    data["timeSlider"] = has_time_animation(info.layers)
    if info.layers:
        data["mapLayers"] = map_layers(info.layers)
        data["viewPlacement"] = "extent"
    return data


def _build_two_webmaps(
    builder: GraphBuilder,
    values: dict[str, Any],
    definitions: dict[str, Any],
) -> Optional[ComparePanes]:
    ids = webmap_ids(values)
    if len(ids) < 2:
        logger.warning("Compare app lists %d web map(s); two are required.", len(ids))
        return None
    info_a, info_b = (_map_info(i, _entry_for(values, i), definitions) for i in ids[:2])
    shared_center = _center_of(info_b)

    for info, extent in ((info_a, info_a.extent or info_b.extent), (info_b, info_b.extent)):
        scale_zoom = scale_zoom_from_extent_height(extent) if extent else None
        own_target = info.center or info.extent
        builder.webmap_resource(info.item_id, "Web Map", variant="default")
        builder.update_webmap_data(
            f"r-{info.item_id}",
            {
                "extent": extent,
                "center": shared_center,
                "zoom": scale_zoom[1] if scale_zoom else None,
                "viewpoint": {"targetGeometry": own_target, "scale": scale_zoom[0]}
                if scale_zoom and own_target
                else None,
                "mapLayers": map_layers(info.layers),
            },
        )

    # The left pane is framed on the right pane's view.
    left_extent = info_b.extent or info_a.extent
    left_data = _node_view_state(info_a, left_extent, shared_center or left_extent)
    right_data = _node_view_state(info_b, info_b.extent, shared_center)

    left_id = builder.webmap_node(f"r-{info_a.item_id}", **left_data)
    right_id = builder.webmap_node(f"r-{info_b.item_id}", **right_data)
    caption = None
    if info_a.title and info_b.title:
        caption = f"Left: {info_a.title}{CAPTION_SEPARATOR}Right: {info_b.title}"
    return ComparePanes(left_id, right_id, caption)


def _classic_layers(values: dict[str, Any]) -> list[dict[str, str]]:
    out = []
    for entry in as_list(values.get("layers")):
        if isinstance(entry, dict) and entry.get("id"):
            layer_id = as_str(entry["id"])
            out.append({"id": layer_id, "title": as_str(entry.get("title")) or layer_id})
        elif as_str(entry):
            out.append({"id": as_str(entry), "title": as_str(entry)})
    return out


def toggle_compare_layers(
    source_layers: list[dict[str, Any]],
    listed: list[dict[str, str]],
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """
    Left/right layer lists for a one-map comparison.

    Listed layers are hidden on the left and shown on the right, matched by trimmed id
    or title. Listed layers absent from the map are prepended to both sides.
    """
    keys = {value.strip() for layer in listed for value in (layer["id"], layer["title"])}
    left, right = [], []
    for layer in source_layers:
        matched = layer["id"].strip() in keys or layer["title"].strip() in keys
        left.append({**layer, "visible": False if matched else layer["visible"]})
        right.append({**layer, "visible": True if matched else layer["visible"]})
    source_keys = {value.strip() for layer in source_layers for value in (layer["id"], layer["title"])}
    for layer in listed:
        if layer["id"].strip() in source_keys or layer["title"].strip() in source_keys:
            continue
        left.insert(0, {"id": layer["id"], "title": layer["title"], "visible": False})
        right.insert(0, {"id": layer["id"], "title": layer["title"], "visible": True})
    return left, right


def _last_visible_title(layers: list[dict[str, Any]]) -> str:
    for layer in reversed(layers):
        if layer.get("visible") or layer.get("visibility"):
            return as_str(layer.get("title")).strip()
    return ""


def _build_two_layers(
    builder: GraphBuilder,
    values: dict[str, Any],
    definitions: dict[str, Any],
) -> Optional[ComparePanes]:
    base_id = as_str(values.get("webmap")).strip()
    if not base_id:
        logger.warning("Two-layer compare app has no base web map.")
        return None
    definition = as_dict(definitions.get(base_id))
    extent = resolve_extent(definition)
    center = resolve_center(definition)
    initial: dict[str, Any] = {}
    if extent is not None:
        initial["extent"] = extent
        scale_zoom = scale_zoom_from_extent_height(extent)
        if scale_zoom is not None:
            initial["viewpoint"] = {"targetGeometry": center or extent, "scale": scale_zoom[0]}
            initial["zoom"] = scale_zoom[1]
    if center is not None:
        initial["center"] = center
    resource_id = builder.webmap_resource(base_id, "Web Map", initial, variant="default")

    source_layers = map_layers(definition.get("operationalLayers"))
    left_layers, right_layers = toggle_compare_layers(source_layers, _classic_layers(values))
    shared = {k: initial[k] for k in ("extent", "viewpoint") if k in initial}
    left_id = builder.webmap_node(resource_id, mapLayers=left_layers, **shared)
    right_id = builder.webmap_node(resource_id, mapLayers=right_layers, **shared)

    # Heuristic label: the last visible layer in list order names each pane.
    left_title = _last_visible_title(left_layers) or _last_visible_title(
        as_list(dig(definition, "baseMap", "baseMapLayers"))
    )
    right_title = _last_visible_title(right_layers)
    caption = None
    if left_title and right_title:
        caption = f"Left: {left_title}{CAPTION_SEPARATOR}Right: {right_title}"
    return ComparePanes(left_id, right_id, caption)


def build_compare_panes(
    builder: GraphBuilder,
    values: dict[str, Any],
    definitions: Optional[dict[str, Any]] = None,
) -> Optional[ComparePanes]:
    """Create both map panes for a comparison app; None when its model cannot be built."""
    values = as_dict(values)
    definitions = definitions or {}
    if data_model(values) == TWO_LAYERS:
        return _build_two_layers(builder, values, definitions)
    return _build_two_webmaps(builder, values, definitions)


def _pane_ids(builder: GraphBuilder, swipe_id: str) -> list[str]:
    node = builder.node(swipe_id)
    contents = as_dict(node.data.get("contents")) if node is not None else {}
    return [as_str(contents.get(slot)) for slot in ("0", "1")]


def missing_compare_panes(builder: GraphBuilder, swipe_id: str) -> list[str]:
    """Slot ids of a swipe node that no longer resolve to nodes."""
    return [
        pane_id or slot
        for slot, pane_id in zip(("0", "1"), _pane_ids(builder, swipe_id))
        if not builder.has_node(pane_id)
    ]


def _remove_panes(builder: GraphBuilder, swipe_id: str) -> None:
    for pane_id in _pane_ids(builder, swipe_id):
        builder.remove_node(pane_id)


def ensure_compare_integrity(
    builder: GraphBuilder,
    swipe_id: str,
    rebuild: Callable[[], Optional[ComparePanes]],
) -> None:
    """
    Verify both panes of a swipe node resolve, rebuilding them once if not.

    When the rebuild cannot restore them the swipe subtree is removed and
    StructuralIntegrityError is raised so the caller can fall back to an embed.
    """
    missing = missing_compare_panes(builder, swipe_id)
    if not missing:
        return
    logger.warning("Swipe node %s references missing panes %s; rebuilding.", swipe_id, missing)
    _remove_panes(builder, swipe_id)
    panes = rebuild()
    if panes is not None:
        def _relink(data: dict[str, Any]) -> None:
            data["contents"] = {"0": panes.left_id, "1": panes.right_id}

        builder.update_node_data(swipe_id, _relink)
        missing = missing_compare_panes(builder, swipe_id)
        if not missing:
            return
    _remove_panes(builder, swipe_id)
    builder.remove_node(swipe_id)
    raise StructuralIntegrityError(swipe_id, missing)


def align_compare_panes(builder: GraphBuilder, swipe_id: str) -> bool:
    """
    Give the left pane of a swipe block the right pane's view when it has none.

    The right map resource's extent seeds a missing left extent; a missing viewpoint is
    derived from that extent, targeting the right resource's center (or its midpoint).
    Safe to call repeatedly, e.g. after map resources were enriched. Returns True when
    the left pane changed.
    """
    swipe = builder.node(swipe_id)
    if swipe is None or swipe.type != "swipe":
        return False
    contents = as_dict(swipe.data.get("contents"))
    left, right = builder.node(as_str(contents.get("0"))), builder.node(as_str(contents.get("1")))
    if left is None or right is None:
        return False
    right_resource = builder.resource(as_str(right.data.get("map")))
    right_data = right_resource.data if right_resource is not None else {}
    extent = left.data.get("extent")
    changed = False
    if not extent:
        extent = right.data.get("extent") or right_data.get("extent")
        if not extent:
            return False
        left.data["extent"] = copy.deepcopy(extent)
        changed = True
    if not left.data.get("viewpoint"):
        target = right_data.get("center") or right.data.get("center") or extent_center(extent)
        viewpoint = derive_viewpoint(extent, target)
        if viewpoint is not None:
            left.data["viewpoint"] = copy.deepcopy(viewpoint)
            changed = True
    return changed


def build_inline_compare(
    builder: GraphBuilder,
    values: dict[str, Any],
    layout: str = "swipe",
    definitions: Optional[dict[str, Any]] = None,
) -> str:
    """Build a swipe block for a compare app embedded in other content; returns its node id."""
    panes = build_compare_panes(builder, values, definitions)
    if panes is None:
        raise StructuralIntegrityError("(inline compare)", ["0", "1"])
    swipe_id = builder.swipe_node(panes.left_id, panes.right_id, "extent", panes.caption)
    ensure_compare_integrity(builder, swipe_id, lambda: build_compare_panes(builder, values, definitions))
    align_compare_panes(builder, swipe_id)
    logger.debug("Built inline %s compare block %s", layout, swipe_id)
    return swipe_id


class SwipeStrategy(ConversionStrategy):
    """Swipe and spyglass apps, in both the two-map and the one-map-two-layer model."""

    key = "swipe"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.builder = self.new_builder()
        self.model = TWO_WEBMAPS
        self.layout = "swipe"
        self.title = "Swipe"
        self.fell_back = False

    def _cover_title(self) -> str:
        title = as_str(self.values.get("title")).strip()
        if title and title.lower() not in GENERIC_TITLES:
            return title
        return self.item_title or as_str(self.values.get("name")).strip() or "Swipe"

    def extract_structure(self) -> Optional[str]:
        self.model = data_model(self.values)
        self.layout = compare_layout(self.values)
        self.title = self._cover_title()
        return f"Detected {self.layout} compare app ({self.model})"

    def _side_panel(self) -> None:
        description = as_str(self.values.get("sidePanelDescription")).strip()
        if not description:
            return
        if "<" in description and ">" in description:
            sanitized = sanitize_basic_html(description)
            if sanitized.inline_styles:
                self.builder.merge_converter_metadata(
                    self.template,
                    {
                        "classicMetadata": {
                            "mappingDecisions": {"customCss": {"combined": "\n".join(sanitized.inline_styles)}}
                        }
                    },
                )
            if sanitized.html.strip():
                self.builder.add_to_story(self.builder.rich_text_node(sanitized.html))
        else:
            self.builder.add_to_story(self.builder.text_node(description))

    def _fallback_url(self) -> str:
        portal = self.config.enrichment.portal_url.rstrip("/")
        app_id = as_str(self.context.item_info.get("id")).strip()
        if app_id:
            return APP_URL.format(portal=portal, app_id=app_id)
        ids = webmap_ids(self.values)
        return ITEM_URL.format(portal=portal, item_id=ids[0]) if ids else portal

    def convert_content(self) -> Optional[str]:
        self.builder.add_story_scaffold(self.title)
        self._side_panel()
        definitions = self.context.webmap_definitions
        panes = build_compare_panes(self.builder, self.values, definitions)
        try:
            if panes is None:
                raise StructuralIntegrityError("(compare)", ["0", "1"])
            swipe_id = self.builder.swipe_node(panes.left_id, panes.right_id, "extent", panes.caption)
            ensure_compare_integrity(
                self.builder, swipe_id, lambda: build_compare_panes(self.builder, self.values, definitions)
            )
        except StructuralIntegrityError as exc:
            logger.warning("Falling back to an embed: %s", exc)
            self.fell_back = True
            self.builder.add_to_story(self.builder.link_embed_node(self._fallback_url(), title=self.title))
            return "Compare block could not be built; embedded the app instead"
        if self.values.get("legend"):
            left_id = panes.left_id

            def _legend(data: dict[str, Any]) -> None:
                data["legendPinned"] = True
                data["legend"] = [left_id]

            self.builder.update_node_data(swipe_id, _legend)
        align_compare_panes(self.builder, swipe_id)
        self.builder.add_to_story(swipe_id)
        return f"Built {self.layout} block with two map panes"

    def apply_theme(self) -> Optional[str]:
        derived = compute_theme(self.config.theme_id, self.document, self.template)
        self.builder.apply_theme(derived.theme_id, derived.variable_overrides)
        self.builder.set_story_meta(self.title, as_str(self.values.get("description")))
        payload = template_provenance(self.document)
        classic = payload.setdefault("classicMetadata", {})
        classic["classicTheme"] = {"layout": self.layout, "model": self.model}
        classic["mappingDecisions"] = {"theme": derived.decisions}
        self.builder.merge_converter_metadata(self.template, payload)
        return f"Applied theme {derived.theme_id}"

    def outputs(self) -> StrategyRun:
        return StrategyRun([StrategyOutput(self.builder, self.title, list(self.media_urls), self.template)])
