"""Read view state (extent, center, layers, scene camera) out of map and scene definitions."""

from __future__ import annotations

import copy
from typing import Any, Optional

from ._coerce import as_dict, as_list
from .geometry import (
    derive_viewpoint,
    extent_bounds,
    item_extent_to_envelope,
    normalize_center,
    reproject_extent,
    scale_zoom_from_extent_height,
)


MIN_WEBMAP_VERSION = 2.0
VERSION_WARNING_MESSAGE = (
    "Unsupported web map version: update the web map to the latest version by opening it "
    "in Map Viewer Classic and saving it."
)
PROTOCOL_WARNING_MESSAGE = (
    "Unsupported protocol: update layer URLs to HTTPS from the web map settings page."
)


def resolve_extent(definition: Any) -> Optional[dict[str, Any]]:
    """First extent found in initialState.view, mapOptions, top level, then mapOptions.mapExtent."""
    data = as_dict(definition)
    map_options = as_dict(data.get("mapOptions"))
    for candidate in (
        as_dict(as_dict(data.get("initialState")).get("view")).get("extent"),
        map_options.get("extent"),
        data.get("extent"),
        map_options.get("mapExtent"),
    ):
        if isinstance(candidate, dict) and extent_bounds(candidate) is not None:
            return reproject_extent(copy.deepcopy(candidate))
        if isinstance(candidate, list):
            envelope = item_extent_to_envelope(candidate)
            if envelope is not None:
                return reproject_extent(envelope)
    return None


def resolve_center(definition: Any) -> Any:
    data = as_dict(definition)
    for candidate in (
        as_dict(as_dict(data.get("initialState")).get("view")).get("center"),
        as_dict(data.get("mapOptions")).get("center"),
        data.get("center"),
    ):
        if candidate:
            return normalize_center(copy.deepcopy(candidate))
    return None


def map_layers(layers: Any) -> list[dict[str, Any]]:
    """`[{id, title, visible}]` for operational layers; title falls back to the id."""
    out = []
    for layer in as_list(layers):
        if not isinstance(layer, dict) or layer.get("id") is None:
            continue
        layer_id = str(layer["id"])
        out.append(
            {
                "id": layer_id,
                "title": str(layer.get("title") or layer_id),
                "visible": bool(layer.get("visibility", layer.get("visible", False))),
            }
        )
    return out


def basemap_summary(definition: Any) -> dict[str, Any]:
    layers = []
    for layer in as_list(as_dict(as_dict(definition).get("baseMap")).get("baseMapLayers")):
        if not isinstance(layer, dict):
            continue
        layers.append(
            {
                "id": layer.get("id"),
                "title": layer.get("title"),
                "url": layer.get("url"),
                "opacity": layer.get("opacity"),
                "visibility": layer.get("visibility"),
                "layerType": layer.get("layerType"),
                "isReference": bool(layer.get("isReference")),
            }
        )
    return {"baseMapLayers": layers}


def has_time_animation(layers: Any) -> bool:
    return any(isinstance(l, dict) and l.get("timeAnimation") is True for l in as_list(layers))


def webmap_view_state(
    definition: Any,
    item_info: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """
    Extent, center, zoom, viewpoint and layer list of a web map definition.

    The portal item's `[[xmin, ymin], [xmax, ymax]]` extent is used when the definition
    carries none. Keys whose value cannot be derived are omitted.
    """
    extent = resolve_extent(definition)
    center = resolve_center(definition)
    info = as_dict(item_info)
    if extent is None:
        envelope = item_extent_to_envelope(info.get("extent"))
        extent = reproject_extent(envelope) if envelope is not None else None
    if center is None and isinstance(info.get("center"), list):
        center = normalize_center(info["center"])
    state: dict[str, Any] = {}
    if extent is not None:
        state["extent"] = extent
        scale_zoom = scale_zoom_from_extent_height(extent)
        if scale_zoom is not None:
            state["zoom"] = scale_zoom[1]
        state["viewpoint"] = derive_viewpoint(extent, center)
    if center is not None:
        state["center"] = center
    operational = as_dict(definition).get("operationalLayers")
    if isinstance(operational, list):
        state["mapLayers"] = map_layers(operational)
    return {k: v for k, v in state.items() if v is not None}


def webscene_view_state(definition: Any) -> dict[str, Any]:
    """Camera viewpoint, layers, slides and environment of a web scene definition."""
    data = as_dict(definition)
    view = as_dict(data.get("view"))
    initial_view = as_dict(as_dict(data.get("initialState")).get("view"))
    environment = as_dict(data.get("environment"))
    viewpoint = None
    camera_source = as_dict(initial_view.get("viewpoint")) or view
    if camera_source.get("camera"):
        viewpoint = {
            "camera": camera_source.get("camera"),
            "rotation": camera_source.get("rotation"),
            "scale": camera_source.get("scale"),
            "targetGeometry": camera_source.get("targetGeometry"),
        }
    slides = []
    for slide in as_list(as_dict(data.get("presentation")).get("slides") or data.get("slides")):
        if not isinstance(slide, dict):
            continue
        slide_viewpoint = as_dict(slide.get("viewpoint"))
        title = slide.get("title")
        if isinstance(title, dict):
            title = title.get("text")
        slides.append(
            {
                "id": slide.get("id"),
                "title": title or slide.get("name") or "",
                "visibleLayers": [
                    {"id": as_dict(v).get("id")} for v in as_list(slide.get("visibleLayers"))
                ],
                "camera": slide_viewpoint.get("camera") or slide.get("camera"),
            }
        )
    weather = as_dict(environment.get("weather"))
    state: dict[str, Any] = {
        "extent": initial_view.get("extent") or view.get("extent"),
        "center": initial_view.get("center") or view.get("center"),
        "viewpoint": viewpoint,
        "baseMap": basemap_summary(data),
        "mapLayers": map_layers(data.get("operationalLayers")),
        "slides": slides,
        "lightingDate": as_dict(environment.get("lighting")).get("date"),
        "weather": {"type": weather.get("type"), "cloudCover": weather.get("cloudCover")} if weather else None,
        "ground": {"opacity": as_dict(data.get("ground")).get("opacity", as_dict(environment.get("ground")).get("opacity"))},
    }
    return {k: v for k, v in state.items() if v is not None}


def webmap_version_warning(item_id: str, definition: Any) -> Optional[dict[str, Any]]:
    data = as_dict(definition)
    raw = data.get("version") or data.get("mapVersion") or data.get("webMapVersion")
    if raw is None:
        return None
    version = str(raw).strip()
    try:
        numeric = float(version)
    except ValueError:
        return None
    if numeric >= MIN_WEBMAP_VERSION:
        return None
    return {"itemId": item_id, "version": version, "type": "version", "message": VERSION_WARNING_MESSAGE}


def webmap_protocol_warning(item_id: str, definition: Any) -> Optional[dict[str, Any]]:
    data = as_dict(definition)
    layers = as_list(data.get("operationalLayers")) + as_list(
        as_dict(data.get("baseMap")).get("baseMapLayers")
    )
    http_count = sum(
        1
        for layer in layers
        if isinstance(layer, dict)
        and isinstance(layer.get("url"), str)
        and layer["url"].lower().startswith("http:")
    )
    if not http_count:
        return None
    return {
        "itemId": item_id,
        "httpLayerCount": http_count,
        "type": "protocol",
        "message": PROTOCOL_WARNING_MESSAGE,
    }
