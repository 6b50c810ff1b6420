"""Map Tour documents -> a tour block over a numbered-point tour map."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Optional

from .._coerce import as_dict, as_list, as_str, first_str
from ..geometry import mercator_to_geographic
from ..theme import compute_theme
from .base import ConversionStrategy, StrategyOutput, StrategyRun, template_provenance


logger = logging.getLogger(__name__)

TITLE_KEYS = ("name", "Name", "NAME", "title", "Title", "TITLE")
DESCRIPTION_KEYS = (
    "description", "Description", "DESCRIPTION", "desc", "Desc", "DESC",
    "desc1", "Desc1", "DESC1", "caption", "Caption", "CAPTION", "FULL_Caption",
)
IMAGE_URL_KEYS = ("pic_url", "Pic_url", "PIC_URL", "url", "Url", "URL")
THUMB_URL_KEYS = ("thumb_url", "Thumb_url", "THUMB_URL")
LONGITUDE_KEYS = ("long", "Long", "LONG", "LON", "longitude", "Longitude", "LONGITUDE", "x")
LATITUDE_KEYS = ("lat", "Lat", "LAT", "latitude", "Latitude", "LATITUDE", "y")
FEATURE_ID_KEYS = (
    "__OBJECTID", "objectid", "id", "ID", "FID", "fid",
    "ObjectID", "Object_Id", "OBJECTID", "OBJECTID_1",
)

TOUR_POINT_TYPE = "POINT_NUMBERED_TOUR"
TOUR_POINT_SCALE = 4514
TOUR_ACCENT_COLOR = "#f9f794"
EXPLORER_THRESHOLD = 15
LAYOUT_MAPPING = {
    "three-panel": ("guided-tour", "media-focused"),
    "side-panel": ("guided-tour", "media-focused"),
    "integrated": ("guided-tour", "map-focused"),
}
_TOUR_LAYER_TITLE_RE = re.compile(r"map\s*tour|maptour", re.IGNORECASE)
_TOUR_LAYER_ID_RE = re.compile(r"^maptour-layer", re.IGNORECASE)


def _to_float(value: Any) -> Optional[float]:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return out if math.isfinite(out) else None


def attribute_coords(place: dict[str, Any]) -> Optional[tuple[float, float]]:
    """(lon, lat) from flat attribute fields, when both are valid geographic numbers."""
    lon = _to_float(first_str(place, LONGITUDE_KEYS, default=""))
    lat = _to_float(first_str(place, LATITUDE_KEYS, default=""))
    if lon is None or lat is None or abs(lon) > 180 or abs(lat) > 90:
        return None
    return lon, lat


def normalize_coords(x: Any, y: Any) -> Optional[tuple[float, float]]:
    """Geographic coordinates pass through; Web-Mercator-looking ones are inverted."""
    fx, fy = _to_float(x), _to_float(y)
    if fx is None or fy is None:
        return None
    if abs(fx) <= 180 and abs(fy) <= 90:
        return fx, fy
    return mercator_to_geographic(fx, fy)


def place_coords(place: dict[str, Any]) -> Optional[tuple[float, float]]:
    coords = attribute_coords(place)
    if coords is None:
        geometry = as_dict(place.get("geometry"))
        if "x" in geometry and "y" in geometry:
            coords = normalize_coords(geometry["x"], geometry["y"])
    return coords


def features_to_places(features: Any) -> list[dict[str, Any]]:
    """Flatten feature records into place dicts keyed by their object id."""
    places = []
    for feature in as_list(features):
        attributes = as_dict(as_dict(feature).get("attributes"))
        feature_id: Any = None
        for key in FEATURE_ID_KEYS:
            value = attributes.get(key)
            if value is not None and str(value).strip():
                feature_id = value if isinstance(value, (int, float)) else str(value).strip()
                break
        if feature_id is None:
            continue
        places.append({**attributes, "id": feature_id, "geometry": as_dict(feature).get("geometry")})
    return places


def features_from_webmap(definition: Any, source_layer: str = "") -> list[dict[str, Any]]:
    """Features of the tour's feature collection embedded in a web map definition."""
    for layer in as_list(as_dict(definition).get("operationalLayers")):
        if not isinstance(layer, dict):
            continue
        layer_id = as_str(layer.get("id"))
        matches = (
            bool(source_layer and (layer_id == source_layer or source_layer in layer_id or layer_id in source_layer))
            or bool(_TOUR_LAYER_ID_RE.search(layer_id))
            or bool(_TOUR_LAYER_TITLE_RE.search(as_str(layer.get("title"))))
        )
        if not matches:
            continue
        for collection in as_list(as_dict(layer.get("featureCollection")).get("layers")):
            features = as_dict(as_dict(collection).get("featureSet")).get("features")
            if isinstance(features, list):
                return features
    return []


def tour_layout(layout_id: str, place_count: int) -> tuple[str, str]:
    """(tour type, subtype); large tours always become a grid explorer."""
    if place_count > EXPLORER_THRESHOLD:
        return "explorer", "grid"
    return LAYOUT_MAPPING.get(layout_id, LAYOUT_MAPPING["integrated"])


class TourStrategy(ConversionStrategy):
    key = "tour"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.builder = self.new_builder()
        self.title = "Untitled Story"
        self.subtitle = ""
        self.places: list[dict[str, Any]] = []
        self.place_source = "places"

    def _raw_places(self) -> list[dict[str, Any]]:
        places = [p for p in as_list(self.values.get("places")) if isinstance(p, dict)]
        if places:
            return places
        places = features_to_places(self.context.tour_features)
        if places:
            self.place_source = "feature-layer"
            return places
        webmap_id = as_str(self.values.get("webmap")).strip()
        definition = self.context.webmap_definitions.get(webmap_id)
        places = features_to_places(features_from_webmap(definition, as_str(self.values.get("sourceLayer"))))
        self.place_source = "webmap" if places else "none"
        return places

    def extract_structure(self) -> Optional[str]:
        self.title = as_str(self.values.get("title")).strip() or "Untitled Story"
        self.subtitle = as_str(self.values.get("subtitle"))
        raw = self._raw_places()
        order = [o for o in as_list(self.values.get("order")) if isinstance(o, dict) and "id" in o]
        if not order:
            order = [{"id": p.get("id"), "visible": p.get("visible") is not False} for p in raw]
        by_id = {str(p.get("id")): p for p in raw if p.get("id") is not None}
        self.places = []
        for entry in order:
            place = by_id.get(str(entry["id"]))
            if place is not None:
                self.places.append(dict(place, visible=entry.get("visible") is not False))
        return f"Extracted {len(self.places)} place(s) from {self.place_source}"

    def convert_content(self) -> Optional[str]:
        builder = self.builder
        builder.add_story_scaffold(self.title, self.subtitle)
        geometries: dict[str, Any] = {}
        tour_places = []
        cover_image = None
        for index, place in enumerate(self.places):
            image_ids = []
            for keys in (IMAGE_URL_KEYS, THUMB_URL_KEYS):
                url = first_str(place, keys)
                if not url:
                    continue
                self.record_media(url)
                resource_id = builder.image_resource(url)
                if index == 0 and cover_image is None and keys is IMAGE_URL_KEYS:
                    cover_image = resource_id
                image_ids.append(builder.image_node(resource_id, size="standard"))
            title_id = builder.text_node(first_str(place, TITLE_KEYS) or f"Place {index + 1}", "h3")
            content_id = builder.text_node(first_str(place, DESCRIPTION_KEYS))

            geometry_id = builder.new_id()
            coords = place_coords(place)
            if coords is not None:
                geometries[geometry_id] = {
                    "id": geometry_id,
                    "type": TOUR_POINT_TYPE,
                    "nodes": [{"long": coords[0], "lat": coords[1]}],
                    "viewpoint": {},
                    "scale": TOUR_POINT_SCALE,
                }
            else:
                logger.debug("Place %r has no usable coordinates.", place.get("id"))
            tour_place: dict[str, Any] = {
                "id": builder.new_id(),
                "featureId": geometry_id,
                "contents": [content_id],
                "title": title_id,
            }
            if image_ids:
                tour_place["media"] = builder.carousel_node(image_ids)
            if not place.get("visible", True):
                tour_place["config"] = {"isHidden": True}
            tour_places.append(tour_place)

        layout_id = as_str(self.values.get("layout")) or "integrated"
        tour_type, subtype = tour_layout(layout_id, len(tour_places))
        webmap_id = as_str(self.values.get("webmap")).strip() or None
        tour_map_id = builder.tour_map_node(geometries, webmap_id)
        placard = "end" if self.values.get("placardPosition") == "end" else "start"
        tour_id = builder.tour_node(
            tour_places, tour_map_id, TOUR_ACCENT_COLOR, placard, "large", tour_type, subtype
        )
        builder.add_to_story(tour_map_id)
        builder.add_to_story(tour_id)
        intro_image = cover_image if self.values.get("firstRecordAsIntro") else None
        builder.set_story_meta(self.title, self.subtitle, intro_image)
        return f"Built {len(tour_places)} place(s); layout={layout_id} mapped to {tour_type}/{subtype}"

    def apply_theme(self) -> Optional[str]:
        derived = compute_theme(self.config.theme_id, self.document, self.template)
        self.builder.apply_theme(derived.theme_id, derived.variable_overrides)
        payload = template_provenance(self.document)
        payload.setdefault("classicMetadata", {})["mappingDecisions"] = dict(
            derived.decisions, placeSource=self.place_source
        )
        self.builder.merge_converter_metadata(self.template, payload)
        return f"Applied theme {derived.theme_id}"

    def outputs(self) -> StrategyRun:
        return StrategyRun([StrategyOutput(self.builder, self.title, list(self.media_urls), self.template)])
