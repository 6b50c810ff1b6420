from __future__ import annotations

from pathlib import Path
import math
import unittest
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.geometry import (
    ZOOM_ZERO_SCALE,
    derive_viewpoint,
    extent_center,
    item_extent_to_envelope,
    mercator_to_geographic,
    normalize_center,
    reproject_extent,
    scale_zoom_from_extent_height,
    zoom_from_scale,
)
from storymap_conversion.mapstate import resolve_extent, webmap_protocol_warning, webmap_version_warning


def _extent(height: float) -> dict:
    return {"xmin": 0, "ymin": 0, "xmax": 10, "ymax": height, "spatialReference": {"wkid": 102100}}


class ScaleLadderTest(unittest.TestCase):
    def test_bucket_bounds_are_inclusive(self) -> None:
        self.assertEqual(scale_zoom_from_extent_height(_extent(499)), (500, 20))
        self.assertEqual(scale_zoom_from_extent_height(_extent(500)), (500, 20))
        self.assertEqual(scale_zoom_from_extent_height(_extent(501)), (1000, 19))
        self.assertEqual(scale_zoom_from_extent_height(_extent(10_000_001)), (25_000_000, 6))

    def test_bare_height_and_invalid_extents(self) -> None:
        self.assertEqual(scale_zoom_from_extent_height(4_000), (5_000, 17))
        self.assertIsNone(scale_zoom_from_extent_height({"xmin": 0}))
        self.assertIsNone(scale_zoom_from_extent_height(None))

    def test_zoom_from_scale(self) -> None:
        self.assertEqual(zoom_from_scale(ZOOM_ZERO_SCALE), 0)
        self.assertEqual(zoom_from_scale(ZOOM_ZERO_SCALE / 2**10), 10)
        self.assertIsNone(zoom_from_scale(0))
        self.assertIsNone(zoom_from_scale("big"))


class ReprojectionTest(unittest.TestCase):
    def test_geographic_extent_becomes_web_mercator(self) -> None:
        extent = {"xmin": -1, "ymin": -1, "xmax": 1, "ymax": 1, "spatialReference": {"wkid": 4326}}
        out = reproject_extent(extent)

        self.assertEqual(out["spatialReference"], {"wkid": 102100, "latestWkid": 3857})
        self.assertAlmostEqual(out["xmax"], 6378137.0 * math.pi / 180.0, places=3)
        self.assertAlmostEqual(out["xmin"], -out["xmax"], places=6)

    def test_reprojection_is_idempotent(self) -> None:
        extent = {"xmin": 10, "ymin": 40, "xmax": 11, "ymax": 41, "spatialReference": {"wkid": 4326}}
        once = reproject_extent(extent)
        self.assertEqual(reproject_extent(once), once)

    def test_polar_and_non_geographic_extents_pass_through(self) -> None:
        polar = {"xmin": 0, "ymin": 80, "xmax": 1, "ymax": 90, "spatialReference": {"wkid": 4326}}
        mercator = _extent(100)
        self.assertIs(reproject_extent(polar), polar)
        self.assertIs(reproject_extent(mercator), mercator)

    def test_mercator_to_geographic_round_trip_bounds(self) -> None:
        lon, lat = mercator_to_geographic(0.0, 0.0)
        self.assertAlmostEqual(lon, 0.0)
        self.assertAlmostEqual(lat, 0.0)
        self.assertIsNone(mercator_to_geographic(1e9, 0.0))


class ViewHelpersTest(unittest.TestCase):
    def test_normalize_center_array(self) -> None:
        self.assertEqual(
            normalize_center([5, 6]), {"x": 5.0, "y": 6.0, "spatialReference": {"wkid": 4326}}
        )
        point = {"x": 1, "y": 2}
        self.assertIs(normalize_center(point), point)

    def test_extent_center_and_viewpoint(self) -> None:
        extent = _extent(1_000)
        center = extent_center(extent)
        self.assertEqual((center["x"], center["y"]), (5.0, 500.0))

        viewpoint = derive_viewpoint(extent)
        self.assertEqual(viewpoint, {"targetGeometry": extent, "scale": 1_000})
        self.assertEqual(derive_viewpoint(extent, center)["targetGeometry"], center)

    def test_item_extent_envelope(self) -> None:
        envelope = item_extent_to_envelope([[-10, -5], [10, 5]])
        self.assertEqual(envelope["xmin"], -10.0)
        self.assertEqual(envelope["spatialReference"], {"wkid": 4326})
        self.assertIsNone(item_extent_to_envelope([[0, 0]]))

    def test_resolve_extent_prefers_initial_state(self) -> None:
        definition = {
            "initialState": {"view": {"extent": _extent(50)}},
            "mapOptions": {"extent": _extent(5_000)},
        }
        self.assertEqual(resolve_extent(definition)["ymax"], 50)
        self.assertIsNone(resolve_extent({}))

    def test_webmap_warnings(self) -> None:
        old = {"version": "1.9", "operationalLayers": [{"id": "a", "url": "http://x/MapServer/0"}]}
        current = {"version": "2.21", "operationalLayers": [{"id": "a", "url": "https://x/MapServer/0"}]}

        self.assertEqual(webmap_version_warning("m1", old)["version"], "1.9")
        self.assertEqual(webmap_protocol_warning("m1", old)["httpLayerCount"], 1)
        self.assertIsNone(webmap_version_warning("m2", current))
        self.assertIsNone(webmap_protocol_warning("m2", current))


if __name__ == "__main__":
    unittest.main()
