from __future__ import annotations

import asyncio
from pathlib import Path
import unittest
from unittest import mock
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.builder import GraphBuilder
from storymap_conversion.config import EnrichmentConfig
from storymap_conversion.enrichment import enrich_document, find_placeholder_resources
from storymap_conversion.errors import ConversionCancelled, GraphConstructionError, PortalError
from storymap_conversion.progress import ProgressReporter


MAP_DEFINITION = {
    "version": "1.8",
    "mapOptions": {
        "extent": {"xmin": 0, "ymin": 0, "xmax": 2_000, "ymax": 1_000, "spatialReference": {"wkid": 102100}}
    },
    "operationalLayers": [{"id": "op", "title": "Roads", "visibility": True, "url": "http://example.com/0"}],
    "baseMap": {"baseMapLayers": [{"id": "base", "url": "https://example.com/tiles"}]},
}
SCENE_DEFINITION = {
    "initialState": {"view": {"viewpoint": {"camera": {"position": {"x": 1, "y": 2, "z": 3}, "tilt": 45}}}},
    "operationalLayers": [],
}


class _FakeFetcher:
    def __init__(self, definitions: dict, failures: tuple[str, ...] = ()):
        self.definitions = definitions
        self.failures = failures
        self.calls: list[tuple[str, str]] = []

    async def fetch_definition(self, kind: str, item_id: str) -> dict:
        self.calls.append((kind, item_id))
        await asyncio.sleep(0)
        if item_id in self.failures:
            raise PortalError(f"https://portal.example.com/{item_id}", "HTTP 500")
        return self.definitions[item_id]


class _StaggeredFetcher:
    def __init__(self, delays: dict[str, float]):
        self.delays = delays
        self.completed: list[str] = []
        self.interrupted: list[str] = []

    async def fetch_definition(self, kind: str, item_id: str) -> dict:
        try:
            await asyncio.sleep(self.delays[item_id])
        except asyncio.CancelledError:
            self.interrupted.append(item_id)
            raise
        self.completed.append(item_id)
        return MAP_DEFINITION


def _builder_with_placeholders() -> tuple[GraphBuilder, str]:
    builder = GraphBuilder()
    builder.create_root()
    map_resource = builder.webmap_resource("m1")
    builder.webmap_resource("s1", "Web Scene")
    builder.webmap_resource("broken")
    node_id = builder.webmap_node(map_resource)
    builder.add_to_story(node_id)
    return builder, node_id


class EnrichDocumentTest(unittest.TestCase):
    def test_placeholders_are_filled_and_failures_reported(self) -> None:
        builder, node_id = _builder_with_placeholders()
        fetcher = _FakeFetcher({"m1": MAP_DEFINITION, "s1": SCENE_DEFINITION}, failures=("broken",))
        events = []

        report = asyncio.run(
            enrich_document(builder, fetcher, ProgressReporter(events.append), classic_type="Map Journal")
        )

        self.assertEqual(sorted(report.enriched), ["r-m1", "r-s1"])
        self.assertIn("broken", report.failed)
        self.assertEqual(sorted(fetcher.calls), [("map", "broken"), ("map", "m1"), ("scene", "s1")])

        webmap = builder.resource("r-m1").data
        self.assertEqual(webmap["type"], "default")
        self.assertEqual(webmap["zoom"], 19)
        self.assertEqual(webmap["mapLayers"], [{"id": "op", "title": "Roads", "visible": True}])
        self.assertEqual(webmap["raw"]["summary"], {"baseMapLayerCount": 1, "operationalLayerCount": 1})

        scene = builder.resource("r-s1").data
        self.assertEqual((scene["type"], scene["itemType"]), ("default", "Web Scene"))
        self.assertTrue(scene["raw"]["summary"]["hasCamera"])

        self.assertEqual(builder.resource("r-broken").data["type"], "minimal")
        node = builder.node(node_id).data
        self.assertEqual(node["extent"]["xmax"], 2_000)
        self.assertEqual(node["viewpoint"]["scale"], 1_000)

        messages = [event.message for event in events]
        self.assertIn("Enriching 2 Web Map resource(s)...", messages)
        self.assertIn("Enriching 1 Web Scene resource(s)...", messages)
        self.assertTrue(any(m.startswith("Web Map enrichment failed for broken:") for m in messages))
        self.assertIn("Detected 1 web map(s) requiring version update (<2.0).", messages)
        self.assertIn("Detected 1 web map(s) with http:// layer URLs.", messages)

    def test_warnings_are_merged_into_converter_metadata(self) -> None:
        builder, _ = _builder_with_placeholders()
        fetcher = _FakeFetcher({"m1": MAP_DEFINITION, "s1": SCENE_DEFINITION}, failures=("broken",))
        asyncio.run(enrich_document(builder, fetcher, classic_type="Map Journal"))

        metadata = list(builder.resources.values())[-1]
        self.assertEqual(metadata.type, "converter-metadata")
        classic = metadata.data["classicMetadata"]
        self.assertEqual(classic["webmapVersionWarnings"][0]["itemId"], "m1")
        self.assertEqual(classic["webmapProtocolWarnings"][0]["httpLayerCount"], 1)

    def test_toggles_limit_item_types(self) -> None:
        builder, _ = _builder_with_placeholders()
        fetcher = _FakeFetcher({"m1": MAP_DEFINITION, "broken": {}})
        asyncio.run(enrich_document(builder, fetcher, config=EnrichmentConfig(enrich_scenes=False)))

        self.assertNotIn(("scene", "s1"), fetcher.calls)
        self.assertEqual(builder.resource("r-s1").data["type"], "minimal")
        self.assertEqual(
            [p.item_id for p in find_placeholder_resources(builder)], ["s1"]
        )

    def test_cancellation_propagates(self) -> None:
        builder, _ = _builder_with_placeholders()
        fetcher = _FakeFetcher({"m1": MAP_DEFINITION, "s1": SCENE_DEFINITION, "broken": {}})
        reporter = ProgressReporter(is_cancelled=lambda: True)
        with self.assertRaises(ConversionCancelled):
            asyncio.run(enrich_document(builder, fetcher, reporter))
        self.assertEqual(fetcher.calls, [])

    def test_cancellation_stops_sibling_fetches(self) -> None:
        builder = GraphBuilder()
        builder.webmap_resource("a")
        builder.webmap_resource("b")
        fetcher = _StaggeredFetcher({"a": 0, "b": 0.5})
        reporter = ProgressReporter(is_cancelled=lambda: "a" in fetcher.completed)

        with self.assertRaises(ConversionCancelled):
            asyncio.run(enrich_document(builder, fetcher, reporter))

        self.assertEqual(fetcher.completed, ["a"])
        self.assertEqual(fetcher.interrupted, ["b"])
        self.assertEqual(builder.resource("r-b").data["type"], "minimal")

    def test_builder_errors_are_not_reported_as_failed_fetches(self) -> None:
        builder = GraphBuilder()
        builder.webmap_resource("m1")
        fetcher = _FakeFetcher({"m1": MAP_DEFINITION})
        with mock.patch(
            "storymap_conversion.enrichment.fill_webmap_resource",
            side_effect=GraphConstructionError("Resource id collision: 'r-m1'"),
        ):
            with self.assertRaises(GraphConstructionError):
                asyncio.run(enrich_document(builder, fetcher))

    def test_nothing_to_do_without_placeholders(self) -> None:
        builder = GraphBuilder()
        builder.webmap_resource("done", variant="default")
        fetcher = _FakeFetcher({})
        report = asyncio.run(enrich_document(builder, fetcher))
        self.assertEqual(report.to_dict()["enriched"], [])
        self.assertEqual(fetcher.calls, [])


if __name__ == "__main__":
    unittest.main()
