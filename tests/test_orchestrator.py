from __future__ import annotations

import asyncio
import json
from pathlib import Path
import unittest
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.config import ConversionConfig
from storymap_conversion.errors import ConversionCancelled, PortalError
from storymap_conversion.orchestrator import ConversionOrchestrator, embedded_app_ids, tour_layer_url


EXAMPLES_DIR = Path(__file__).resolve().parents[1] / "examples" / "classic"
APP_ID = "0123456789abcdef0123456789abcdef"
MAP_A = "a" * 32
MAP_B = "b" * 32
LAND_USE_MAP = "c" * 32

EXTENT = {"xmin": 0, "ymin": 0, "xmax": 4_000, "ymax": 4_000, "spatialReference": {"wkid": 102100}}


def _load(name: str) -> dict:
    payload = json.loads((EXAMPLES_DIR / name).read_text())
    return payload.get("data", payload)


def _journal_with_compare_iframe() -> dict:
    src = f"https://www.arcgis.com/apps/StorymapSwipe/index.html?appid={APP_ID}"
    return {
        "values": {
            "title": "Rivers",
            "story": {
                "sections": [
                    {"title": "Intro", "content": "<p>Two rivers meet here.</p>"},
                    {"title": "Then and now", "content": f'<p>Compare:</p><iframe src="{src}"></iframe>'},
                ]
            },
        }
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
            raise PortalError(f"https://portal.example.com/{item_id}", "HTTP 403")
        return self.definitions[item_id]


def _convert(document: dict, fetcher=None, config=None, **kwargs):
    events = []
    orchestrator = ConversionOrchestrator(config or ConversionConfig(), fetcher, events.append, **kwargs)
    result = asyncio.run(orchestrator.convert(document))
    return result, [event.message for event in events]


class OfflineConversionTest(unittest.TestCase):
    def test_swipe_without_fetcher(self) -> None:
        result, messages = _convert(_load("swipe.json"), config=ConversionConfig.offline())
        self.assertEqual(result.template, "Swipe")
        self.assertEqual(messages[0], "Detected template: Swipe")
        self.assertEqual(messages[-1], "Converted Swipe into 1 document(s)")
        self.assertEqual(len(result.documents), 1)
        self.assertEqual(result.warnings, [])
        self.assertFalse(result.is_series)

    def test_series_warnings_are_prefixed_with_entry_titles(self) -> None:
        result, _ = _convert(_load("series.json"), config=ConversionConfig.offline())
        self.assertTrue(result.is_series)
        self.assertEqual(result.entry_titles, ["Overview", "Land use", "Field notes"])
        self.assertIn("[Land use] 1 map resource(s) remain minimal placeholders.", result.warnings)
        self.assertEqual(result.series_settings.panel_position, "start")

    def test_cancellation_before_detection(self) -> None:
        events = []
        orchestrator = ConversionOrchestrator(
            ConversionConfig.offline(), None, events.append, is_cancelled=lambda: True
        )
        with self.assertRaises(ConversionCancelled):
            asyncio.run(orchestrator.convert(_load("swipe.json")))
        self.assertEqual([event.stage for event in events], ["cancelled"])


class PrefetchConversionTest(unittest.TestCase):
    def test_journal_iframe_app_becomes_inline_compare(self) -> None:
        fetcher = _FakeFetcher(
            {
                APP_ID: {"values": {"dataModel": "TWO_WEBMAPS", "webmaps": [MAP_A, MAP_B]}},
                MAP_A: {"title": "Before", "mapOptions": {"extent": EXTENT}},
                MAP_B: {"title": "After", "mapOptions": {"extent": EXTENT}},
            }
        )
        result, messages = _convert(_journal_with_compare_iframe(), fetcher)

        self.assertEqual(fetcher.calls, [("app", APP_ID), ("map", MAP_A), ("map", MAP_B)])
        self.assertIn("Prefetching 1 embedded app(s)...", messages)
        nodes = result.document.nodes
        swipes = [node for node in nodes.values() if node.type == "swipe"]
        self.assertEqual(len(swipes), 1)
        self.assertEqual(swipes[0].data["caption"], "Left: Before \u2014 Right: After")
        self.assertEqual(result.warnings, [])

    def test_app_fetch_failure_falls_back_to_embed(self) -> None:
        fetcher = _FakeFetcher({}, failures=(APP_ID,))
        result, messages = _convert(_journal_with_compare_iframe(), fetcher)

        self.assertTrue(any(m.startswith(f"Could not load app {APP_ID}:") for m in messages))
        types = [node.type for node in result.document.nodes.values()]
        self.assertNotIn("swipe", types)
        self.assertIn("embed", types)

    def test_series_placeholders_are_enriched(self) -> None:
        fetcher = _FakeFetcher({LAND_USE_MAP: {"version": "2.1", "mapOptions": {"extent": EXTENT}}})
        result, messages = _convert(_load("series.json"), fetcher)

        self.assertEqual(fetcher.calls, [("map", LAND_USE_MAP)])
        self.assertIn("Enriched Web Map " + LAND_USE_MAP, messages)
        self.assertFalse(any("minimal placeholders" in w for w in result.warnings))
        land_use = result.documents[1]
        resource = land_use.resources[f"r-{LAND_USE_MAP}"]
        self.assertEqual(resource.data["type"], "default")
        self.assertEqual(resource.data["extent"], EXTENT)

    def test_cancellation_during_prefetch(self) -> None:
        checks = iter([False, False])
        fetcher = _FakeFetcher({APP_ID: {"values": {}}})
        orchestrator = ConversionOrchestrator(
            ConversionConfig(), fetcher, is_cancelled=lambda: next(checks, True)
        )
        with self.assertRaises(ConversionCancelled):
            asyncio.run(orchestrator.convert(_journal_with_compare_iframe()))


class OrchestratorHelpersTest(unittest.TestCase):
    def test_embedded_app_ids(self) -> None:
        document = _journal_with_compare_iframe()
        self.assertEqual(embedded_app_ids(document, "Map Journal"), [APP_ID])
        self.assertEqual(embedded_app_ids(document, "Swipe"), [])

    def test_tour_layer_url(self) -> None:
        definition = {
            "operationalLayers": [
                {"id": "roads", "url": "https://example.com/roads/0"},
                {"id": "maptour-layer-1234", "url": "https://example.com/tour/0"},
            ]
        }
        self.assertEqual(tour_layer_url(definition), "https://example.com/tour/0")
        self.assertEqual(tour_layer_url(definition, "roads"), "https://example.com/roads/0")
        self.assertIsNone(tour_layer_url({"operationalLayers": [{"id": "roads"}]}))


if __name__ == "__main__":
    unittest.main()
