from __future__ import annotations

import json
from pathlib import Path
import unittest
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.builder import GraphBuilder
from storymap_conversion.config import ConversionConfig
from storymap_conversion.errors import StructuralIntegrityError
from storymap_conversion.pipeline import run_strategy
from storymap_conversion.strategies import StrategyContext
from storymap_conversion.strategies.series import NESTED_SERIES_TEXT, classify_entry
from storymap_conversion.strategies.swipe import (
    align_compare_panes,
    ensure_compare_integrity,
    toggle_compare_layers,
)
from storymap_conversion.strategies.tour import features_to_places, tour_layout
from storymap_conversion.validation import validate_document


EXAMPLES_DIR = Path(__file__).resolve().parents[1] / "examples" / "classic"
MAP_A = "a" * 32
MAP_B = "b" * 32


def _load(name: str) -> dict:
    payload = json.loads((EXAMPLES_DIR / name).read_text())
    return payload.get("data", payload)


def _texts(builder: GraphBuilder, node_type: str = "text") -> dict[str, str]:
    return {nid: builder.node(nid).data.get("text", "") for nid in builder.nodes_of_type(node_type)}


class JournalStrategyTest(unittest.TestCase):
    def setUp(self) -> None:
        self.run = run_strategy("journal", _load("journal.json"), ConversionConfig.offline())
        self.output = self.run.outputs[0]
        self.builder = self.output.builder

    def test_single_sidecar_with_one_slide_per_section(self) -> None:
        immersives = self.builder.nodes_of_type("immersive")
        self.assertEqual(len(self.run.outputs), 1)
        self.assertEqual(self.output.title, "Rivers of the Valley")
        self.assertEqual(len(immersives), 1)
        sidecar = self.builder.node(immersives[0])
        self.assertEqual(sidecar.data["subtype"], "docked-panel")
        self.assertEqual(sidecar.data["narrativePanelPosition"], "start")
        self.assertEqual(len(sidecar.children), 3)

    def test_media_action_becomes_replace_media_action(self) -> None:
        self.assertEqual(len(self.builder.actions), 1)
        action = self.builder.actions[0]
        button = self.builder.node(action.origin)
        media = self.builder.node(action.data["media"])

        self.assertEqual(button.type, "action-button")
        self.assertEqual(button.data["text"], "Show the map")
        self.assertEqual(button.data["dependents"], {"actionMedia": action.data["media"]})
        self.assertEqual(media.type, "webmap")
        self.assertIn(action.data["media"], self.builder.node(action.target).children)

    def test_inline_navigate_anchor_links_to_target_heading(self) -> None:
        texts = _texts(self.builder)
        delta = next(nid for nid, text in texts.items() if text == "The delta")
        anchor_text = next(text for text in texts.values() if 'data-storymaps="act-1"' in text)
        self.assertIn(f'href="#ref-{delta}"', anchor_text)

    def test_maps_with_legacy_extents_are_full_resources(self) -> None:
        gorge = self.builder.resource("r-1a2b3c4d5e6f47a8b9c0d1e2f3a4b5c6").data
        delta = self.builder.resource("r-9f8e7d6c5b4a43219f8e7d6c5b4a4321").data

        self.assertEqual(gorge["type"], "default")
        self.assertEqual(gorge["extent"]["spatialReference"]["wkid"], 102100)
        self.assertEqual(delta["type"], "default")
        delta_node = next(
            self.builder.node(nid)
            for nid in self.builder.nodes_of_type("webmap")
            if self.builder.node(nid).data["map"] == "r-9f8e7d6c5b4a43219f8e7d6c5b4a4321"
        )
        self.assertEqual(delta_node.data["legend"], {"openByDefault": False})
        self.assertEqual(delta_node.data["caption"], "Map: The delta")

    def test_theme_metadata_and_media(self) -> None:
        theme = self.builder.resource(self.builder.theme_resource_id).data
        self.assertEqual(theme["themeId"], "summit")
        self.assertEqual(theme["themeBaseVariableOverrides"]["bodyFontId"], "openSans")
        self.assertEqual(theme["themeBaseVariableOverrides"]["backgroundColor"], "#f5f1e6")

        metadata = list(self.builder.resources.values())[-1]
        self.assertEqual(metadata.type, "converter-metadata")
        self.assertEqual(metadata.data["classicType"], "Map Journal")
        self.assertEqual(metadata.data["classicTemplateCreation"], "1546300800000")
        self.assertEqual(metadata.data["classicMetadata"]["mappingDecisions"]["videoEmbeds"], 1)

        self.assertEqual(
            self.output.media_urls,
            [
                "https://example.com/images/source.jpg",
                "1a2b3c4d5e6f47a8b9c0d1e2f3a4b5c6",
                "9f8e7d6c5b4a43219f8e7d6c5b4a4321",
            ],
        )

    def test_export_is_closed(self) -> None:
        self.assertEqual(validate_document(self.builder.export()), [])

    def test_float_layout_without_theme_falls_back_to_obsidian(self) -> None:
        document = {
            "values": {
                "title": "Float",
                "settings": {"layout": {"id": "float"}},
                "story": {"sections": [{"title": "One", "content": "<p>Body</p>"}]},
            }
        }
        builder = run_strategy("journal", document, ConversionConfig.offline()).outputs[0].builder
        self.assertEqual(builder.resource(builder.theme_resource_id).data["themeId"], "obsidian")
        sidecar = builder.node(builder.nodes_of_type("immersive")[0])
        self.assertEqual(sidecar.data["subtype"], "floating-panel")


class SwipeStrategyTest(unittest.TestCase):
    def test_two_webmaps_become_a_swipe_block(self) -> None:
        context = StrategyContext(item_info={"title": "Forest change"})
        run = run_strategy("swipe", _load("swipe.json"), ConversionConfig.offline(), context=context)
        output = run.outputs[0]
        builder = output.builder

        self.assertEqual(output.title, "Forest change")
        swipe_id = builder.nodes_of_type("swipe")[0]
        swipe = builder.node(swipe_id).data
        left, right = swipe["contents"]["0"], swipe["contents"]["1"]
        self.assertEqual(builder.node(left).data["map"], f"r-{MAP_A}")
        self.assertEqual(builder.node(right).data["map"], f"r-{MAP_B}")
        self.assertEqual(swipe["legend"], [left])
        self.assertTrue(swipe["legendPinned"])
        self.assertEqual(swipe["caption"], "Left: Forest cover 1990 \u2014 Right: Forest cover 2020")
        self.assertEqual(builder.node(left).data["viewpoint"]["targetGeometry"], {"x": 5, "y": 5})

        theme = builder.resource(builder.theme_resource_id).data
        self.assertEqual(theme["themeBaseVariableOverrides"]["headerFooterBackgroundColor"], "#1d2b36")
        self.assertEqual(validate_document(builder.export()), [])

    def test_left_map_without_extent_is_framed_on_the_right_map(self) -> None:
        extent = {"xmin": 0, "ymin": 0, "xmax": 1_000, "ymax": 1_000}
        document = {
            "values": {
                "dataModel": "TWO_WEBMAPS",
                "webmaps": [
                    {"id": MAP_A, "title": "Before"},
                    {"id": MAP_B, "title": "After", "extent": extent},
                ],
            }
        }
        builder = run_strategy("swipe", document, ConversionConfig.offline()).outputs[0].builder

        swipe = builder.node(builder.nodes_of_type("swipe")[0]).data
        left = builder.node(swipe["contents"]["0"]).data
        right = builder.node(swipe["contents"]["1"]).data
        self.assertEqual(left["map"], f"r-{MAP_A}")
        self.assertEqual(left["extent"], right["extent"])
        self.assertEqual(left["viewpoint"], right["viewpoint"])
        self.assertEqual(left["viewpoint"]["scale"], 1000)
        self.assertEqual(builder.resource(f"r-{MAP_A}").data["extent"], right["extent"])
        self.assertEqual(swipe["caption"], "Left: Before \u2014 Right: After")

    def test_single_map_falls_back_to_app_embed(self) -> None:
        document = {"values": {"dataModel": "TWO_WEBMAPS", "webmaps": [MAP_A]}}
        context = StrategyContext(item_info={"id": "feedface"})
        builder = run_strategy("swipe", document, ConversionConfig.offline(), context=context).outputs[0].builder

        self.assertEqual(builder.nodes_of_type("swipe"), [])
        embed = builder.node(builder.nodes_of_type("embed")[0]).data
        self.assertEqual(embed["url"], "https://www.arcgis.com/apps/StorymapSwipe/index.html?appid=feedface")

    def test_left_pane_takes_right_view(self) -> None:
        builder = GraphBuilder()
        extent = {"xmin": 0, "ymin": 0, "xmax": 10, "ymax": 10}
        builder.webmap_resource(MAP_A, variant="default")
        builder.webmap_resource(MAP_B, initial_state={"extent": extent, "center": {"x": 5, "y": 5}}, variant="default")
        left = builder.webmap_node(f"r-{MAP_A}")
        right = builder.webmap_node(f"r-{MAP_B}", extent=extent)
        swipe_id = builder.swipe_node(left, right)

        self.assertTrue(align_compare_panes(builder, swipe_id))
        self.assertEqual(builder.node(left).data["extent"], extent)
        self.assertEqual(
            builder.node(left).data["viewpoint"], {"targetGeometry": {"x": 5, "y": 5}, "scale": 500}
        )
        self.assertFalse(align_compare_panes(builder, swipe_id))

    def test_unrecoverable_missing_panes_remove_the_block(self) -> None:
        builder = GraphBuilder()
        swipe_id = builder.swipe_node("n-404", "n-405")
        with self.assertRaises(StructuralIntegrityError):
            ensure_compare_integrity(builder, swipe_id, lambda: None)
        self.assertFalse(builder.has_node(swipe_id))

    def test_toggle_compare_layers(self) -> None:
        source = [{"id": "a", "title": "A", "visible": True}, {"id": "b", "title": "B", "visible": False}]
        left, right = toggle_compare_layers(source, [{"id": "b", "title": "B"}, {"id": "c", "title": "C"}])

        self.assertEqual([(l["id"], l["visible"]) for l in left], [("c", False), ("a", True), ("b", False)])
        self.assertEqual([(l["id"], l["visible"]) for l in right], [("c", True), ("a", True), ("b", True)])


class TourStrategyTest(unittest.TestCase):
    def test_places_follow_legacy_order(self) -> None:
        output = run_strategy("tour", _load("tour.json"), ConversionConfig.offline()).outputs[0]
        builder = output.builder
        tour = builder.node(builder.nodes_of_type("tour")[0]).data
        titles = [builder.node(place["title"]).data["text"] for place in tour["places"]]

        self.assertEqual(titles, ["Fish market", "Lighthouse", "Old customs house"])
        self.assertEqual(tour["places"][2]["config"], {"isHidden": True})
        self.assertNotIn("config", tour["places"][0])
        self.assertEqual((tour["type"], tour["subtype"]), ("guided-tour", "media-focused"))

        geometries = builder.node(tour["map"]).data["geometries"]
        self.assertEqual(len(geometries), 3)
        customs = geometries[tour["places"][2]["featureId"]]["nodes"][0]
        self.assertAlmostEqual(customs["long"], -70.25, delta=0.01)

        meta = builder.story_meta
        self.assertEqual(builder.resource(meta["imageResourceId"]).data["src"], "https://example.com/tour/2.jpg")
        self.assertEqual(
            output.media_urls,
            ["https://example.com/tour/2.jpg", "https://example.com/tour/1.jpg", "https://example.com/tour/1_t.jpg"],
        )
        self.assertEqual(validate_document(builder.export()), [])

    def test_places_from_embedded_feature_collection(self) -> None:
        definition = {
            "operationalLayers": [
                {
                    "id": "maptour-layer-1",
                    "featureCollection": {
                        "layers": [
                            {
                                "featureSet": {
                                    "features": [
                                        {"attributes": {"OBJECTID": 7, "name": "Pier", "lat": 1.5, "long": 2.5}},
                                        {"attributes": {"name": "No id"}},
                                    ]
                                }
                            }
                        ]
                    },
                }
            ]
        }
        document = {"values": {"templateName": "maptour", "webmap": "d" * 32}}
        context = StrategyContext(webmap_definitions={"d" * 32: definition})
        builder = run_strategy("tour", document, ConversionConfig.offline(), context=context).outputs[0].builder
        tour = builder.node(builder.nodes_of_type("tour")[0]).data
        tour_map = builder.node(tour["map"]).data

        self.assertEqual(len(tour["places"]), 1)
        self.assertEqual(tour_map["basemap"], {"type": "resource", "value": "r-" + "d" * 32})

    def test_helpers(self) -> None:
        self.assertEqual(tour_layout("three-panel", 16), ("explorer", "grid"))
        self.assertEqual(tour_layout("unknown", 3), ("guided-tour", "map-focused"))
        places = features_to_places([{"attributes": {"FID": 3}, "geometry": {"x": 1, "y": 2}}])
        self.assertEqual(places[0]["id"], 3)


class SeriesStrategyTest(unittest.TestCase):
    def test_each_entry_becomes_a_document(self) -> None:
        run = run_strategy("series", _load("series.json"), ConversionConfig.offline())

        self.assertEqual([o.title for o in run.outputs], ["Overview", "Land use", "Field notes"])
        self.assertEqual([o.template for o in run.outputs], ["Map Series", "Map Series", "Map Journal"])
        settings = run.series_settings
        self.assertEqual((settings.panel_position, settings.panel_size), ("start", "small"))
        self.assertEqual(settings.theme_id, "obsidian")

        land_use = run.outputs[1].builder
        self.assertEqual(land_use.resource("r-" + "c" * 32).data["type"], "minimal")
        map_node = land_use.node(land_use.nodes_of_type("webmap")[0])
        self.assertEqual(map_node.data["zoom"], 5)

        nested = run.outputs[2].builder
        self.assertEqual(nested.resource(nested.theme_resource_id).data["themeId"], "obsidian")
        metadata = list(nested.resources.values())[-1].data
        self.assertEqual(metadata["classicType"], "Map Journal")
        self.assertEqual(
            metadata["classicMetadata"]["seriesEntry"],
            {"parentTemplate": "Map Series", "childTemplate": "Map Journal", "entryIndex": 3, "parentTitle": "Atlas of change"},
        )

    def test_nested_series_is_not_expanded(self) -> None:
        document = {
            "values": {
                "template": "Map Series",
                "story": {"entries": [{"title": "Inner", "classicJson": {"values": {"series": []}}}]},
            }
        }
        builder = run_strategy("series", document, ConversionConfig.offline()).outputs[0].builder
        self.assertIn(NESTED_SERIES_TEXT, _texts(builder).values())

    def test_classify_entry(self) -> None:
        self.assertEqual(classify_entry({"media": {"video": {"url": "https://v/x.mp4"}}}), "video")
        self.assertEqual(classify_entry({"media": {"webpage": {"url": "https://example.com"}}}), "embed")
        self.assertEqual(
            classify_entry({"media": {"webpage": {"url": "https://x/apps/MapJournal/?appid=" + "e" * 32}}}),
            "classic",
        )
        self.assertEqual(classify_entry({}), "unknown")


if __name__ == "__main__":
    unittest.main()
