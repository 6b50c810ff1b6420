from __future__ import annotations

from pathlib import Path
import unittest
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.config import ConversionConfig
import storymap_conversion.pipeline as pipeline
from storymap_conversion.progress import ProgressReporter
from storymap_conversion.strategies import StrategyRun


class _RecordingStrategy:
    calls: list[tuple] = []

    def __init__(self, document, config, reporter, context):
        self.args = (document, config, reporter, context)

    def run(self) -> StrategyRun:
        _RecordingStrategy.calls.append(self.args)
        return StrategyRun([])


class PipelineDispatchTest(unittest.TestCase):
    def test_registry_covers_all_strategy_keys(self) -> None:
        self.assertEqual(sorted(pipeline.STRATEGIES), ["journal", "series", "swipe", "tour"])

    def test_run_for_document_dispatches_on_detected_template(self) -> None:
        _RecordingStrategy.calls = []
        original = pipeline.STRATEGIES["tour"]
        pipeline.register_strategy("tour", _RecordingStrategy)
        try:
            run = pipeline.run_for_document({"values": {"order": []}}, ConversionConfig.offline())
        finally:
            pipeline.STRATEGIES["tour"] = original

        self.assertEqual(run.outputs, [])
        self.assertEqual(len(_RecordingStrategy.calls), 1)

    def test_rejects_unknown_strategy(self) -> None:
        with self.assertRaisesRegex(ValueError, "Unknown strategy: 'cascade'"):
            pipeline.run_strategy("cascade", {"values": {}})

    def test_phases_emit_progress_in_order(self) -> None:
        events = []
        reporter = ProgressReporter(events.append)
        document = {"values": {"title": "T", "story": {"sections": [{"title": "A", "content": "<p>x</p>"}]}}}

        pipeline.run_strategy("journal", document, ConversionConfig.offline(), reporter)

        stages = [event.stage for event in events]
        self.assertEqual(stages[0], "extract")
        self.assertEqual([s for s in stages if s != "content"][-2:], ["theme", "media"])
        self.assertIn("content", stages)


if __name__ == "__main__":
    unittest.main()
