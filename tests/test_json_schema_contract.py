from __future__ import annotations

import json
from pathlib import Path
import unittest
import sys


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storymap_conversion.api import convert_file
from storymap_conversion.config import ConversionConfig

try:
    from jsonschema import ValidationError, validate

    _HAS_JSONSCHEMA = True
except Exception:
    _HAS_JSONSCHEMA = False


REPO_ROOT = Path(__file__).resolve().parents[1]


@unittest.skipUnless(_HAS_JSONSCHEMA, "jsonschema package is required for schema-contract tests")
class JsonSchemaContractTest(unittest.TestCase):
    def _load_schema(self) -> dict:
        schema_path = REPO_ROOT / "docs" / "schema" / "storymap.schema.v1.json"
        self.assertTrue(schema_path.exists(), f"Missing schema file: {schema_path}")
        return json.loads(schema_path.read_text())

    def test_converted_examples_validate_against_json_schema(self) -> None:
        schema = self._load_schema()
        for name in ("journal.json", "swipe.json", "tour.json", "series.json"):
            with self.subTest(example=name):
                result = convert_file(REPO_ROOT / "examples" / "classic" / name, ConversionConfig.offline())
                self.assertTrue(result.documents)
                for document in result.documents:
                    validate(instance=document.to_dict(), schema=schema)

    def test_invalid_payload_fails_schema_validation(self) -> None:
        schema = self._load_schema()
        invalid = {"root": "", "nodes": {}, "resources": {}, "actions": []}
        with self.assertRaises(ValidationError):
            validate(instance=invalid, schema=schema)

    def test_swipe_contents_are_enforced(self) -> None:
        schema = self._load_schema()
        invalid = {
            "root": "n-1",
            "nodes": {
                "n-1": {"type": "story", "data": {}, "children": ["n-2"]},
                "n-2": {"type": "swipe", "data": {"contents": {"0": "n-3"}}},
            },
            "resources": {},
            "actions": [],
        }
        with self.assertRaises(ValidationError):
            validate(instance=invalid, schema=schema)


if __name__ == "__main__":
    unittest.main()
