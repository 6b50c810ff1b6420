"""Output story document schema parsing and validation."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any

from .document import StoryDocument
from .validation import validate_document


STORYMAP_SCHEMA_VERSION = "storymap.schema.v1"
REQUIRED_TOP_LEVEL = ("root", "nodes", "resources", "actions")
ACTION_FIELDS = ("origin", "trigger", "target", "event", "data")


@dataclass(frozen=True)
class ParsedStoryDocument:
    document: StoryDocument
    warnings: list[str] = field(default_factory=list)


def _expect_type(value: Any, expected: type, path: str) -> None:
    if not isinstance(value, expected):
        raise ValueError(f"Invalid `{path}`: expected {expected.__name__}, got {type(value).__name__}.")


def _check_node(node_id: str, raw: Any) -> None:
    path = f"nodes[{node_id}]"
    _expect_type(raw, dict, path)
    if "type" not in raw:
        raise ValueError(f"Missing required field `{path}.type`.")
    _expect_type(raw["type"], str, f"{path}.type")
    _expect_type(raw.get("data", {}), dict, f"{path}.data")
    if raw.get("config") is not None:
        _expect_type(raw["config"], dict, f"{path}.config")
    if raw.get("children") is not None:
        _expect_type(raw["children"], list, f"{path}.children")
        for i, child in enumerate(raw["children"]):
            _expect_type(child, str, f"{path}.children[{i}]")


def _check_resource(resource_id: str, raw: Any) -> None:
    path = f"resources[{resource_id}]"
    _expect_type(raw, dict, path)
    if "type" not in raw:
        raise ValueError(f"Missing required field `{path}.type`.")
    _expect_type(raw["type"], str, f"{path}.type")
    _expect_type(raw.get("data", {}), dict, f"{path}.data")


def _check_action(index: int, raw: Any) -> None:
    path = f"actions[{index}]"
    _expect_type(raw, dict, path)
    missing = [name for name in ACTION_FIELDS if name not in raw]
    if missing:
        raise ValueError(f"Missing required fields in `{path}`: {', '.join(missing)}.")
    for name in ACTION_FIELDS[:-1]:
        _expect_type(raw[name], str, f"{path}.{name}")
    _expect_type(raw["data"], dict, f"{path}.data")


def parse_storymap_document(payload: Any) -> ParsedStoryDocument:
    """
    Parse an output document, raising `ValueError` on structural type errors.

    Reference-closure and other semantic problems are returned as warnings.
    """
    _expect_type(payload, dict, "root")
    missing = [name for name in REQUIRED_TOP_LEVEL if name not in payload]
    if missing:
        raise ValueError(f"Missing required field(s): {', '.join(f'`{m}`' for m in missing)}.")
    warnings: list[str] = []
    extra = sorted(set(payload) - set(REQUIRED_TOP_LEVEL))
    if extra:
        warnings.append(f"Ignoring unexpected top-level field(s): {', '.join(extra)}.")

    _expect_type(payload["root"], str, "root")
    _expect_type(payload["nodes"], dict, "nodes")
    _expect_type(payload["resources"], dict, "resources")
    _expect_type(payload["actions"], list, "actions")
    if not payload["nodes"]:
        raise ValueError("Story document has no nodes.")
    for node_id, raw in payload["nodes"].items():
        _check_node(node_id, raw)
    for resource_id, raw in payload["resources"].items():
        _check_resource(resource_id, raw)
    for index, raw in enumerate(payload["actions"]):
        _check_action(index, raw)

    document = StoryDocument.from_dict(payload)
    warnings.extend(validate_document(document))
    return ParsedStoryDocument(document=document, warnings=warnings)


def parse_storymap_file(document_path: Path) -> ParsedStoryDocument:
    try:
        payload = json.loads(Path(document_path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid story document JSON at {document_path}: {exc}") from exc
    return parse_storymap_document(payload)


def validate_storymap_file(document_path: Path) -> dict[str, Any]:
    parsed = parse_storymap_file(document_path)
    document = parsed.document
    return {
        "schema_version": STORYMAP_SCHEMA_VERSION,
        "root": document.root,
        "num_nodes": len(document.nodes),
        "num_resources": len(document.resources),
        "num_actions": len(document.actions),
        "warnings": list(parsed.warnings),
    }
