"""Post-conversion validation helpers for output documents."""

from __future__ import annotations

from collections import Counter
import logging
from typing import Any, Union

from .document import StoryDocument, node_references
from .metadata import METADATA_RESOURCE_TYPE


logger = logging.getLogger(__name__)

NODE_TYPES = frozenset(
    {
        "story", "storycover", "navigation", "credits", "attribution", "text", "image",
        "video", "embed", "webmap", "swipe", "action-button", "button", "immersive",
        "immersive-slide", "immersive-narrative-panel", "tour", "tour-map", "carousel",
    }
)
RESOURCE_TYPES = frozenset({"story-theme", "image", "video", "webmap", METADATA_RESOURCE_TYPE})


def _reachable(document: StoryDocument) -> set[str]:
    seen: set[str] = set()
    stack = [document.root]
    while stack:
        node_id = stack.pop()
        if node_id in seen or node_id not in document.nodes:
            continue
        seen.add(node_id)
        for ref in node_references(node_id, document.nodes[node_id]):
            if ref.kind == "node":
                stack.append(ref.target_id)
    return seen


def validate_document(document: Union[StoryDocument, dict[str, Any]]) -> list[str]:
    """
    Validate an output document and return warning strings.

    The function is non-throwing: every problem, including a missing root, is reported
    as a warning so callers can decide how strict to be.
    """
    if isinstance(document, dict):
        document = StoryDocument.from_dict(document)
    warnings: list[str] = []

    root = document.nodes.get(document.root)
    if root is None:
        warnings.append(f"Root {document.root!r} does not refer to an existing node.")
    elif root.type != "story":
        warnings.append(f"Root node {document.root!r} has type {root.type!r}, expected 'story'.")

    missing = document.dangling_references()
    for ref in missing[:10]:
        warnings.append(f"Dangling {ref.kind} reference {ref.target_id!r} at {ref.source}.")
    if len(missing) > 10:
        warnings.append(f"{len(missing) - 10} further dangling reference(s) omitted.")

    unknown_nodes = Counter(n.type for n in document.nodes.values() if n.type not in NODE_TYPES)
    for node_type, count in sorted(unknown_nodes.items()):
        warnings.append(f"{count} node(s) of unknown type {node_type!r}.")
    unknown_resources = Counter(r.type for r in document.resources.values() if r.type not in RESOURCE_TYPES)
    for resource_type, count in sorted(unknown_resources.items()):
        warnings.append(f"{count} resource(s) of unknown type {resource_type!r}.")

    metadata_ids = list(document.resources_of_type(METADATA_RESOURCE_TYPE))
    if len(metadata_ids) > 1:
        warnings.append(f"{len(metadata_ids)} converter-metadata resources found, expected at most one.")
    elif metadata_ids and list(document.resources)[-1] != metadata_ids[0]:
        warnings.append("Converter-metadata resource is not the last resource.")

    if root is not None:
        orphans = set(document.nodes) - _reachable(document)
        if orphans:
            logger.debug("Unreachable nodes: %s", sorted(orphans))
            warnings.append(f"{len(orphans)} node(s) unreachable from the root.")

    placeholders = sum(
        1 for r in document.resources.values() if r.type == "webmap" and r.data.get("type") == "minimal"
    )
    if placeholders:
        warnings.append(f"{placeholders} map resource(s) remain minimal placeholders.")
    return warnings
