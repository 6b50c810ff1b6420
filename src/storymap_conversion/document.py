"""Explicit output-document contract shared by the builder, strategies and validators."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional


NODE_RESOURCE_FIELDS = {
    "image": "image",
    "video": "video",
    "webmap": "map",
    "story": "storyTheme",
}


@dataclass
class Node:
    """Typed unit of the output graph."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)
    config: Optional[dict[str, Any]] = None
    children: Optional[list[str]] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "data": copy.deepcopy(self.data)}
        if self.config is not None:
            payload["config"] = copy.deepcopy(self.config)
        if self.children is not None:
            payload["children"] = list(self.children)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Node":
        children = payload.get("children")
        return cls(
            type=str(payload.get("type", "")),
            data=copy.deepcopy(payload.get("data") or {}),
            config=copy.deepcopy(payload.get("config")),
            children=list(children) if isinstance(children, list) else None,
        )


@dataclass
class Resource:
    """De-duplicated referenceable object outside the node tree."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": copy.deepcopy(self.data)}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Resource":
        return cls(type=str(payload.get("type", "")), data=copy.deepcopy(payload.get("data") or {}))


@dataclass
class Action:
    """Cross-reference from an origin control to a target container."""

    origin: str
    trigger: str
    target: str
    event: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "origin": self.origin,
            "trigger": self.trigger,
            "target": self.target,
            "event": self.event,
            "data": copy.deepcopy(self.data),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Action":
        return cls(
            origin=str(payload.get("origin", "")),
            trigger=str(payload.get("trigger", "")),
            target=str(payload.get("target", "")),
            event=str(payload.get("event", "")),
            data=copy.deepcopy(payload.get("data") or {}),
        )


@dataclass
class Reference:
    """One id reference found while walking a document."""

    kind: str  # node | resource
    target_id: str
    source: str


def node_references(node_id: str, node: Node) -> Iterator[Reference]:
    for child in node.children or []:
        yield Reference("node", child, f"nodes[{node_id}].children")
    field_name = NODE_RESOURCE_FIELDS.get(node.type)
    if field_name and isinstance(node.data.get(field_name), str):
        yield Reference("resource", node.data[field_name], f"nodes[{node_id}].data.{field_name}")
    if node.type == "swipe":
        contents = node.data.get("contents") or {}
        for slot in ("0", "1"):
            if slot in contents:
                yield Reference("node", str(contents[slot]), f"nodes[{node_id}].data.contents.{slot}")
        for legend_id in node.data.get("legend") or []:
            yield Reference("node", str(legend_id), f"nodes[{node_id}].data.legend")
    elif node.type == "tour-map":
        basemap = node.data.get("basemap") or {}
        if basemap.get("type") == "resource":
            yield Reference("resource", str(basemap.get("value")), f"nodes[{node_id}].data.basemap")
    elif node.type == "tour":
        if isinstance(node.data.get("map"), str):
            yield Reference("node", node.data["map"], f"nodes[{node_id}].data.map")
        for i, place in enumerate(node.data.get("places") or []):
            for key in ("title", "media"):
                if isinstance(place.get(key), str):
                    yield Reference("node", place[key], f"nodes[{node_id}].data.places[{i}].{key}")
            for content_id in place.get("contents") or []:
                yield Reference("node", str(content_id), f"nodes[{node_id}].data.places[{i}].contents")
    elif node.type == "action-button":
        dependents = node.data.get("dependents") or {}
        if isinstance(dependents.get("actionMedia"), str):
            yield Reference("node", dependents["actionMedia"], f"nodes[{node_id}].data.dependents")


@dataclass
class StoryDocument:
    """Canonical graph document: root id, node map, resource map, action list."""

    root: str
    nodes: dict[str, Node] = field(default_factory=dict)
    resources: dict[str, Resource] = field(default_factory=dict)
    actions: list[Action] = field(default_factory=list)

    def iter_references(self) -> Iterator[Reference]:
        for node_id, node in self.nodes.items():
            yield from node_references(node_id, node)
        for i, action in enumerate(self.actions):
            yield Reference("node", action.origin, f"actions[{i}].origin")
            yield Reference("node", action.target, f"actions[{i}].target")
            media = action.data.get("media")
            if isinstance(media, str):
                yield Reference("node", media, f"actions[{i}].data.media")

    def dangling_references(self) -> list[Reference]:
        missing: list[Reference] = []
        for ref in self.iter_references():
            pool = self.nodes if ref.kind == "node" else self.resources
            if ref.target_id not in pool:
                missing.append(ref)
        return missing

    def resources_of_type(self, resource_type: str) -> dict[str, Resource]:
        return {rid: res for rid, res in self.resources.items() if res.type == resource_type}

    def validate(self) -> None:
        if self.root not in self.nodes:
            raise ValueError(f"Root {self.root!r} does not refer to an existing node.")
        if self.nodes[self.root].type != "story":
            raise ValueError(f"Root {self.root!r} is a {self.nodes[self.root].type!r} node, not 'story'.")
        missing = self.dangling_references()
        if missing:
            first = missing[0]
            raise ValueError(
                f"Dangling {first.kind} reference {first.target_id!r} at {first.source} "
                f"({len(missing)} total)."
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "nodes": {nid: node.to_dict() for nid, node in self.nodes.items()},
            "resources": {rid: res.to_dict() for rid, res in self.resources.items()},
            "actions": [action.to_dict() for action in self.actions],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "StoryDocument":
        return cls(
            root=str(payload.get("root", "")),
            nodes={str(k): Node.from_dict(v) for k, v in (payload.get("nodes") or {}).items()},
            resources={
                str(k): Resource.from_dict(v) for k, v in (payload.get("resources") or {}).items()
            },
            actions=[Action.from_dict(a) for a in payload.get("actions") or []],
        )
