"""In-memory graph builder that owns one output document during a conversion run."""

from __future__ import annotations

import copy
from dataclasses import dataclass
import itertools
import logging
from typing import Any, Callable, Iterable, Optional

from .document import Action, Node, Resource, StoryDocument
from .errors import GraphConstructionError
from .metadata import METADATA_RESOURCE_TYPE, ConverterMetadata


logger = logging.getLogger(__name__)

DataMutator = Callable[[dict[str, Any]], None]

YOUTUBE_EMBED_URL = "https://www.youtube.com/embed/{video_id}"
VIMEO_EMBED_URL = "https://player.vimeo.com/video/{video_id}"
MAX_CAROUSEL_ITEMS = 5
REPLACE_MEDIA_TRIGGER = "ActionButton_Apply"
REPLACE_MEDIA_EVENT = "ImmersiveSlide_ReplaceMedia"


@dataclass(frozen=True)
class SidecarHandle:
    """Ids created by `GraphBuilder.add_sidecar`."""

    immersive_id: str
    slide_id: Optional[str]
    narrative_id: Optional[str]


@dataclass(frozen=True)
class SlideHandle:
    slide_id: str
    narrative_id: str


class GraphBuilder:
    """
    Owns the root id, node map, resource map and action list of one document.

    Ids come from per-instance counters so uniqueness holds by construction; any
    collision (for example with an explicitly chosen resource id) is a fatal
    `GraphConstructionError`. Mutating an unknown id is a silent no-op so that
    best-effort passes can run against partial graphs.
    """

    def __init__(self, theme_id: str = "summit", *, emit_metadata: bool = True):
        self._nodes: dict[str, Node] = {}
        self._resources: dict[str, Resource] = {}
        self._actions: list[Action] = []
        self._node_seq = itertools.count(1)
        self._resource_seq = itertools.count(1)
        self._image_by_src: dict[str, str] = {}
        self.root_id: Optional[str] = None
        self.emit_metadata = emit_metadata
        self.theme_resource_id = self.add_resource(
            "story-theme",
            {"themeId": theme_id, "themeBaseVariableOverrides": {}},
        )

    # ------------------------------------------------------------------ lookup

    @property
    def nodes(self) -> dict[str, Node]:
        return self._nodes

    @property
    def resources(self) -> dict[str, Resource]:
        return self._resources

    @property
    def actions(self) -> list[Action]:
        return self._actions

    def node(self, node_id: Optional[str]) -> Optional[Node]:
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def resource(self, resource_id: Optional[str]) -> Optional[Resource]:
        if resource_id is None:
            return None
        return self._resources.get(resource_id)

    def has_node(self, node_id: Optional[str]) -> bool:
        return node_id is not None and node_id in self._nodes

    def nodes_of_type(self, node_type: str) -> list[str]:
        return [nid for nid, node in self._nodes.items() if node.type == node_type]

    def parents_of(self, node_id: str) -> list[str]:
        return [pid for pid, node in self._nodes.items() if node_id in (node.children or [])]

    @property
    def story_meta(self) -> Optional[dict[str, Any]]:
        root = self.node(self.root_id)
        if root is None:
            return None
        meta = root.data.get("metaSettings")
        return copy.deepcopy(meta) if meta is not None else None

    # ------------------------------------------------------------- primitives

    def new_id(self) -> str:
        """Allocate an opaque id from the node sequence without creating a node."""
        node_id = f"n-{next(self._node_seq)}"
        if node_id in self._nodes:
            raise GraphConstructionError(f"Node id collision: {node_id!r}")
        return node_id

    def add_node(
        self,
        node_type: str,
        data: Optional[dict[str, Any]] = None,
        config: Optional[dict[str, Any]] = None,
        children: Optional[Iterable[str]] = None,
    ) -> str:
        node_id = self.new_id()
        self._nodes[node_id] = Node(
            type=node_type,
            data=dict(data or {}),
            config=dict(config) if config is not None else None,
            children=list(children) if children is not None else None,
        )
        return node_id

    def add_resource(
        self,
        resource_type: str,
        data: Optional[dict[str, Any]] = None,
        resource_id: Optional[str] = None,
    ) -> str:
        if resource_id is None:
            resource_id = f"r-{next(self._resource_seq)}"
        if resource_id in self._resources:
            raise GraphConstructionError(f"Resource id collision: {resource_id!r}")
        self._resources[resource_id] = Resource(type=resource_type, data=dict(data or {}))
        return resource_id

    def create_root(self) -> str:
        if self.root_id is not None:
            return self.root_id
        self.root_id = self.add_node(
            "story",
            {"storyTheme": self.theme_resource_id},
            {"coverDate": "", "shouldPushMetaToAGOItemDetails": False},
            [],
        )
        return self.root_id

    def append_child(self, parent_id: Optional[str], child_id: Optional[str]) -> None:
        parent = self.node(parent_id)
        if parent is None or child_id is None:
            return
        if parent.children is None:
            parent.children = []
        if child_id not in parent.children:
            parent.children.append(child_id)

    def insert_child(self, parent_id: Optional[str], child_id: str, index: int) -> None:
        parent = self.node(parent_id)
        if parent is None:
            return
        if parent.children is None:
            parent.children = []
        if child_id in parent.children:
            parent.children.remove(child_id)
        parent.children.insert(index, child_id)

    def update_node_data(self, node_id: Optional[str], mutator: DataMutator) -> None:
        node = self.node(node_id)
        if node is None:
            return
        mutator(node.data)

    def update_node_config(self, node_id: Optional[str], mutator: DataMutator) -> None:
        node = self.node(node_id)
        if node is None:
            return
        if node.config is None:
            node.config = {}
        mutator(node.config)

    def update_resource_data(self, resource_id: Optional[str], mutator: DataMutator) -> None:
        resource = self.resource(resource_id)
        if resource is None:
            return
        mutator(resource.data)

    def remove_node(self, node_id: Optional[str]) -> None:
        """Detach a node from every parent, drop actions that point at it, then delete it."""
        if node_id is None or node_id not in self._nodes:
            return
        for node in self._nodes.values():
            if node.children and node_id in node.children:
                node.children = [c for c in node.children if c != node_id]
        self._actions = [
            action
            for action in self._actions
            if node_id not in (action.origin, action.target, action.data.get("media"))
        ]
        del self._nodes[node_id]

    def move_resource_last(self, resource_id: str) -> None:
        if resource_id in self._resources:
            self._resources[resource_id] = self._resources.pop(resource_id)

    # --------------------------------------------------------------- scaffold

    def add_cover(self, title: str, summary: str = "", byline: str = "") -> str:
        cover_id = self.add_node(
            "storycover",
            {
                "type": "minimal",
                "title": title,
                "summary": summary or "",
                "byline": byline or "",
                "titlePanelVerticalPosition": "top",
                "titlePanelHorizontalPosition": "start",
                "titlePanelStyle": "gradient",
            },
        )
        self.append_child(self.root_id, cover_id)
        return cover_id

    def add_hidden_navigation(self) -> str:
        nav_id = self.add_node("navigation", {"links": []}, {"isHidden": True})
        self.append_child(self.root_id, nav_id)
        return nav_id

    def add_credits(self) -> str:
        first = self.text_node("", "paragraph", "wide")
        second = self.text_node("", "paragraph", "wide")
        attribution = self.add_node("attribution", {"content": "", "attribution": ""})
        credits_id = self.add_node("credits", {}, None, [first, second, attribution])
        self.append_child(self.root_id, credits_id)
        return credits_id

    def add_story_scaffold(self, title: str, summary: str = "") -> str:
        """Root, cover, hidden navigation and credits in their canonical order."""
        root_id = self.create_root()
        self.add_cover(title, summary)
        self.add_hidden_navigation()
        self.add_credits()
        return root_id

    def add_to_story(self, node_id: str) -> None:
        """Append a top-level block to the story, keeping credits last."""
        root = self.node(self.root_id)
        if root is None:
            return
        children = root.children or []
        credits = [i for i, cid in enumerate(children) if self._nodes[cid].type == "credits"]
        if credits:
            self.insert_child(self.root_id, node_id, credits[0])
        else:
            self.append_child(self.root_id, node_id)

    def add_sidecar(
        self,
        subtype: str = "docked-panel",
        position: str = "end",
        size: str = "medium",
        slides: bool = True,
    ) -> SidecarHandle:
        """Append a sidecar to the story; with `slides=False` it starts without a first slide."""
        children: list[str] = []
        slide_id = narrative_id = None
        if slides:
            narrative_id = self.add_node("immersive-narrative-panel", {"panelStyle": "themed"}, None, [])
            slide_id = self.add_node("immersive-slide", {"transition": "fade"}, None, [narrative_id])
            children.append(slide_id)
        immersive_id = self.add_node(
            "immersive",
            {
                "type": "sidecar",
                "subtype": subtype,
                "narrativePanelPosition": position,
                "narrativePanelSize": size,
            },
            None,
            children,
        )
        self.add_to_story(immersive_id)
        return SidecarHandle(immersive_id, slide_id, narrative_id)

    def add_slide(
        self,
        sidecar_id: str,
        narrative_ids: Iterable[str],
        media_id: Optional[str] = None,
    ) -> SlideHandle:
        sidecar = self.node(sidecar_id)
        if sidecar is None or sidecar.type != "immersive":
            raise GraphConstructionError(f"add_slide: {sidecar_id!r} is not an immersive node.")
        narrative_id = self.add_node(
            "immersive-narrative-panel", {"panelStyle": "themed"}, None, list(narrative_ids)
        )
        children = [narrative_id, media_id] if media_id else [narrative_id]
        slide_id = self.add_node("immersive-slide", {"transition": "fade"}, None, children)
        self.append_child(sidecar_id, slide_id)
        return SlideHandle(slide_id, narrative_id)

    # ------------------------------------------------------------- resources

    def image_resource(self, src: str, width: Optional[int] = None, height: Optional[int] = None) -> str:
        existing = self._image_by_src.get(src)
        if existing is not None and existing in self._resources:
            return existing
        data: dict[str, Any] = {"src": src, "provider": "uri"}
        if width:
            data["width"] = width
        if height:
            data["height"] = height
        resource_id = self.add_resource("image", data)
        self._image_by_src[src] = resource_id
        return resource_id

    def video_resource(self, src: str, provider: str = "uri") -> str:
        return self.add_resource("video", {"src": src, "provider": provider})

    def webmap_resource(
        self,
        item_id: str,
        item_type: str = "Web Map",
        initial_state: Optional[dict[str, Any]] = None,
        variant: str = "minimal",
    ) -> str:
        """Create (or merge into) the de-duplicated `r-<itemId>` map/scene resource."""
        resource_id = f"r-{item_id}"
        existing = self.resource(resource_id)
        if existing is not None and existing.type != "webmap":
            raise GraphConstructionError(
                f"Resource id collision: {resource_id!r} already holds a {existing.type!r} resource."
            )
        if existing is None:
            self.add_resource(
                "webmap",
                {"itemId": item_id, "itemType": item_type, "type": variant},
                resource_id=resource_id,
            )
        else:
            # A fully enriched resource is never downgraded back to a placeholder.
            if variant != "minimal":
                existing.data["type"] = variant
        if initial_state:
            self.update_webmap_data(resource_id, initial_state)
        return resource_id

    def update_webmap_data(self, resource_id: str, values: dict[str, Any]) -> None:
        """Shallow-merge non-None values into a map/scene resource."""
        def _merge(data: dict[str, Any]) -> None:
            for key, value in values.items():
                if value is not None:
                    data[key] = copy.deepcopy(value)

        self.update_resource_data(resource_id, _merge)

    def apply_theme(self, theme_id: str, variable_overrides: Optional[dict[str, Any]] = None) -> None:
        def _apply(data: dict[str, Any]) -> None:
            data["themeId"] = theme_id
            data["themeBaseVariableOverrides"] = dict(variable_overrides or {})

        self.update_resource_data(self.theme_resource_id, _apply)

    def set_story_meta(self, title: str, description: str = "", image_resource_id: Optional[str] = None) -> None:
        def _set(data: dict[str, Any]) -> None:
            data["metaSettings"] = {
                "title": title,
                "description": description or "",
                "imageResourceId": image_resource_id,
            }

        self.update_node_data(self.root_id, _set)

    def merge_converter_metadata(self, classic_type: str, payload: Optional[dict[str, Any]] = None) -> Optional[str]:
        """
        Create or fold into the single converter-metadata resource.

        The resource is relocated to the end of the resource map after every merge.
        Returns None when metadata emission is disabled for this builder.
        """
        if not self.emit_metadata:
            return None
        incoming = ConverterMetadata.from_payload(classic_type, payload)
        existing_ids = [rid for rid, res in self._resources.items() if res.type == METADATA_RESOURCE_TYPE]
        if existing_ids:
            resource_id = existing_ids[0]
            current = ConverterMetadata.from_payload("", self._resources[resource_id].data)
            current.merge(incoming)
            self._resources[resource_id].data = current.to_dict()
            for duplicate in existing_ids[1:]:
                del self._resources[duplicate]
        else:
            resource_id = self.add_resource(METADATA_RESOURCE_TYPE, incoming.to_dict())
        self.move_resource_last(resource_id)
        return resource_id

    # ---------------------------------------------------------- node factories

    def text_node(self, text: str, block_type: str = "paragraph", size: str = "wide") -> str:
        return self.add_node(
            "text",
            {"text": text, "type": block_type, "textAlignment": "start"},
            {"size": size},
        )

    def rich_text_node(self, html: str, block_type: str = "paragraph", size: str = "wide") -> str:
        return self.add_node(
            "text",
            {"text": html, "type": block_type, "textAlignment": "start", "preserveHtml": True},
            {"size": size},
        )

    def image_node(
        self,
        resource_id: str,
        caption: Optional[str] = None,
        alt: Optional[str] = None,
        size: str = "standard",
    ) -> str:
        data: dict[str, Any] = {"image": resource_id}
        if caption:
            data["caption"] = caption
        if alt:
            data["alt"] = alt
        return self.add_node("image", data, {"size": size})

    def video_node(self, resource_id: str, caption: Optional[str] = None, alt: Optional[str] = None) -> str:
        data: dict[str, Any] = {"video": resource_id}
        if caption:
            data["caption"] = caption
        if alt:
            data["alt"] = alt
        return self.add_node("video", data, {"size": "standard"})

    def webmap_node(
        self,
        resource_id: str,
        caption: Optional[str] = None,
        size: str = "standard",
        **data: Any,
    ) -> str:
        payload: dict[str, Any] = {"map": resource_id}
        if caption:
            payload["caption"] = caption
        payload.update({k: copy.deepcopy(v) for k, v in data.items() if v is not None})
        return self.add_node("webmap", payload, {"size": size})

    def video_embed_node(
        self,
        url: str,
        provider: str,
        video_id: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> str:
        embed_src = url
        if provider == "youtube" and video_id:
            embed_src = YOUTUBE_EMBED_URL.format(video_id=video_id)
        elif provider == "vimeo" and video_id:
            embed_src = VIMEO_EMBED_URL.format(video_id=video_id)
        data: dict[str, Any] = {
            "url": url,
            "embedSrc": embed_src,
            "embedType": "video",
            "provider": provider,
            "alt": "",
            "isEmbedSupported": True,
            "display": "inline",
            "aspectRatio": "16:9",
        }
        if video_id:
            data["videoId"] = video_id
        if caption:
            data["caption"] = caption
        return self.add_node("embed", data)

    def link_embed_node(self, url: str, caption: Optional[str] = None, title: Optional[str] = None) -> str:
        data: dict[str, Any] = {
            "url": url,
            "embedSrc": url,
            "embedType": "link",
            "alt": "",
            "isEmbedSupported": True,
            "display": "inline",
        }
        if caption:
            data["caption"] = caption
        if title:
            data["title"] = title
        return self.add_node("embed", data)

    def swipe_node(
        self,
        left_id: str,
        right_id: str,
        view_placement: str = "extent",
        caption: Optional[str] = None,
    ) -> str:
        data: dict[str, Any] = {
            "contents": {"0": left_id, "1": right_id},
            "viewPlacement": view_placement,
        }
        if caption:
            data["caption"] = caption
        return self.add_node("swipe", data, {"size": "full"})

    def action_button_node(self, text: str, size: str = "wide") -> str:
        return self.add_node("action-button", {"text": text}, {"size": size})

    def button_node(self, text: str, size: str = "wide", link: Optional[str] = None) -> str:
        data: dict[str, Any] = {"text": text}
        if link:
            data["link"] = link
        return self.add_node("button", data, {"size": size})

    def set_button_link(self, button_id: str, link: str) -> None:
        node = self.node(button_id)
        if node is not None and node.type == "button":
            node.data["link"] = link

    def carousel_node(self, image_node_ids: list[str]) -> str:
        return self.add_node("carousel", {}, None, image_node_ids[:MAX_CAROUSEL_ITEMS])

    def tour_map_node(
        self,
        geometries: dict[str, Any],
        webmap_item_id: Optional[str] = None,
        mode: str = "2d",
    ) -> str:
        basemap: dict[str, Any] = {"type": "name", "value": "worldImagery"}
        if webmap_item_id:
            basemap = {"type": "resource", "value": self.webmap_resource(webmap_item_id)}
        return self.add_node("tour-map", {"geometries": geometries, "mode": mode, "basemap": basemap})

    def tour_node(
        self,
        places: list[dict[str, Any]],
        tour_map_id: str,
        accent_color: str,
        placard_position: str = "start",
        panel_size: str = "large",
        tour_type: str = "guided-tour",
        subtype: str = "map-focused",
    ) -> str:
        return self.add_node(
            "tour",
            {
                "type": tour_type,
                "subtype": subtype,
                "narrativePanelPosition": placard_position,
                "map": tour_map_id,
                "places": places,
                "narrativePanelSize": panel_size,
                "accentColor": accent_color,
            },
        )

    def register_replace_media_action(self, origin_id: str, slide_id: str, media_id: str) -> bool:
        """Wire an action button to swap the media of a slide; skipped when any end is missing."""
        if not (self.has_node(origin_id) and self.has_node(slide_id) and self.has_node(media_id)):
            logger.debug(
                "Skipping replace-media action %s -> %s (%s): missing node.", origin_id, slide_id, media_id
            )
            return False
        self._actions.append(
            Action(
                origin=origin_id,
                trigger=REPLACE_MEDIA_TRIGGER,
                target=slide_id,
                event=REPLACE_MEDIA_EVENT,
                data={"media": media_id},
            )
        )
        return True

    # ------------------------------------------------------------------ export

    def export(self) -> StoryDocument:
        """Normalize and return an immutable snapshot of the graph (root node last)."""
        if self.root_id is None or self.root_id not in self._nodes:
            raise GraphConstructionError("Cannot export a document without a story root node.")
        for node in self._nodes.values():
            if node.type == "webmap":
                if node.config is None:
                    node.config = {}
                node.config.setdefault("size", "standard")
                node.data.pop("scale", None)
            elif node.type == "text":
                node.data.setdefault("textAlignment", "start")
        nodes = {
            nid: copy.deepcopy(node) for nid, node in self._nodes.items() if nid != self.root_id
        }
        root = copy.deepcopy(self._nodes[self.root_id])
        root.data.pop("metaSettings", None)
        nodes[self.root_id] = root
        return StoryDocument(
            root=self.root_id,
            nodes=nodes,
            resources={rid: copy.deepcopy(res) for rid, res in self._resources.items()},
            actions=[copy.deepcopy(action) for action in self._actions],
        )
