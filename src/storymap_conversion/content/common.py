"""Engine-independent parts of the ordered markup parser."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import html as html_lib
import logging
import re
from typing import Any, Callable, Iterable, Iterator, Optional
from urllib.parse import parse_qs, urlsplit

from ..builder import GraphBuilder
from ..classifier import detect_template
from ..colors import rewrite_inline_colors
from ..errors import StructuralIntegrityError


logger = logging.getLogger(__name__)

IMG_TOKEN = "%%IMG:{}%%"
ACTION_BTN_TOKEN = "%%ACTION_BTN:{}%%"
NAV_BTN_TOKEN = "%%NAV_BTN:{}%%"
IFRAME_NODE_TOKEN = "%%IFRAME_NODE:{}%%"
_TOKEN_SPLIT_RE = re.compile(r"(%%(?:IMG|ACTION_BTN|NAV_BTN|IFRAME_NODE):[^%]+%%)")
_TOKEN_RE = re.compile(r"^%%(IMG|ACTION_BTN|NAV_BTN|IFRAME_NODE):([^%]+)%%$")

BUTTON_CLASS_RE = re.compile(r"^btn-(green|orange|purple|yellow|red)$", re.IGNORECASE)
YOUTUBE_RE = re.compile(
    r"(?:youtube\.com/(?:watch\?v=|embed/)|youtu\.be/)([A-Za-z0-9_-]{6,})(?:[&#?].*)?$",
    re.IGNORECASE,
)
VIMEO_RE = re.compile(r"(?:vimeo\.com/(?:video/)?)(\d+)(?:[&#?].*)?$", re.IGNORECASE)
_APPID_FALLBACK_RE = re.compile(r"[?&#](?:appid|appId)=([a-f0-9]{32})", re.IGNORECASE)

_STYLE_BLOCK_RE = re.compile(r"<style[^>]*>(.*?)</style\s*>", re.IGNORECASE | re.DOTALL)
_SCRIPT_BLOCK_RE = re.compile(r"<script[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_PARAGRAPH_RE = re.compile(r"<p(?:\s[^>]*)?>.*?</p\s*>", re.IGNORECASE | re.DOTALL)
_SINGLE_PARAGRAPH_RE = re.compile(r"^<p(?:\s[^>]*)?>(.*)</p\s*>$", re.IGNORECASE | re.DOTALL)
_NBSP_RE = re.compile("&nbsp;|\u00a0", re.IGNORECASE)
_LABEL_LEAD_RE = re.compile(r"^[>\u203a\u00bb\s]+")

HEADING_BLOCK_TYPES = {"h1": "h2", "h2": "h2", "h3": "h3", "h4": "h4", "h5": "h4", "h6": "h4"}
SKIPPED_TAGS = {"style", "script", "hr", "meta", "link"}
INLINE_TAGS = {
    "a", "abbr", "b", "big", "br", "cite", "code", "em", "font", "i", "mark", "q",
    "s", "small", "span", "strike", "strong", "sub", "sup", "u",
}
# Containers whose children are walked as blocks of their own.
CONTAINER_TAGS = {"div", "section", "article", "main", "header", "footer", "center"}

InlineCompareBuilder = Callable[[GraphBuilder, dict[str, Any], str], str]


@dataclass
class ActionStub:
    """Action button waiting for its legacy media action to be resolved."""

    action_id: str
    text: str
    button_id: str


@dataclass
class NavigateStub:
    """Button or inline anchor waiting for its target heading to be known."""

    action_id: str
    node_id: Optional[str] = None


@dataclass
class ParseResult:
    node_ids: list[str] = field(default_factory=list)
    action_stubs: list[ActionStub] = field(default_factory=list)
    navigate_button_stubs: list[NavigateStub] = field(default_factory=list)
    navigate_inline_stubs: list[NavigateStub] = field(default_factory=list)
    style_blocks: list[str] = field(default_factory=list)
    media_urls: list[str] = field(default_factory=list)
    video_embeds: int = 0
    inline_compares: int = 0

    def record_media(self, url: str) -> None:
        if url and url not in self.media_urls:
            self.media_urls.append(url)


@dataclass
class ParseContext:
    """
    Collaborators a parser may need to resolve iframes.

    `embedded_apps` maps legacy app ids to prefetched app documents; `build_inline_compare`
    builds a native comparison block from one app's `values` and returns its node id.
    """

    embedded_apps: dict[str, Any] = field(default_factory=dict)
    build_inline_compare: Optional[InlineCompareBuilder] = None


@dataclass
class Block:
    """One element (or bare text run) among the sibling blocks of a markup fragment."""

    tag: str  # lower-case element name, "#text" for bare text
    html: str
    inner: str = ""
    attrs: dict[str, str] = field(default_factory=dict)
    handle: Any = None  # engine-specific element object


def extract_style_blocks(markup: str) -> tuple[str, list[str]]:
    """Pull `<style>` bodies out verbatim; returns (markup without them, css blocks)."""
    remaining = _COMMENT_RE.sub("", markup or "")
    blocks = [m.group(1).strip() for m in _STYLE_BLOCK_RE.finditer(remaining)]
    remaining = _STYLE_BLOCK_RE.sub("", remaining)
    remaining = _SCRIPT_BLOCK_RE.sub("", remaining)
    return remaining, [b for b in blocks if b]


def strip_tags(markup: str) -> str:
    text = _TAG_RE.sub("", markup or "")
    text = html_lib.unescape(_NBSP_RE.sub(" ", text))
    return re.sub(r"\s+", " ", text.replace("\u00a0", " ")).strip()


def normalize_nbsp(markup: str) -> str:
    return _NBSP_RE.sub(" ", markup)


def split_tokens(markup: str) -> list[str]:
    return [seg for seg in _TOKEN_SPLIT_RE.split(markup) if seg]


def parse_token(segment: str) -> Optional[tuple[str, str]]:
    match = _TOKEN_RE.match(segment)
    if match is None:
        return None
    return match.group(1), match.group(2)


def is_non_empty_segment(segment: str) -> bool:
    """Visible text after stripping tags and NBSPs, or a pending action/navigate anchor."""
    if not segment:
        return False
    if "data-storymaps=" in segment.lower():
        return True
    without_blocks = _SCRIPT_BLOCK_RE.sub("", _STYLE_BLOCK_RE.sub("", segment))
    return bool(strip_tags(without_blocks))


def normalize_button_label(label: str) -> str:
    text = normalize_nbsp(str(label or ""))
    text = _LABEL_LEAD_RE.sub("", text).strip()
    return text or "View"


def has_button_class(class_value: Any) -> bool:
    if isinstance(class_value, (list, tuple)):
        classes = [str(c) for c in class_value]
    else:
        classes = str(class_value or "").split()
    return any(BUTTON_CLASS_RE.match(c) for c in classes)


def detect_video_provider(url: str) -> tuple[Optional[str], Optional[str]]:
    """Return (provider, video id) for YouTube and Vimeo URLs, else (None, None)."""
    if not url:
        return None, None
    match = YOUTUBE_RE.search(url)
    if match:
        return "youtube", match.group(1)
    match = VIMEO_RE.search(url)
    if match:
        return "vimeo", match.group(1)
    return None, None


def parse_compare_app_id(url: str) -> Optional[str]:
    if not url:
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        match = _APPID_FALLBACK_RE.search(url)
        return match.group(1) if match else None
    for raw in (parts.query, parts.fragment):
        query = parse_qs(raw)
        for key in ("appid", "appId"):
            if query.get(key) and query[key][0]:
                return query[key][0]
    match = _APPID_FALLBACK_RE.search(url)
    return match.group(1) if match else None


def parse_compare_layout(url: str) -> Optional[str]:
    try:
        query = parse_qs(urlsplit(url or "").query)
    except ValueError:
        return None
    layout = (query.get("layout") or [""])[0].lower()
    if "spyglass" in layout:
        return "spyglass"
    if "swipe" in layout:
        return "swipe"
    return None


def _bind_inline_stubs(fragment: str, rich_id: str, stubs: list[NavigateStub]) -> None:
    if "data-storymaps" not in fragment:
        return
    for stub in stubs:
        if stub.node_id is None and re.search(
            r"data-storymaps=[\"']" + re.escape(stub.action_id) + r"[\"']", fragment
        ):
            stub.node_id = rich_id


def emit_flow_segments(tokenized: str, builder: GraphBuilder, result: ParseResult) -> None:
    """
    Turn tokenized paragraph/div markup into ordered node ids.

    Tokens become their pre-built nodes; text between tokens becomes rich text, split
    into one node per paragraph when the segment holds more than one `<p>`.
    """
    for segment in split_tokens(tokenized):
        token = parse_token(segment)
        if token is not None:
            result.node_ids.append(token[1])
            continue
        if not is_non_empty_segment(segment):
            continue
        processed = normalize_nbsp(rewrite_inline_colors(segment))
        paragraphs = _PARAGRAPH_RE.findall(processed)
        if len(paragraphs) > 1:
            for paragraph in paragraphs:
                inner = _SINGLE_PARAGRAPH_RE.match(paragraph.strip())
                content = (inner.group(1) if inner else paragraph).strip()
                if not is_non_empty_segment(content):
                    continue
                rich_id = builder.rich_text_node(content)
                _bind_inline_stubs(paragraph, rich_id, result.navigate_inline_stubs)
                result.node_ids.append(rich_id)
            continue
        content = processed.strip()
        single = _SINGLE_PARAGRAPH_RE.match(content)
        if single and len(paragraphs) == 1:
            content = single.group(1).strip()
        if not is_non_empty_segment(content):
            continue
        rich_id = builder.rich_text_node(content)
        _bind_inline_stubs(processed, rich_id, result.navigate_inline_stubs)
        result.node_ids.append(rich_id)


class ContentParser(ABC):
    """
    Ordered markup -> node-id parser.

    Subclasses only locate sibling blocks and tokenize paragraph bodies; node
    emission, segment splitting and iframe resolution live here so every engine yields
    the same sequence for the same input.
    """

    name = "base"

    def __init__(self, builder: GraphBuilder, context: Optional[ParseContext] = None):
        self.builder = builder
        self.context = context or ParseContext()

    # ------------------------------------------------------------ engine hooks

    @abstractmethod
    def iter_blocks(self, markup: str) -> Iterator[Block]:
        """Yield top-level blocks in source order."""

    @abstractmethod
    def figure_image(self, block: Block) -> Optional[tuple[str, Optional[str], Optional[str]]]:
        """Return (src, alt, caption) of the image inside a figure block."""

    @abstractmethod
    def tokenize_flow(self, block: Block, result: ParseResult) -> str:
        """
        Return the block body with flagged anchors, images and iframes replaced by tokens.

        Anchors go first: an image inside a flagged anchor belongs to the button.
        """

    # ---------------------------------------------------------------- parsing

    def parse(self, markup: str, result: Optional[ParseResult] = None) -> ParseResult:
        result = result if result is not None else ParseResult()
        cleaned, styles = extract_style_blocks(markup or "")
        result.style_blocks.extend(styles)
        self.handle_blocks(self.iter_blocks(cleaned), result)
        return result

    def handle_blocks(self, blocks: Iterable[Block], result: ParseResult) -> None:
        """Handle sibling blocks, folding runs of bare text and inline elements into one flow."""
        run: list[Block] = []
        for block in blocks:
            if block.tag == "#text" or block.tag in INLINE_TAGS:
                run.append(block)
                continue
            self.handle_inline_run(run, result)
            run = []
            self.handle_block(block, result)
        self.handle_inline_run(run, result)

    def handle_inline_run(self, run: list[Block], result: ParseResult) -> None:
        markup = "".join(block.html for block in run)
        if not is_non_empty_segment(markup):
            return
        flow = Block(tag="#flow", html=markup, inner=markup)
        emit_flow_segments(self.tokenize_flow(flow, result), self.builder, result)

    def handle_block(self, block: Block, result: ParseResult) -> None:
        tag = block.tag
        if tag in SKIPPED_TAGS:
            return
        if tag in CONTAINER_TAGS:
            self.handle_blocks(self.iter_blocks(block.inner), result)
            return
        if tag == "figure":
            found = self.figure_image(block)
            if found is not None:
                src, alt, caption = found
                result.node_ids.append(self.image_node(src, alt, caption, result))
            return
        if tag == "img":
            src = block.attrs.get("src")
            if src:
                result.node_ids.append(self.image_node(src, block.attrs.get("alt"), None, result))
            return
        if tag == "p":
            emit_flow_segments(self.tokenize_flow(block, result), self.builder, result)
            return
        if tag == "iframe":
            src = block.attrs.get("src")
            if src:
                result.node_ids.append(self.resolve_iframe(src, result))
            return
        if tag in HEADING_BLOCK_TYPES:
            text = strip_tags(block.inner)
            if text:
                result.node_ids.append(self.builder.text_node(text, HEADING_BLOCK_TYPES[tag]))
            return
        if is_non_empty_segment(block.html):
            logger.debug("Keeping <%s> block as rich text.", tag)
            result.node_ids.append(
                self.builder.rich_text_node(normalize_nbsp(rewrite_inline_colors(block.html)).strip())
            )

    # ------------------------------------------------------- token callbacks

    def image_node(
        self,
        src: str,
        alt: Optional[str],
        caption: Optional[str],
        result: ParseResult,
    ) -> str:
        resource_id = self.builder.image_resource(src)
        result.record_media(src)
        return self.builder.image_node(resource_id, caption or None, alt or None, "standard")

    def image_token(self, src: str, alt: Optional[str], result: ParseResult) -> str:
        return IMG_TOKEN.format(self.image_node(src, alt, None, result))

    def anchor_token(
        self,
        action_id: str,
        action_type: str,
        label_markup: str,
        class_value: Any,
        result: ParseResult,
    ) -> Optional[str]:
        """Token replacing a `data-storymaps` anchor, or None to keep it inline."""
        label = normalize_button_label(strip_tags(label_markup))
        if action_type == "media":
            button_id = self.builder.action_button_node(label, "wide")
            result.action_stubs.append(ActionStub(action_id, label, button_id))
            return ACTION_BTN_TOKEN.format(button_id)
        if action_type == "navigate":
            if has_button_class(class_value):
                button_id = self.builder.button_node(label, "wide")
                result.navigate_button_stubs.append(NavigateStub(action_id, button_id))
                return NAV_BTN_TOKEN.format(button_id)
            result.navigate_inline_stubs.append(NavigateStub(action_id))
        return None

    def iframe_token(self, src: str, result: ParseResult) -> str:
        return IFRAME_NODE_TOKEN.format(self.resolve_iframe(src, result))

    def resolve_iframe(self, src: str, result: ParseResult) -> str:
        """Inline compare block, video embed or link embed for an iframe URL."""
        compare_id = self.try_inline_compare(src, result)
        if compare_id is not None:
            return compare_id
        provider, video_id = detect_video_provider(src)
        if provider is not None:
            result.video_embeds += 1
            logger.debug("iframe -> %s video embed (%s)", provider, video_id)
            return self.builder.video_embed_node(src, provider, video_id)
        logger.debug("iframe -> link embed (%s)", src)
        return self.builder.link_embed_node(src)

    def try_inline_compare(self, src: str, result: ParseResult) -> Optional[str]:
        app_id = parse_compare_app_id(src)
        if app_id is None or self.context.build_inline_compare is None:
            return None
        app = self.context.embedded_apps.get(app_id)
        if not isinstance(app, dict) or not isinstance(app.get("values"), dict):
            logger.debug("iframe app %s was not prefetched; using an embed.", app_id)
            return None
        if detect_template(app) != "Swipe":
            return None
        values = app["values"]
        layout = parse_compare_layout(src)
        if layout is None:
            layout = "spyglass" if "spyglass" in str(values.get("layout") or "").lower() else "swipe"
        try:
            node_id = self.context.build_inline_compare(self.builder, values, layout)
        except (StructuralIntegrityError, KeyError, TypeError) as exc:
            logger.warning("Inline compare for app %s failed (%s); using an embed.", app_id, exc)
            return None
        result.inline_compares += 1
        return node_id
