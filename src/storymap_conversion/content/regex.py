"""Regular-expression parser engine for environments without a DOM parser."""

from __future__ import annotations

import html as html_lib
import re
from typing import Iterator, Optional

from .common import Block, ContentParser, ParseResult, strip_tags


_TAG_SCAN_RE = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)\b([^>]*)>", re.DOTALL)
_ATTR_RE = re.compile(r"([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s\"'>]+)")
_IMG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_ANCHOR_RE = re.compile(r"<a\b([^>]*)>(.*?)</a\s*>", re.IGNORECASE | re.DOTALL)
_IFRAME_RE = re.compile(r"<iframe\b([^>]*)>.*?</iframe\s*>|<iframe\b([^>]*)/>", re.IGNORECASE | re.DOTALL)
_FIGCAPTION_RE = re.compile(r"<figcaption[^>]*>(.*?)</figcaption\s*>", re.IGNORECASE | re.DOTALL)

VOID_TAGS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta",
    "param", "source", "track", "wbr",
}


def parse_attrs(raw: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for key, value in _ATTR_RE.findall(raw or ""):
        if value[:1] in ("'", '"'):
            value = value[1:-1]
        attrs.setdefault(key.lower(), html_lib.unescape(value))
    return attrs


def _is_self_closing(raw_attrs: str) -> bool:
    return raw_attrs.rstrip().endswith("/")


def find_closing_tag(markup: str, name: str, start: int) -> tuple[int, int]:
    """
    Locate the end tag balancing an open `name` element whose body starts at `start`.

    Same-name tags are counted so nested elements stay inside their parent. An element
    that is never closed runs to the end of the markup. Returns (start, end) of the
    end tag.
    """
    depth = 1
    for match in _TAG_SCAN_RE.finditer(markup, start):
        if match.group(2).lower() != name:
            continue
        if match.group(1):
            depth -= 1
            if depth == 0:
                return match.start(), match.end()
        elif not _is_self_closing(match.group(3)):
            depth += 1
    return len(markup), len(markup)


class RegexContentParser(ContentParser):
    name = "regex"

    def iter_blocks(self, markup: str) -> Iterator[Block]:
        cursor = 0
        while True:
            match = _TAG_SCAN_RE.search(markup, cursor)
            if match is None:
                break
            if match.start() > cursor:
                yield Block(tag="#text", html=markup[cursor:match.start()])
            cursor = match.end()
            if match.group(1):
                # Unbalanced end tag.
                continue
            name = match.group(2).lower()
            raw_attrs = match.group(3)
            if name in VOID_TAGS or _is_self_closing(raw_attrs):
                yield Block(tag=name, html=match.group(0), attrs=parse_attrs(raw_attrs))
                continue
            close_start, close_end = find_closing_tag(markup, name, match.end())
            yield Block(
                tag=name,
                html=markup[match.start():close_end],
                inner=markup[match.end():close_start],
                attrs=parse_attrs(raw_attrs),
            )
            cursor = close_end
        if cursor < len(markup):
            yield Block(tag="#text", html=markup[cursor:])

    def figure_image(self, block: Block) -> Optional[tuple[str, Optional[str], Optional[str]]]:
        for tag in _IMG_RE.findall(block.inner):
            attrs = parse_attrs(tag[4:])
            if attrs.get("src"):
                caption_match = _FIGCAPTION_RE.search(block.inner)
                caption = strip_tags(caption_match.group(1)) if caption_match else None
                return attrs["src"], attrs.get("alt"), caption or None
        return None

    def tokenize_flow(self, block: Block, result: ParseResult) -> str:
        def _anchor(match: re.Match[str]) -> str:
            attrs = parse_attrs(match.group(1))
            if "data-storymaps" not in attrs:
                return match.group(0)
            token = self.anchor_token(
                attrs["data-storymaps"],
                attrs.get("data-storymaps-type", ""),
                match.group(2),
                attrs.get("class", ""),
                result,
            )
            return token if token is not None else match.group(0)

        def _image(match: re.Match[str]) -> str:
            attrs = parse_attrs(match.group(0)[4:])
            if not attrs.get("src"):
                return match.group(0)
            return self.image_token(attrs["src"], attrs.get("alt"), result)

        def _iframe(match: re.Match[str]) -> str:
            attrs = parse_attrs(match.group(1) or match.group(2) or "")
            if not attrs.get("src"):
                return match.group(0)
            return self.iframe_token(attrs["src"], result)

        working = _ANCHOR_RE.sub(_anchor, block.inner)
        working = _IMG_RE.sub(_image, working)
        return _IFRAME_RE.sub(_iframe, working)
