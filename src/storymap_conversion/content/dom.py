"""BeautifulSoup-backed parser engine."""

from __future__ import annotations

from typing import Iterator, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from .common import Block, ContentParser, ParseResult, strip_tags


def _attrs(tag: Tag) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in tag.attrs.items():
        out[key.lower()] = " ".join(value) if isinstance(value, list) else str(value)
    return out


class DomContentParser(ContentParser):
    name = "dom"

    def iter_blocks(self, markup: str) -> Iterator[Block]:
        soup = BeautifulSoup(markup, "html.parser")
        for child in list(soup.children):
            # Comments, doctypes and CDATA carry no content.
            if isinstance(child, PreformattedString):
                continue
            if isinstance(child, NavigableString):
                yield Block(tag="#text", html=child.output_ready())
            elif isinstance(child, Tag):
                yield Block(
                    tag=child.name.lower(),
                    html=str(child),
                    inner=child.decode_contents(),
                    attrs=_attrs(child),
                    handle=child,
                )

    def figure_image(self, block: Block) -> Optional[tuple[str, Optional[str], Optional[str]]]:
        figure: Tag = block.handle
        img = figure.find("img", src=True)
        if img is None:
            return None
        caption_tag = figure.find("figcaption")
        caption = strip_tags(caption_tag.decode_contents()) if caption_tag is not None else None
        return str(img["src"]), img.get("alt"), caption or None

    def tokenize_flow(self, block: Block, result: ParseResult) -> str:
        # Re-parse the body so the replacements never touch the caller's tree.
        body = BeautifulSoup(block.inner, "html.parser")
        for anchor in body.find_all("a", attrs={"data-storymaps": True}):
            token = self.anchor_token(
                str(anchor["data-storymaps"]),
                str(anchor.get("data-storymaps-type") or ""),
                anchor.decode_contents(),
                anchor.get("class"),
                result,
            )
            if token is not None:
                anchor.replace_with(token)
        for img in body.find_all("img", src=True):
            img.replace_with(self.image_token(str(img["src"]), img.get("alt"), result))
        for iframe in body.find_all("iframe", src=True):
            iframe.replace_with(self.iframe_token(str(iframe["src"]), result))
        return str(body)
