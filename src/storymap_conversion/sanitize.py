"""Reduce legacy rich text to the basic inline markup the output format accepts."""

from __future__ import annotations

from dataclasses import dataclass, field
import re

from bs4 import BeautifulSoup


ALLOWED_TAGS = ("strong", "em", "a")
_RENAMES = {"b": "strong", "i": "em"}
_NEWLINES_RE = re.compile(r"(?:\r?\n|\r){2,}")


@dataclass
class SanitizedHtml:
    html: str
    inline_styles: list[str] = field(default_factory=list)


def sanitize_basic_html(markup: str) -> SanitizedHtml:
    """
    Keep `<strong>`, `<em>` and `<a href>`; drop everything else but its text.

    `style` attribute values are collected (in document order) so callers can surface
    them in converter metadata. `<script>`/`<style>` elements are removed with their
    contents.
    """
    soup = BeautifulSoup(markup or "", "html.parser")
    styles = [str(tag["style"]) for tag in soup.find_all(style=True)]
    for tag in soup.find_all(["script", "style"]):
        tag.decompose()
    for tag in soup.find_all(True):
        tag.name = _RENAMES.get(tag.name.lower(), tag.name.lower())
        if tag.name == "a":
            href = tag.get("href")
            tag.attrs = {"href": href} if href else {}
        elif tag.name in ALLOWED_TAGS:
            tag.attrs = {}
        else:
            tag.unwrap()
    text = str(soup).replace("\u00a0", " ")
    return SanitizedHtml(html=_NEWLINES_RE.sub("\n", text), inline_styles=styles)
