"""Ordered markup -> graph node parsers."""

from __future__ import annotations

from typing import Optional

from ..builder import GraphBuilder
from .common import (
    ActionStub,
    ContentParser,
    NavigateStub,
    ParseContext,
    ParseResult,
    detect_video_provider,
    extract_style_blocks,
    is_non_empty_segment,
    normalize_button_label,
    parse_compare_app_id,
    parse_compare_layout,
)
from .dom import DomContentParser
from .regex import RegexContentParser


PARSERS: dict[str, type[ContentParser]] = {
    DomContentParser.name: DomContentParser,
    RegexContentParser.name: RegexContentParser,
}


def make_content_parser(
    engine: str,
    builder: GraphBuilder,
    context: Optional[ParseContext] = None,
) -> ContentParser:
    try:
        parser_cls = PARSERS[engine]
    except KeyError as exc:
        raise ValueError(f"Unknown html engine: {engine!r}. Available: {sorted(PARSERS)}") from exc
    return parser_cls(builder, context)


__all__ = [
    "ActionStub",
    "ContentParser",
    "DomContentParser",
    "NavigateStub",
    "PARSERS",
    "ParseContext",
    "ParseResult",
    "RegexContentParser",
    "detect_video_provider",
    "extract_style_blocks",
    "is_non_empty_segment",
    "make_content_parser",
    "normalize_button_label",
    "parse_compare_app_id",
    "parse_compare_layout",
]
