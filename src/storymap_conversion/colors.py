"""Inline text-colour rewriting into theme-friendly class names."""

from __future__ import annotations

import re
from typing import Optional


COLOR_CLASS_PREFIX = "sm-text-color-"

CSS_NAMED_COLORS = {
    "aliceblue": "F0F8FF", "antiquewhite": "FAEBD7", "aqua": "00FFFF", "aquamarine": "7FFFD4",
    "azure": "F0FFFF", "beige": "F5F5DC", "bisque": "FFE4C4", "black": "000000",
    "blanchedalmond": "FFEBCD", "blue": "0000FF", "blueviolet": "8A2BE2", "brown": "A52A2A",
    "burlywood": "DEB887", "cadetblue": "5F9EA0", "chartreuse": "7FFF00", "chocolate": "D2691E",
    "coral": "FF7F50", "cornflowerblue": "6495ED", "cornsilk": "FFF8DC", "crimson": "DC143C",
    "cyan": "00FFFF", "darkblue": "00008B", "darkcyan": "008B8B", "darkgoldenrod": "B8860B",
    "darkgray": "A9A9A9", "darkgreen": "006400", "darkgrey": "A9A9A9", "darkkhaki": "BDB76B",
    "darkmagenta": "8B008B", "darkolivegreen": "556B2F", "darkorange": "FF8C00",
    "darkorchid": "9932CC", "darkred": "8B0000", "darksalmon": "E9967A", "darkseagreen": "8FBC8F",
    "darkslateblue": "483D8B", "darkslategray": "2F4F4F", "darkslategrey": "2F4F4F",
    "darkturquoise": "00CED1", "darkviolet": "9400D3", "deeppink": "FF1493",
    "deepskyblue": "00BFFF", "dimgray": "696969", "dimgrey": "696969", "dodgerblue": "1E90FF",
    "firebrick": "B22222", "floralwhite": "FFFAF0", "forestgreen": "228B22", "fuchsia": "FF00FF",
    "gainsboro": "DCDCDC", "ghostwhite": "F8F8FF", "gold": "FFD700", "goldenrod": "DAA520",
    "gray": "808080", "green": "008000", "greenyellow": "ADFF2F", "grey": "808080",
    "honeydew": "F0FFF0", "hotpink": "FF69B4", "indianred": "CD5C5C", "indigo": "4B0082",
    "ivory": "FFFFF0", "khaki": "F0E68C", "lavender": "E6E6FA", "lavenderblush": "FFF0F5",
    "lawngreen": "7CFC00", "lemonchiffon": "FFFACD", "lightblue": "ADD8E6", "lightcoral": "F08080",
    "lightcyan": "E0FFFF", "lightgoldenrodyellow": "FAFAD2", "lightgray": "D3D3D3",
    "lightgreen": "90EE90", "lightgrey": "D3D3D3", "lightpink": "FFB6C1", "lightsalmon": "FFA07A",
    "lightseagreen": "20B2AA", "lightskyblue": "87CEFA", "lightslategray": "778899",
    "lightslategrey": "778899", "lightsteelblue": "B0C4DE", "lightyellow": "FFFFE0",
    "lime": "00FF00", "limegreen": "32CD32", "linen": "FAF0E6", "magenta": "FF00FF",
    "maroon": "800000", "mediumaquamarine": "66CDAA", "mediumblue": "0000CD",
    "mediumorchid": "BA55D3", "mediumpurple": "9370DB", "mediumseagreen": "3CB371",
    "mediumslateblue": "7B68EE", "mediumspringgreen": "00FA9A", "mediumturquoise": "48D1CC",
    "mediumvioletred": "C71585", "midnightblue": "191970", "mintcream": "F5FFFA",
    "mistyrose": "FFE4E1", "moccasin": "FFE4B5", "navajowhite": "FFDEAD", "navy": "000080",
    "oldlace": "FDF5E6", "olive": "808000", "olivedrab": "6B8E23", "orange": "FFA500",
    "orangered": "FF4500", "orchid": "DA70D6", "palegoldenrod": "EEE8AA", "palegreen": "98FB98",
    "paleturquoise": "AFEEEE", "palevioletred": "DB7093", "papayawhip": "FFEFD5",
    "peachpuff": "FFDAB9", "peru": "CD853F", "pink": "FFC0CB", "plum": "DDA0DD",
    "powderblue": "B0E0E6", "purple": "800080", "rebeccapurple": "663399", "red": "FF0000",
    "rosybrown": "BC8F8F", "royalblue": "4169E1", "saddlebrown": "8B4513", "salmon": "FA8072",
    "sandybrown": "F4A460", "seagreen": "2E8B57", "seashell": "FFF5EE", "sienna": "A0522D",
    "silver": "C0C0C0", "skyblue": "87CEEB", "slateblue": "6A5ACD", "slategray": "708090",
    "slategrey": "708090", "snow": "FFFAFA", "springgreen": "00FF7F", "steelblue": "4682B4",
    "tan": "D2B48C", "teal": "008080", "thistle": "D8BFD8", "tomato": "FF6347",
    "turquoise": "40E0D0", "violet": "EE82EE", "wheat": "F5DEB3", "white": "FFFFFF",
    "whitesmoke": "F5F5F5", "yellow": "FFFF00", "yellowgreen": "9ACD32",
}

_HEX_RE = re.compile(r"^#?([0-9a-f]{3}|[0-9a-f]{6})$", re.IGNORECASE)
_RGB_FUNC_RE = re.compile(
    r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*[\d.]+\s*)?\)$",
    re.IGNORECASE,
)
_RGB_DASH_RE = re.compile(r"^rgb-(\d{1,3})-(\d{1,3})-(\d{1,3})$", re.IGNORECASE)
_TAG_WITH_STYLE_RE = re.compile(
    r"<([a-zA-Z][a-zA-Z0-9-]*)(\s[^<>]*?)?\sstyle\s*=\s*(\"[^\"]*\"|'[^']*')([^<>]*)>",
)
_COLOR_DECL_RE = re.compile(r"(?:^|;)\s*color\s*:\s*([^;]+?)\s*(?=;|$)", re.IGNORECASE)
_CLASS_ATTR_RE = re.compile(r"\sclass\s*=\s*(\"[^\"]*\"|'[^']*')", re.IGNORECASE)


def color_to_hex(value: str) -> Optional[str]:
    """Resolve a CSS colour value to upper-case `RRGGBB`, or None when unsupported."""
    raw = (value or "").replace("!important", "").strip().lower()
    if not raw:
        return None
    match = _HEX_RE.match(raw)
    if match:
        digits = match.group(1)
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        return digits.upper()
    match = _RGB_FUNC_RE.match(raw) or _RGB_DASH_RE.match(raw)
    if match:
        channels = [int(c) for c in match.groups()]
        if any(c > 255 for c in channels):
            return None
        return "".join(f"{c:02X}" for c in channels)
    return CSS_NAMED_COLORS.get(raw)


def color_class(hex_value: str) -> str:
    return f"{COLOR_CLASS_PREFIX}{hex_value.upper()}"


def _strip_color_declaration(style: str, decl_span: tuple[int, int]) -> str:
    remaining = style[: decl_span[0]] + ";" + style[decl_span[1]:]
    parts = [p.strip() for p in remaining.split(";")]
    return "; ".join(p for p in parts if p)


def _rewrite_tag(match: re.Match[str]) -> str:
    tag = match.group(0)
    quoted = match.group(3)
    style = quoted[1:-1]
    decl = _COLOR_DECL_RE.search(style)
    if decl is None:
        return tag
    hex_value = color_to_hex(decl.group(1))
    if hex_value is None:
        return tag
    new_style = _strip_color_declaration(style, decl.span())
    tag_name = match.group(1)
    attrs = (match.group(2) or "") + (f' style="{new_style}"' if new_style else "") + (match.group(4) or "")
    cls = color_class(hex_value)
    class_match = _CLASS_ATTR_RE.search(attrs)
    if class_match:
        existing = class_match.group(1)[1:-1].strip()
        merged = f"{existing} {cls}".strip()
        attrs = attrs[: class_match.start()] + f' class="{merged}"' + attrs[class_match.end():]
    else:
        attrs = f' class="{cls}"' + attrs
    return f"<{tag_name}{attrs}>"


def rewrite_inline_colors(html: str) -> str:
    """
    Replace `color:` declarations in style attributes with `sm-text-color-<HEX>` classes.

    Other declarations in the same style attribute survive; the attribute is dropped when
    it becomes empty. Unresolvable colours are left untouched.
    """
    if not html or "style" not in html.lower():
        return html
    return _TAG_WITH_STYLE_RE.sub(_rewrite_tag, html)
