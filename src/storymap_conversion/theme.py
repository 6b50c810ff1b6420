"""Derive the output theme (base id + variable overrides) from legacy theme settings."""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Optional

from ._coerce import as_dict
from .classifier import detect_template


BASE_THEME_VARIABLES: dict[str, dict[str, Any]] = {
    "summit": {
        "headerFooterBackgroundColor": "#ffffff",
        "backgroundColor": "#ffffff",
        "titleFontId": "avenirNext",
        "titleColor": "#002625",
        "bodyFontId": "notoSerif",
        "bodyColor": "#304e4e",
        "bodyMutedColor": "#3d6665",
        "themeColor1": "#087f9b",
        "themeColor2": "#fc3b36",
        "themeColor3": "#126057",
    },
    "obsidian": {
        "headerFooterBackgroundColor": "#000000",
        "backgroundColor": "#0e1116",
        "titleFontId": "charterBT",
        "titleColor": "#f3f3f3",
        "bodyFontId": "arial",
        "bodyColor": "#e6f2f2",
        "bodyMutedColor": "#809e9d",
        "themeColor1": "#ea5b41",
        "themeColor2": "#4d6aff",
        "themeColor3": "#0ec2db",
    },
}

FONT_IDS = {
    "open_sansregular": "openSans",
    "opensans": "openSans",
    "roboto": "roboto",
    "noto": "notoSerif",
    "notoserif": "notoSerif",
    "lato": "lato",
    "sourcesanspro": "sourceSansPro",
    "avenirnext": "avenirNext",
    "charterbt": "charterBT",
    "arial": "arial",
}

# Legacy colour key -> theme variable, in the order they are applied.
COLOR_VARIABLES = (
    ("panel", "backgroundColor"),
    ("dotNav", "headerFooterBackgroundColor"),
    ("textLink", "themeColor1"),
)

CUSTOM_CSS_LIMIT = 6000
CSS_TRUNCATED_MARKER = "\n/*__CSS_TRUNCATED__*/"

_FONT_QUOTED_RE = re.compile(r"font-family:\s*(?:'([^']+)'|\"([^\"]+)\")")
_FONT_BARE_RE = re.compile(r"font-family:\s*([^;]+);?")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f]")


@dataclass
class DerivedTheme:
    theme_id: str
    variable_overrides: dict[str, Any] = field(default_factory=dict)
    decisions: dict[str, Any] = field(default_factory=dict)


def legacy_theme_settings(document: Any) -> Optional[dict[str, Any]]:
    """The `values.settings.theme` block, or None when the document has none."""
    values = as_dict(as_dict(document).get("values"))
    theme = as_dict(values.get("settings")).get("theme")
    return theme if isinstance(theme, dict) and theme else None


def theme_from_major(major: Any) -> str:
    return "obsidian" if str(major or "").strip().lower() in ("black", "dark") else "summit"


def map_font_id(css_value: Any) -> Optional[str]:
    """Map a legacy `font-family:` declaration onto a theme font id."""
    if not isinstance(css_value, str) or "font-family" not in css_value:
        return None
    quoted = _FONT_QUOTED_RE.search(css_value)
    if quoted:
        font = quoted.group(1) or quoted.group(2)
    else:
        bare = _FONT_BARE_RE.search(css_value)
        if bare is None:
            return None
        font = bare.group(1).split(",")[0].strip().strip("'\"")
    return FONT_IDS.get(re.sub(r"\s+", "", font.lower()))


def _journal_theme(document: dict[str, Any]) -> DerivedTheme:
    theme = legacy_theme_settings(document) or {}
    colors = as_dict(theme.get("colors"))
    fonts = as_dict(theme.get("fonts"))
    theme_id = theme_from_major(colors.get("themeMajor"))
    overrides: dict[str, Any] = {}
    for legacy_key, variable in COLOR_VARIABLES:
        if colors.get(legacy_key):
            overrides[variable] = str(colors[legacy_key])
    for legacy_key, variable in (("sectionTitle", "titleFontId"), ("sectionContent", "bodyFontId")):
        font_id = map_font_id(as_dict(fonts.get(legacy_key)).get("value"))
        if font_id and font_id != BASE_THEME_VARIABLES[theme_id][variable]:
            overrides[variable] = font_id
    decisions = {"baseThemeId": theme_id, "variableOverridesApplied": sorted(overrides)}
    return DerivedTheme(theme_id, overrides, decisions)


def _color_string_theme(values: dict[str, Any], theme_id: str) -> DerivedTheme:
    """Tours and compare apps store `"header;background;..."` in `values.colors`."""
    parts = [p.strip() for p in str(values.get("colors") or "").split(";")]
    overrides: dict[str, Any] = {}
    if parts and parts[0]:
        overrides["headerFooterBackgroundColor"] = parts[0]
    if len(parts) > 1 and parts[1]:
        overrides["backgroundColor"] = parts[1]
    decisions = {"baseThemeId": theme_id, "variableOverridesApplied": sorted(overrides)}
    return DerivedTheme(theme_id, overrides, decisions)


def derive_theme(document: Any, template: Optional[str] = None) -> DerivedTheme:
    doc = as_dict(document)
    values = as_dict(doc.get("values"))
    template = template or detect_template(doc)
    major = as_dict(as_dict(legacy_theme_settings(doc)).get("colors")).get("themeMajor")
    if template in ("Map Journal", "Map Series", "Cascade"):
        return _journal_theme(doc)
    if template == "Map Tour":
        return _color_string_theme(values, "summit")
    if template == "Swipe":
        return _color_string_theme(values, theme_from_major(major))
    theme_id = theme_from_major(major)
    return DerivedTheme(theme_id, {}, {"baseThemeId": theme_id, "variableOverridesApplied": []})


def compute_theme(requested: str, document: Any, template: Optional[str] = None) -> DerivedTheme:
    """Derived theme, with the base id replaced when the caller forces one."""
    derived = derive_theme(document, template)
    if requested and requested != "auto":
        derived.theme_id = requested
        derived.decisions["baseThemeId"] = requested
        derived.decisions["forcedThemeId"] = requested
    return derived


def build_custom_css(style_blocks: list[str]) -> Optional[dict[str, Any]]:
    """Combine extracted `<style>` blocks into the metadata `customCss` record."""
    blocks = [b for b in style_blocks if b and b.strip()]
    if not blocks:
        return None
    combined_raw = "\n\n".join(blocks)
    sanitized = _CONTROL_RE.sub(" ", combined_raw.replace("\r", "").replace("\t", " "))
    sanitized = re.sub(r"\n{3,}", "\n\n", sanitized)
    if len(sanitized) > CUSTOM_CSS_LIMIT:
        sanitized = sanitized[:CUSTOM_CSS_LIMIT] + CSS_TRUNCATED_MARKER
    return {"blockCount": len(blocks), "approxBytes": len(combined_raw), "combined": sanitized}
