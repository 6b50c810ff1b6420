"""Legacy template detection."""

from __future__ import annotations

from typing import Any

from ._coerce import as_dict


TEMPLATE_LABELS = (
    "Map Journal",
    "Map Tour",
    "Map Series",
    "Cascade",
    "Shortlist",
    "Swipe",
    "Crowdsource",
    "Basic",
)

# Substring -> label, checked in order against declared template names.
_DECLARED_NAME_HINTS = (
    ("journal", "Map Journal"),
    ("tour", "Map Tour"),
    ("series", "Map Series"),
    ("tabbed", "Map Series"),
    ("accordion", "Map Series"),
    ("bullet", "Map Series"),
    ("cascade", "Cascade"),
    ("shortlist", "Shortlist"),
    ("swipe", "Swipe"),
    ("spyglass", "Swipe"),
    ("crowd", "Crowdsource"),
    ("basic", "Basic"),
)

_STRATEGY_KEYS = {
    "Map Series": "series",
    "Map Tour": "tour",
    "Swipe": "swipe",
}


def _declared_name(document: dict[str, Any], values: dict[str, Any]) -> str:
    candidates = (
        values.get("templateName"),
        values.get("template"),
        as_dict(values.get("settings")).get("template"),
        document.get("template"),
    )
    for candidate in candidates:
        if isinstance(candidate, dict):
            candidate = candidate.get("name")
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def normalize_template_name(name: str) -> str:
    """Map a declared template name onto one of `TEMPLATE_LABELS` ("" when unknown)."""
    lowered = (name or "").strip().lower()
    if not lowered:
        return ""
    for label in TEMPLATE_LABELS:
        if lowered == label.lower():
            return label
    for hint, label in _DECLARED_NAME_HINTS:
        if hint in lowered:
            return label
    return ""


def _has_sequence_section(sections: list[Any]) -> bool:
    return any(isinstance(s, dict) and s.get("type") == "sequence" for s in sections)


def detect_template(document: Any) -> str:
    """Return the template label of a legacy document. Never raises."""
    doc = as_dict(document)
    values = as_dict(doc.get("values"))

    declared = normalize_template_name(_declared_name(doc, values))
    if declared:
        return declared

    settings = as_dict(values.get("settings"))
    story = as_dict(values.get("story"))
    story_sections = story.get("sections")

    if settings.get("components") is not None:
        return "Crowdsource"
    if isinstance(values.get("series"), list):
        return "Map Series"
    if values.get("tabs") is not None:
        return "Shortlist"
    if isinstance(values.get("order"), list):
        return "Map Tour"
    if any(values.get(key) is not None for key in ("dataModel", "layers", "webmaps")):
        return "Swipe"
    if isinstance(story_sections, list) and _has_sequence_section(story_sections):
        return "Cascade"
    if isinstance(story_sections, list) or isinstance(values.get("sections"), list):
        return "Map Journal"
    if isinstance(story.get("entries"), list) or isinstance(values.get("entries"), list):
        return "Map Series"
    return "Basic"


def strategy_key(label: str) -> str:
    """Strategy registry key for a template label; everything unmatched is journal-like."""
    return _STRATEGY_KEYS.get(label, "journal")
