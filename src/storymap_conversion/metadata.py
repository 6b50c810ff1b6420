"""Typed converter-metadata records and their merge rules."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from importlib import metadata as _importlib_metadata
from typing import Any, Optional


METADATA_RESOURCE_TYPE = "converter-metadata"

_CLASSIC_KEYS = {
    "classicTheme": "classic_theme",
    "mappingDecisions": "mapping_decisions",
    "templateVersion": "template_version",
    "webmapVersionWarnings": "webmap_version_warnings",
    "webmapProtocolWarnings": "webmap_protocol_warnings",
}
_TOP_LEVEL_KEYS = {
    "classicTemplateCreation": "classic_template_creation",
    "classicTemplateLastEdit": "classic_template_last_edit",
}
_RESERVED_KEYS = {"typeConvertedTo", "converterVersion", "classicType", "classicTemplateVersion"}


def converter_version() -> str:
    try:
        return _importlib_metadata.version("classic-storymap-conversion")
    except _importlib_metadata.PackageNotFoundError:
        return "0.1.0"


def deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Merge `incoming` into a copy of `base`; nested dicts merge, other values overwrite."""
    merged = copy.deepcopy(base)
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _union(existing: list[Any], incoming: list[Any]) -> list[Any]:
    out = list(existing)
    for item in incoming:
        if item not in out:
            out.append(copy.deepcopy(item))
    return out


@dataclass
class ClassicMetadata:
    """Provenance of the legacy document a conversion started from."""

    classic_theme: Optional[Any] = None
    mapping_decisions: dict[str, Any] = field(default_factory=dict)
    template_version: Optional[str] = None
    webmap_version_warnings: list[dict[str, Any]] = field(default_factory=list)
    webmap_protocol_warnings: list[dict[str, Any]] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def merge(self, other: "ClassicMetadata") -> None:
        if other.classic_theme is not None:
            self.classic_theme = copy.deepcopy(other.classic_theme)
        self.mapping_decisions = deep_merge(self.mapping_decisions, other.mapping_decisions)
        if other.template_version is not None:
            self.template_version = other.template_version
        self.webmap_version_warnings = _union(
            self.webmap_version_warnings, other.webmap_version_warnings
        )
        self.webmap_protocol_warnings = _union(
            self.webmap_protocol_warnings, other.webmap_protocol_warnings
        )
        self.extra = deep_merge(self.extra, other.extra)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = copy.deepcopy(self.extra)
        if self.classic_theme is not None:
            payload["classicTheme"] = copy.deepcopy(self.classic_theme)
        if self.mapping_decisions:
            payload["mappingDecisions"] = copy.deepcopy(self.mapping_decisions)
        if self.template_version is not None:
            payload["templateVersion"] = self.template_version
        if self.webmap_version_warnings:
            payload["webmapVersionWarnings"] = copy.deepcopy(self.webmap_version_warnings)
        if self.webmap_protocol_warnings:
            payload["webmapProtocolWarnings"] = copy.deepcopy(self.webmap_protocol_warnings)
        return payload

    @classmethod
    def from_payload(cls, payload: Optional[dict[str, Any]]) -> "ClassicMetadata":
        kwargs: dict[str, Any] = {"extra": {}}
        for key, value in (payload or {}).items():
            attr = _CLASSIC_KEYS.get(key)
            if attr is None:
                kwargs["extra"][key] = copy.deepcopy(value)
            elif attr == "mapping_decisions":
                kwargs[attr] = copy.deepcopy(value) if isinstance(value, dict) else {}
            elif attr.endswith("_warnings"):
                kwargs[attr] = list(value) if isinstance(value, list) else []
            elif attr == "template_version":
                kwargs[attr] = None if value is None else str(value)
            else:
                kwargs[attr] = copy.deepcopy(value)
        return cls(**kwargs)


@dataclass
class ConverterMetadata:
    """Single per-document record of how the document was produced."""

    classic_type: str
    converter_version: str = field(default_factory=converter_version)
    type_converted_to: str = "storymap"
    classic_metadata: ClassicMetadata = field(default_factory=ClassicMetadata)
    classic_template_creation: Optional[str] = None
    classic_template_last_edit: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def merge(self, other: "ConverterMetadata") -> None:
        """Fold a later pass into this record (later non-empty scalars win)."""
        if other.classic_type:
            self.classic_type = other.classic_type
        self.classic_metadata.merge(other.classic_metadata)
        if other.classic_template_creation is not None:
            self.classic_template_creation = other.classic_template_creation
        if other.classic_template_last_edit is not None:
            self.classic_template_last_edit = other.classic_template_last_edit
        self.extra = deep_merge(self.extra, other.extra)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = copy.deepcopy(self.extra)
        payload.update(
            {
                "typeConvertedTo": self.type_converted_to,
                "converterVersion": self.converter_version,
                "classicType": self.classic_type,
                "classicMetadata": self.classic_metadata.to_dict(),
            }
        )
        if self.classic_metadata.template_version is not None:
            payload["classicTemplateVersion"] = self.classic_metadata.template_version
        if self.classic_template_creation is not None:
            payload["classicTemplateCreation"] = self.classic_template_creation
        if self.classic_template_last_edit is not None:
            payload["classicTemplateLastEdit"] = self.classic_template_last_edit
        return payload

    @classmethod
    def from_payload(cls, classic_type: str, payload: Optional[dict[str, Any]]) -> "ConverterMetadata":
        raw = dict(payload or {})
        record = cls(
            classic_type=classic_type or str(raw.get("classicType") or ""),
            classic_metadata=ClassicMetadata.from_payload(raw.get("classicMetadata")),
        )
        if raw.get("converterVersion"):
            record.converter_version = str(raw["converterVersion"])
        for key, value in raw.items():
            if key == "classicMetadata" or key in _RESERVED_KEYS:
                continue
            attr = _TOP_LEVEL_KEYS.get(key)
            if attr is not None:
                setattr(record, attr, None if value is None else str(value))
            else:
                record.extra[key] = copy.deepcopy(value)
        return record
