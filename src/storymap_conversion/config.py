"""Configuration models for classic story conversion runs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json
from pathlib import Path
from typing import Any, Optional


SUPPORTED_THEME_IDS = ("auto", "summit", "obsidian")
SUPPORTED_HTML_ENGINES = ("dom", "regex")
DEFAULT_PORTAL_URL = "https://www.arcgis.com"


def _serialize_paths(payload: Any) -> Any:
    if isinstance(payload, Path):
        return str(payload)
    if isinstance(payload, list):
        return [_serialize_paths(v) for v in payload]
    if isinstance(payload, dict):
        return {k: _serialize_paths(v) for k, v in payload.items()}
    return payload


def _validate_choice(field_name: str, value: str, allowed: tuple[str, ...]) -> None:
    if value not in allowed:
        allowed_str = ", ".join(allowed)
        raise ValueError(f"Invalid `{field_name}`: {value!r}. Allowed values: {allowed_str}.")


@dataclass
class EnrichmentConfig:
    """Fetch-and-fill options for placeholder map and scene resources."""

    enrich_maps: bool = True
    enrich_scenes: bool = True
    portal_url: str = DEFAULT_PORTAL_URL
    token: Optional[str] = None
    request_timeout: float = 30.0  # [s] per HTTP request.
    max_concurrency: int = 8  # enrichments in flight at once.

    def __post_init__(self) -> None:
        if not self.portal_url.startswith(("http://", "https://")):
            raise ValueError("`portal_url` must be an http(s) URL.")
        self.portal_url = self.portal_url.rstrip("/")
        if self.request_timeout <= 0:
            raise ValueError("`request_timeout` must be > 0.")
        if self.max_concurrency < 1:
            raise ValueError("`max_concurrency` must be >= 1.")


@dataclass
class ConversionConfig:
    """Top-level options for one conversion run."""

    theme_id: str = "auto"
    html_engine: str = "dom"
    emit_metadata: bool = True
    enrichment: EnrichmentConfig = field(default_factory=EnrichmentConfig)
    output_dir: Path = Path("outputs/storymap_conversion")

    def __post_init__(self) -> None:
        _validate_choice("theme_id", self.theme_id, SUPPORTED_THEME_IDS)
        _validate_choice("html_engine", self.html_engine, SUPPORTED_HTML_ENGINES)

    @classmethod
    def offline(cls, **overrides: Any) -> "ConversionConfig":
        """Preset that never touches the network (placeholders stay minimal)."""
        cfg = cls(**overrides)
        cfg.enrichment.enrich_maps = False
        cfg.enrichment.enrich_scenes = False
        return cfg

    def to_dict(self) -> dict[str, Any]:
        raw = asdict(self)
        return _serialize_paths(raw)

    def to_json(self, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(self.to_dict(), indent=2))

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ConversionConfig":
        raw = dict(payload)
        enrichment_raw = dict(raw.pop("enrichment", {}) or {})
        # Earlier payloads carried an inverted flag.
        if "suppress_metadata" in raw:
            raw.setdefault("emit_metadata", not bool(raw.pop("suppress_metadata")))
        if "output_dir" in raw:
            raw["output_dir"] = Path(raw["output_dir"])
        return cls(enrichment=EnrichmentConfig(**enrichment_raw), **raw)

    @classmethod
    def from_json(cls, input_path: Path) -> "ConversionConfig":
        payload = json.loads(input_path.read_text())
        return cls.from_dict(payload)
