"""Public programmatic API for classic story conversion."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

from .artifacts import ConversionResult
from .config import ConversionConfig
from .enrichment import DefinitionFetcher
from .orchestrator import ConversionOrchestrator
from .portal import PortalClient
from .progress import CancelCheck, ProgressCallback


def _default_fetcher(config: ConversionConfig) -> Optional[PortalClient]:
    enrichment = config.enrichment
    if enrichment.enrich_maps or enrichment.enrich_scenes:
        return PortalClient.from_config(enrichment)
    return None


async def convert_document_async(
    document: dict[str, Any],
    config: Optional[ConversionConfig] = None,
    *,
    fetcher: Optional[DefinitionFetcher] = None,
    progress: Optional[ProgressCallback] = None,
    is_cancelled: Optional[CancelCheck] = None,
    item_info: Optional[dict[str, Any]] = None,
) -> ConversionResult:
    """
    Convert a legacy document inside a running event loop.

    When no fetcher is given, a `PortalClient` is created from the config unless both
    enrichment toggles are off (see `ConversionConfig.offline`).
    """
    config = config or ConversionConfig()
    owned = None
    if fetcher is None:
        fetcher = owned = _default_fetcher(config)
    orchestrator = ConversionOrchestrator(config, fetcher, progress, is_cancelled)
    try:
        return await orchestrator.convert(document, item_info=item_info)
    finally:
        if owned is not None:
            owned.close()


def convert_document(
    document: dict[str, Any],
    config: Optional[ConversionConfig] = None,
    **kwargs: Any,
) -> ConversionResult:
    """Synchronous wrapper around `convert_document_async`."""
    return asyncio.run(convert_document_async(document, config, **kwargs))


def convert_file(
    input_path: Path,
    config: Optional[ConversionConfig] = None,
    **kwargs: Any,
) -> ConversionResult:
    """Convert a legacy document stored as JSON (either the bare document or `{"data": ...}`)."""
    try:
        payload = json.loads(Path(input_path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid classic document JSON at {input_path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Invalid classic document at {input_path}: expected a JSON object.")
    if "values" not in payload and isinstance(payload.get("data"), dict):
        if isinstance(payload.get("item"), dict):
            kwargs.setdefault("item_info", payload["item"])
        payload = payload["data"]
    return convert_document(payload, config, **kwargs)
