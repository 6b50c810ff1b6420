"""Portal sharing-REST client used for prefetching and enrichment."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import requests

from .config import DEFAULT_PORTAL_URL
from .errors import PortalError
from .geometry import item_extent_to_envelope, reproject_extent
from .mapstate import resolve_extent


logger = logging.getLogger(__name__)

DEFINITION_KINDS = ("map", "scene", "app")
ITEM_DATA_PATH = "/sharing/rest/content/items/{item_id}/data"
ITEM_INFO_PATH = "/sharing/rest/content/items/{item_id}"
FEATURE_QUERY = {"where": "1=1", "outFields": "*", "f": "json"}


class PortalClient:
    """
    Blocking JSON reads against a portal, with thin async wrappers.

    Every read raises `PortalError` for HTTP failures and for the `{"error": {...}}`
    payloads the sharing API returns with a 200 status.
    """

    def __init__(
        self,
        portal_url: str = DEFAULT_PORTAL_URL,
        token: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.portal_url = portal_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, enrichment: Any) -> "PortalClient":
        return cls(enrichment.portal_url, enrichment.token, enrichment.request_timeout)

    def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        query = {"f": "json", **(params or {})}
        if self.token:
            query["token"] = self.token
        logger.debug("GET %s", url)
        response = self.session.get(url, params=query, timeout=self.timeout)
        if response.status_code >= 400:
            raise PortalError(url, f"HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise PortalError(url, "Response is not JSON") from exc
        if not isinstance(payload, dict):
            raise PortalError(url, f"Expected a JSON object, got {type(payload).__name__}")
        error = payload.get("error")
        if isinstance(error, dict):
            raise PortalError(url, f"Portal error {error.get('code', '?')}: {error.get('message', 'unknown')}")
        return payload

    def item_data(self, item_id: str) -> dict[str, Any]:
        return self._get_json(self.portal_url + ITEM_DATA_PATH.format(item_id=item_id))

    def item_info(self, item_id: str) -> dict[str, Any]:
        return self._get_json(self.portal_url + ITEM_INFO_PATH.format(item_id=item_id))

    def app_data(self, app_id: str) -> dict[str, Any]:
        """Legacy application JSON (`{values, settings, ...}`) of an app item."""
        return self.item_data(app_id)

    def query_features(self, layer_url: str) -> list[dict[str, Any]]:
        payload = self._get_json(layer_url.rstrip("/") + "/query", FEATURE_QUERY)
        features = payload.get("features")
        return features if isinstance(features, list) else []

    def definition(self, kind: str, item_id: str) -> dict[str, Any]:
        """
        Item data for a map, scene or app.

        Map and scene definitions lacking an extent borrow the portal item's extent;
        the item title is copied in when the definition has none.
        """
        if kind not in DEFINITION_KINDS:
            allowed = ", ".join(DEFINITION_KINDS)
            raise ValueError(f"Unknown definition kind: {kind!r}. Allowed values: {allowed}.")
        data = self.item_data(item_id)
        if kind == "app":
            return data
        needs_extent = resolve_extent(data) is None
        if needs_extent or not data.get("title"):
            info = self.item_info(item_id)
            if needs_extent:
                envelope = item_extent_to_envelope(info.get("extent"))
                if envelope is not None:
                    data["extent"] = reproject_extent(envelope)
            if info.get("title") and not data.get("title"):
                data["title"] = info["title"]
        return data

    async def fetch_definition(self, kind: str, item_id: str) -> dict[str, Any]:
        return await asyncio.to_thread(self.definition, kind, item_id)

    async def fetch_features(self, layer_url: str) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.query_features, layer_url)

    def close(self) -> None:
        self.session.close()
