"""Conversion error taxonomy and shared recoverable-exception helpers."""

from __future__ import annotations

import asyncio

import requests


CANCELLED_MESSAGE = "Conversion cancelled by user intervention"


class ConversionError(Exception):
    """Base class for fatal conversion failures."""


class ConversionCancelled(ConversionError):
    """Raised when the caller-supplied cancellation check trips."""

    def __init__(self, message: str = CANCELLED_MESSAGE):
        super().__init__(message)


class GraphConstructionError(ConversionError, ValueError):
    """Unrecoverable builder failure (id collision, missing root)."""


class StructuralIntegrityError(ConversionError):
    """A container or comparison node references children that no longer exist."""

    def __init__(self, node_id: str, missing: list[str]):
        self.node_id = node_id
        self.missing = list(missing)
        super().__init__(
            f"Node {node_id!r} references missing content: {', '.join(self.missing) or '?'}"
        )


class PortalError(ConversionError):
    """The portal answered with an HTTP error or an error payload."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"{message} ({url})")


def enrichment_exceptions() -> tuple[type[BaseException], ...]:
    """Return the exceptions one enrichment may raise without failing the conversion."""
    return (
        PortalError,
        requests.RequestException,
        asyncio.TimeoutError,
        ValueError,
        TypeError,
        KeyError,
    )
