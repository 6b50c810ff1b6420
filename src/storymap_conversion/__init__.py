"""Convert classic story application documents into story graph documents."""

from .api import convert_document, convert_document_async, convert_file
from .artifacts import ConversionResult, write_conversion_outputs
from .builder import GraphBuilder
from .classifier import detect_template, strategy_key
from .config import ConversionConfig, EnrichmentConfig
from .document import Action, Node, Resource, StoryDocument
from .enrichment import enrich_document, find_placeholder_resources
from .errors import (
    ConversionCancelled,
    ConversionError,
    GraphConstructionError,
    PortalError,
    StructuralIntegrityError,
)
from .orchestrator import ConversionOrchestrator
from .pipeline import STRATEGIES, register_strategy, run_for_document, run_strategy
from .portal import PortalClient
from .progress import ProgressEvent, ProgressReporter
from .schema import parse_storymap_document, validate_storymap_file
from .strategies import SeriesSettings, StrategyContext
from .validation import validate_document

__all__ = [
    "Action",
    "ConversionCancelled",
    "ConversionConfig",
    "ConversionError",
    "ConversionOrchestrator",
    "ConversionResult",
    "EnrichmentConfig",
    "GraphBuilder",
    "GraphConstructionError",
    "Node",
    "PortalClient",
    "PortalError",
    "ProgressEvent",
    "ProgressReporter",
    "Resource",
    "STRATEGIES",
    "SeriesSettings",
    "StoryDocument",
    "StrategyContext",
    "StructuralIntegrityError",
    "convert_document",
    "convert_document_async",
    "convert_file",
    "detect_template",
    "enrich_document",
    "find_placeholder_resources",
    "parse_storymap_document",
    "register_strategy",
    "run_for_document",
    "run_strategy",
    "strategy_key",
    "validate_document",
    "validate_storymap_file",
    "write_conversion_outputs",
]
