"""Strategy registry and the entrypoint that runs one strategy by key."""

from __future__ import annotations

from typing import Any, Optional

from .classifier import detect_template, strategy_key
from .config import ConversionConfig
from .progress import ProgressReporter
from .strategies import (
    ConversionStrategy,
    JournalStrategy,
    SeriesStrategy,
    StrategyContext,
    StrategyRun,
    SwipeStrategy,
    TourStrategy,
)


STRATEGIES: dict[str, type[ConversionStrategy]] = {
    "journal": JournalStrategy,
    "swipe": SwipeStrategy,
    "tour": TourStrategy,
    "series": SeriesStrategy,
}


def register_strategy(key: str, strategy: type[ConversionStrategy]) -> None:
    """Register or override a conversion strategy at runtime."""
    STRATEGIES[key] = strategy


def run_strategy(
    key: str,
    document: Any,
    config: Optional[ConversionConfig] = None,
    reporter: Optional[ProgressReporter] = None,
    context: Optional[StrategyContext] = None,
) -> StrategyRun:
    """Run the strategy registered under `key` over a legacy document."""
    strategy_cls = STRATEGIES.get(key)
    if strategy_cls is None:
        allowed = ", ".join(sorted(STRATEGIES))
        raise ValueError(f"Unknown strategy: {key!r}. Allowed values: {allowed}.")
    return strategy_cls(document, config, reporter, context).run()


def run_for_document(
    document: Any,
    config: Optional[ConversionConfig] = None,
    reporter: Optional[ProgressReporter] = None,
    context: Optional[StrategyContext] = None,
) -> StrategyRun:
    """Classify a legacy document and run the matching strategy."""
    return run_strategy(strategy_key(detect_template(document)), document, config, reporter, context)
