"""Per-template conversion strategies."""

from __future__ import annotations

from .base import (
    ConversionStrategy,
    SeriesSettings,
    StrategyContext,
    StrategyOutput,
    StrategyRun,
)
from .journal import JournalStrategy
from .series import SeriesStrategy
from .swipe import SwipeStrategy, align_compare_panes, build_inline_compare
from .tour import TourStrategy


__all__ = [
    "ConversionStrategy",
    "JournalStrategy",
    "SeriesSettings",
    "SeriesStrategy",
    "StrategyContext",
    "StrategyOutput",
    "StrategyRun",
    "SwipeStrategy",
    "TourStrategy",
    "align_compare_panes",
    "build_inline_compare",
]
