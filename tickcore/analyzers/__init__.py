"""Digit analyzer plugin system.

Public API:
- Analyzer: Protocol every analyzer satisfies
- BaseAnalyzer: shared history, timer and publication machinery
- register_analyzer / create_analyzer / list_analyzers: registry

Importing this package auto-registers the built-in analyzers.
"""

from tickcore.analyzers.protocol import Analyzer, SignalCallback, Unsubscribe
from tickcore.analyzers.registry import (
    create_analyzer,
    get_analyzer_class,
    list_analyzers,
    register_analyzer,
)
from tickcore.analyzers.base import BaseAnalyzer, market_display_name

# Import built-in analyzers to trigger auto-registration
from tickcore.analyzers.heuristic import HeuristicAnalyzer
from tickcore.analyzers.frequency import FrequencyAnalyzer
from tickcore.analyzers.pattern import PatternAnalyzer
from tickcore.analyzers.hot_cold import HotColdZoneAnalyzer
from tickcore.analyzers.trend import TrendAnalyzer

__all__ = [
    "Analyzer",
    "SignalCallback",
    "Unsubscribe",
    "BaseAnalyzer",
    "market_display_name",
    "register_analyzer",
    "create_analyzer",
    "get_analyzer_class",
    "list_analyzers",
    "HeuristicAnalyzer",
    "FrequencyAnalyzer",
    "PatternAnalyzer",
    "HotColdZoneAnalyzer",
    "TrendAnalyzer",
]
