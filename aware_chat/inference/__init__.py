"""Turn orchestration and confidence aggregation."""

from .aggregator import ConfidenceAggregator, ConfidenceBreakdown, ConfidencePoint, confidence_percent
from .orchestrator import (
    StreamingChatOrchestrator,
    ChatTurn,
    TurnState,
    FragmentEvent,
    ScoreEvent,
    ErrorEvent,
)

__all__ = [
    "ConfidenceAggregator",
    "ConfidenceBreakdown",
    "ConfidencePoint",
    "confidence_percent",
    "StreamingChatOrchestrator",
    "ChatTurn",
    "TurnState",
    "FragmentEvent",
    "ScoreEvent",
    "ErrorEvent",
]
