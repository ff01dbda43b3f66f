"""Per-conversation confidence aggregation and analytics."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from ..models.chat import Conversation

logger = logging.getLogger(__name__)


def confidence_percent(score: float) -> int:
    """Confidence shown to the user for a hallucination probability."""
    return int((1.0 - score) * 100)


@dataclass
class ConfidenceBreakdown:
    """Count of scored responses per confidence band."""

    high: int = 0
    medium: int = 0
    low: int = 0

    @property
    def total(self) -> int:
        return self.high + self.medium + self.low

    def to_dict(self) -> Dict[str, int]:
        return {"high": self.high, "medium": self.medium, "low": self.low}


@dataclass
class ConfidencePoint:
    index: int
    confidence: float
    created_at: datetime


class ConfidenceAggregator:
    """Maintain ``Conversation.average_confidence``.

    The average is recomputed from scratch over every scored assistant
    message, so repeated updates with unchanged scores are idempotent.

    Example:
        >>> aggregator = ConfidenceAggregator()
        >>> message.set_score(0.6)
        >>> aggregator.update(conversation, 0.6)
    """

    def __init__(self, high_threshold: float = 0.7, low_threshold: float = 0.4):
        if not 0.0 <= low_threshold <= high_threshold <= 1.0:
            raise ValueError(
                f"Thresholds must satisfy 0 <= low <= high <= 1, got {low_threshold}, {high_threshold}"
            )
        self.high_threshold = high_threshold
        self.low_threshold = low_threshold

    def update(self, conversation: Conversation, new_score: Optional[float] = None) -> Optional[float]:
        """Recompute the conversation average.

        ``new_score`` must already be set on its message; it is accepted for
        call-site symmetry and logging only.
        """
        scores = [m.hallucination_score for m in conversation.scored_messages()]
        average = sum(scores) / len(scores) if scores else None
        conversation.average_confidence = average

        if new_score is not None:
            logger.debug(
                "Conversation %s: new score %.3f, average %s over %d responses",
                conversation.id, new_score, average, len(scores),
            )
        return average

    def breakdown(self, conversation: Conversation) -> ConfidenceBreakdown:
        result = ConfidenceBreakdown()
        for message in conversation.scored_messages():
            confidence = 1.0 - message.hallucination_score
            if confidence >= self.high_threshold:
                result.high += 1
            elif confidence >= self.low_threshold:
                result.medium += 1
            else:
                result.low += 1
        return result

    def trend(self, conversation: Conversation) -> List[ConfidencePoint]:
        """Confidence of each scored response in chronological order."""
        return [
            ConfidencePoint(
                index=i,
                confidence=1.0 - message.hallucination_score,
                created_at=message.created_at,
            )
            for i, message in enumerate(conversation.scored_messages())
        ]

    def __repr__(self) -> str:
        return (
            f"ConfidenceAggregator("
            f"high={self.high_threshold}, "
            f"low={self.low_threshold})"
        )
