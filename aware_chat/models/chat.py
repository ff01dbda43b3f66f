"""Conversation data model.

Messages are owned by the conversation that contains them. The assistant
placeholder of a turn is mutated in place as fragments arrive; the caller is
responsible for persisting it.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..errors import ConversationArchived

# Per-layer activation vectors [layers][hidden_dim] for one completed turn
ActivationBatch = Sequence[Sequence[float]]

# Fixed-length classifier input
FeatureVector = np.ndarray


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class ScoreResult:
    """Classifier verdict for one completed assistant turn."""

    probability: float  # P(hallucination)
    is_hallucination: bool

    def __post_init__(self):
        # The probability is the source of truth for positive labels
        if self.probability > 0.5 and not self.is_hallucination:
            object.__setattr__(self, "is_hallucination", True)

    @property
    def confidence(self) -> float:
        """Confidence shown to the user: 1 - P(hallucination)."""
        return 1.0 - self.probability

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "probability": self.probability,
            "is_hallucination": self.is_hallucination,
        }


@dataclass(eq=False)
class Message:
    role: MessageRole
    content: str = ""
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=datetime.now)
    hallucination_score: Optional[float] = None
    conversation: Optional["Conversation"] = field(default=None, repr=False)

    def __post_init__(self):
        self.role = MessageRole(self.role)
        if self.hallucination_score is not None:
            score = self.hallucination_score
            self.hallucination_score = None
            self.set_score(score)

    def _check_writable(self):
        if self.conversation is not None and self.conversation.archived:
            raise ConversationArchived(
                f"Conversation {self.conversation.id} is archived"
            )

    def append_text(self, text: str):
        """Append a streamed fragment to the message content."""
        self._check_writable()
        self.content += text

    def set_score(self, score: Optional[float]):
        """Set the hallucination score; only assistant messages carry one."""
        self._check_writable()
        if score is not None:
            if self.role is not MessageRole.ASSISTANT:
                raise ValueError(
                    f"Only assistant messages can be scored, got role '{self.role.value}'"
                )
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"Score must be in [0, 1], got {score}")
        self.hallucination_score = score


@dataclass(eq=False)
class Conversation:
    title: str = "New Chat"
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=datetime.now)
    messages: List[Message] = field(default_factory=list)
    archived: bool = False
    # Derived; written only by ConfidenceAggregator
    average_confidence: Optional[float] = None

    def __post_init__(self):
        for message in self.messages:
            message.conversation = self

    def append(self, message: Message) -> Message:
        if self.archived:
            raise ConversationArchived(f"Conversation {self.id} is archived")
        message.conversation = self
        self.messages.append(message)
        return message

    def archive(self):
        self.archived = True

    def sorted_messages(self) -> List[Message]:
        return sorted(self.messages, key=lambda m: m.created_at)

    def assistant_messages(self) -> List[Message]:
        return [m for m in self.sorted_messages() if m.role is MessageRole.ASSISTANT]

    def scored_messages(self) -> List[Message]:
        return [m for m in self.assistant_messages() if m.hallucination_score is not None]
