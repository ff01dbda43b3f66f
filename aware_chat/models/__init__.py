"""Model components for aware_chat."""

from .chat import Message, MessageRole, Conversation, ScoreResult
from .probe import HallucinationProbe
from .classifier import HallucinationClassifier, ClassifierBackend, ProbeBackend, StaticBackend

__all__ = [
    "Message",
    "MessageRole",
    "Conversation",
    "ScoreResult",
    "HallucinationProbe",
    "HallucinationClassifier",
    "ClassifierBackend",
    "ProbeBackend",
    "StaticBackend",
]
