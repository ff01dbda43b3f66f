"""
aware_chat: hallucination-aware streaming chat core.

An on-device chat core that:
- Streams generated text token by token under a wall-clock timeout
- Captures per-layer activations of the finished response
- Scores the response with a hallucination classifier
- Keeps a running per-conversation confidence average
"""

from .config.base import ChatSettings, SamplingConfig, ClassifierConfig, OrchestratorConfig
from .models.chat import Message, MessageRole, Conversation, ScoreResult
from .models.classifier import HallucinationClassifier
from .activations.preprocessor import ActivationPreprocessor
from .generation.session import GenerationSession
from .generation.transformers_engine import TransformersGenerationEngine
from .inference.aggregator import ConfidenceAggregator
from .inference.orchestrator import StreamingChatOrchestrator, FragmentEvent, ScoreEvent, ErrorEvent

__version__ = "0.1.0"

__all__ = [
    "ChatSettings",
    "SamplingConfig",
    "ClassifierConfig",
    "OrchestratorConfig",
    "Message",
    "MessageRole",
    "Conversation",
    "ScoreResult",
    "HallucinationClassifier",
    "ActivationPreprocessor",
    "GenerationSession",
    "TransformersGenerationEngine",
    "ConfidenceAggregator",
    "StreamingChatOrchestrator",
    "FragmentEvent",
    "ScoreEvent",
    "ErrorEvent",
]
