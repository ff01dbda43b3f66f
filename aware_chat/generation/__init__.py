"""Token generation: engine interfaces, sessions and the transformers engine."""

from .engine import CancellationToken, GenerationEngine, TokenStream
from .session import GenerationSession, SessionState, build_chat_messages
from .transformers_engine import TransformersGenerationEngine, TransformersTokenStream

__all__ = [
    "CancellationToken",
    "GenerationEngine",
    "TokenStream",
    "GenerationSession",
    "SessionState",
    "build_chat_messages",
    "TransformersGenerationEngine",
    "TransformersTokenStream",
]
