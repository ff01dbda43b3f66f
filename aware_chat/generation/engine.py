"""Capability interfaces for generation engines.

Any inference runtime can sit behind ``GenerationEngine``: it only has to
turn a chat transcript into an async stream of text fragments and, once the
stream has ended, report the activations of the final forward pass.
"""

import threading
from typing import AsyncIterator, Dict, List

from ..config.base import SamplingConfig
from ..models.chat import ActivationBatch

# {"role": "user" | "assistant" | "system", "content": str}
ChatMessage = Dict[str, str]


class CancellationToken:
    """Thread-safe cancellation flag shared between a session and its engine.

    Engines running forward passes in worker threads check it between steps.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


class TokenStream:
    """Async stream of text fragments for one generation."""

    def __aiter__(self) -> AsyncIterator[str]:
        raise NotImplementedError

    def activations(self) -> ActivationBatch:
        """Per-layer activations of the completed generation."""
        raise NotImplementedError

    async def aclose(self):
        """Release engine resources held by this stream."""


class GenerationEngine:
    """Capability interface for token-generation engines.

    Loading and unloading are managed outside the chat core; ``is_ready``
    reports whether that step has completed.
    """

    @property
    def is_ready(self) -> bool:
        raise NotImplementedError

    def open_session(
        self,
        messages: List[ChatMessage],
        sampling: SamplingConfig,
        cancel_token: CancellationToken,
    ) -> TokenStream:
        raise NotImplementedError
