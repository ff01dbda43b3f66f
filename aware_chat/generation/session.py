"""Cancellable, single-use generation session over a GenerationEngine."""

import logging
from enum import Enum
from typing import AsyncIterator, List, Optional, Sequence

from ..config.base import GenerationConfig, SamplingConfig
from ..errors import EngineFault, EngineNotReady, SessionCancelled
from ..models.chat import ActivationBatch, Message
from .engine import CancellationToken, ChatMessage, GenerationEngine, TokenStream

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    FAILED = "failed"


def build_chat_messages(history: Sequence[Message], system_prompt: str) -> List[ChatMessage]:
    """Convert conversation history into the engine transcript format."""
    messages: List[ChatMessage] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for message in history:
        messages.append({"role": message.role.value, "content": message.content})
    return messages


class GenerationSession:
    """One generation: a lazy, finite, non-restartable fragment stream.

    The stream ends when the engine completes, when a stop sequence becomes a
    suffix of the accumulated text, or when the emitted-fragment cap is hit.
    ``activations()`` is available once the stream is exhausted.

    Example:
        >>> session = GenerationSession(engine)
        >>> async for fragment in session.open(history, "Be brief.", sampling):
        ...     print(fragment, end="")
        >>> batch = session.activations()
    """

    def __init__(self, engine: GenerationEngine, config: Optional[GenerationConfig] = None):
        self.engine = engine
        self.config = config or GenerationConfig()
        self.cancel_token = CancellationToken()

        self.state = SessionState.IDLE
        self.text = ""
        self.fragment_count = 0
        self.finish_reason: Optional[str] = None

        self._stream: Optional[TokenStream] = None
        self._released = False
        self._activations: Optional[ActivationBatch] = None
        self._activations_error: Optional[Exception] = None

    def open(
        self,
        history: Sequence[Message],
        system_prompt: str,
        sampling: SamplingConfig,
    ) -> AsyncIterator[str]:
        """Start generation and return the fragment stream.

        Raises:
            EngineNotReady: If the engine has not been loaded
            RuntimeError: If the session was already opened
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError("GenerationSession cannot be reopened")
        if not self.engine.is_ready:
            raise EngineNotReady("Generation engine is not loaded")

        messages = build_chat_messages(history, system_prompt)
        self._stream = self.engine.open_session(messages, sampling, self.cancel_token)
        self.state = SessionState.STREAMING
        return self._fragments(sampling)

    async def _fragments(self, sampling: SamplingConfig) -> AsyncIterator[str]:
        stream = self._stream
        cap = self.config.max_emitted_tokens

        try:
            try:
                async for fragment in stream:
                    if self.cancel_token.cancelled:
                        break

                    self.text += fragment
                    self.fragment_count += 1
                    yield fragment

                    if self.cancel_token.cancelled:
                        break
                    if self.fragment_count >= cap:
                        logger.warning("Reached emitted token cap (%d), stopping generation", cap)
                        self.finish_reason = "token_cap"
                        break
                    if any(self.text.endswith(stop) for stop in sampling.stop_sequences):
                        logger.debug("Stop sequence detected after %d fragments", self.fragment_count)
                        self.finish_reason = "stop_sequence"
                        break
                else:
                    self.finish_reason = "completed"
            except (EngineFault, SessionCancelled):
                self.state = SessionState.FAILED
                raise
            except Exception as e:
                self.state = SessionState.FAILED
                logger.error("Generation engine failed: %s", e)
                raise EngineFault(str(e) or type(e).__name__) from e

            if self.cancel_token.cancelled:
                self.state = SessionState.CANCELLED
                return

            try:
                self._activations = stream.activations()
            except Exception as e:
                logger.warning("Engine returned no activations: %s", e)
                self._activations_error = e
            self.state = SessionState.EXHAUSTED
        finally:
            await self._release()

    async def _release(self):
        if self._released or self._stream is None:
            return
        self._released = True
        await self._stream.aclose()

    async def cancel(self):
        """Cancel generation and release engine resources.

        No further fragments are emitted; ``activations()`` raises
        SessionCancelled afterwards.
        """
        self.cancel_token.cancel()
        if self.state in (SessionState.IDLE, SessionState.STREAMING):
            self.state = SessionState.CANCELLED
        self._activations = None
        await self._release()

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def activations(self) -> ActivationBatch:
        """Return the activation batch of the exhausted stream.

        Raises:
            SessionCancelled: If the session was cancelled
            RuntimeError: If the stream has not been exhausted
        """
        if self.cancel_token.cancelled:
            raise SessionCancelled("Generation session was cancelled")
        if self.state is not SessionState.EXHAUSTED:
            raise RuntimeError(f"Activations unavailable in state '{self.state.value}'")
        if self._activations_error is not None:
            raise self._activations_error
        return self._activations

    def __repr__(self) -> str:
        return (
            f"GenerationSession("
            f"state='{self.state.value}', "
            f"fragments={self.fragment_count}, "
            f"finish_reason={self.finish_reason!r})"
        )
