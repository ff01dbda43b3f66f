"""Streaming chat orchestration.

One turn races the token-forwarding step against a wall-clock timer; the
first to finish decides the outcome and the other is cancelled. A turn that
streams to completion is scored from the session's activations, and the
score (or ``None`` when the classifier cannot score) is delivered as a single
terminal event after every fragment.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Sequence, Union

from ..activations.preprocessor import ActivationPreprocessor
from ..config.base import ChatSettings, OrchestratorConfig, SamplingConfig
from ..errors import (
    AwareChatError,
    EngineFault,
    GenerationTimeout,
    ModelOutputUnrecognized,
    ModelUnavailable,
    SessionCancelled,
)
from ..generation.engine import GenerationEngine
from ..generation.session import GenerationSession
from ..models.chat import Conversation, Message, MessageRole, ScoreResult
from ..models.classifier import HallucinationClassifier
from .aggregator import ConfidenceAggregator

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    SCORING = "scoring"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FragmentEvent:
    """One generated text fragment, in generation order."""

    text: str


@dataclass(frozen=True)
class ScoreEvent:
    """Terminal event of a completed turn. ``score`` is None when unscored."""

    score: Optional[ScoreResult]
    text: str = ""


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal event of a timed-out or failed turn."""

    error: AwareChatError
    partial_text: str

    @property
    def message(self) -> str:
        return str(self.error)


TurnEvent = Union[FragmentEvent, ScoreEvent, ErrorEvent]


class ChatTurn:
    """A single conversational turn, consumed as an async stream of events.

    Iterating the turn drives it through
    ``IDLE -> STREAMING -> SCORING -> COMPLETED`` (or ``TIMED_OUT`` /
    ``FAILED``). A turn can be iterated only once.
    """

    def __init__(
        self,
        orchestrator: "StreamingChatOrchestrator",
        session: GenerationSession,
        fragments: AsyncIterator[str],
    ):
        self.orchestrator = orchestrator
        self.session = session
        self._fragments = fragments
        self._started = False

        self.state = TurnState.IDLE
        self.text = ""
        self.score: Optional[ScoreResult] = None
        self.error: Optional[AwareChatError] = None

    def __aiter__(self) -> AsyncIterator[TurnEvent]:
        if self._started:
            raise RuntimeError("ChatTurn cannot be iterated twice")
        self._started = True
        return self._run()

    async def _run(self) -> AsyncIterator[TurnEvent]:
        stats = self.orchestrator._stats
        timeout = self.orchestrator.config.timeout_seconds

        self.state = TurnState.STREAMING
        stats["turns_started"] += 1
        timer = asyncio.ensure_future(asyncio.sleep(timeout))
        next_fragment: Optional[asyncio.Future] = None

        try:
            while True:
                next_fragment = asyncio.ensure_future(self._fragments.__anext__())
                done, _ = await asyncio.wait(
                    {next_fragment, timer}, return_when=asyncio.FIRST_COMPLETED
                )

                if next_fragment not in done:
                    await self._discard(next_fragment)
                    await self.session.cancel()
                    self.state = TurnState.TIMED_OUT
                    self.error = GenerationTimeout(timeout)
                    stats["timed_out"] += 1
                    logger.warning(
                        "Generation timed out after %gs with %d fragments emitted",
                        timeout, self.session.fragment_count,
                    )
                    yield ErrorEvent(error=self.error, partial_text=self.text)
                    return

                try:
                    fragment = next_fragment.result()
                except StopAsyncIteration:
                    break
                except EngineFault as e:
                    self.state = TurnState.FAILED
                    self.error = e
                    stats["failed"] += 1
                    yield ErrorEvent(error=e, partial_text=self.text)
                    return

                self.text += fragment
                yield FragmentEvent(text=fragment)

            timer.cancel()
            if self.session.cancelled:
                self.state = TurnState.CANCELLED
                stats["cancelled"] += 1
                logger.info("Turn cancelled after %d fragments", self.session.fragment_count)
                return

            self.state = TurnState.SCORING
            self.score = await self.orchestrator._score(self.session)

            self.state = TurnState.COMPLETED
            stats["completed"] += 1
            stats["scored" if self.score is not None else "unscored"] += 1
            yield ScoreEvent(score=self.score)
        finally:
            timer.cancel()
            if next_fragment is not None and not next_fragment.done():
                await self._discard(next_fragment)
            if self.state in (TurnState.STREAMING, TurnState.SCORING):
                # Consumer stopped iterating or the awaiting task was cancelled
                self.state = TurnState.CANCELLED
                stats["cancelled"] += 1
                await self.session.cancel()
            await self._fragments.aclose()

    @staticmethod
    async def _discard(task: asyncio.Future):
        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Discarded fragment after cancellation: %r", task.exception())

    async def cancel(self):
        """Cancel the turn's generation session from outside the event stream."""
        await self.session.cancel()

    def __repr__(self) -> str:
        return (
            f"ChatTurn("
            f"state='{self.state.value}', "
            f"chars={len(self.text)}, "
            f"score={self.score})"
        )


class StreamingChatOrchestrator:
    """Drive generation, timeout, scoring and aggregation for chat turns.

    Combines:
    - GenerationSession: cancellable fragment stream from the engine
    - ActivationPreprocessor: fixed-size feature vector from activations
    - HallucinationClassifier: P(hallucination) for the finished response
    - ConfidenceAggregator: running per-conversation average

    Turns for the same conversation must run sequentially.

    Example:
        >>> orchestrator = StreamingChatOrchestrator(engine, classifier)
        >>> async for event in orchestrator.respond(conversation, ChatSettings()):
        ...     if isinstance(event, FragmentEvent):
        ...         print(event.text, end="")
    """

    def __init__(
        self,
        engine: GenerationEngine,
        classifier: HallucinationClassifier,
        preprocessor: Optional[ActivationPreprocessor] = None,
        aggregator: Optional[ConfidenceAggregator] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.engine = engine
        self.classifier = classifier
        self.config = config or OrchestratorConfig()
        self.preprocessor = preprocessor or ActivationPreprocessor(self.config.preprocessor)
        self.aggregator = aggregator or ConfidenceAggregator()

        if self.preprocessor.feature_dim != self.classifier.config.feature_dim:
            raise ValueError(
                f"Preprocessor produces {self.preprocessor.feature_dim} features, "
                f"classifier expects {self.classifier.config.feature_dim}"
            )

        self._stats: Dict[str, int] = {}
        self.reset_statistics()

    def converse(
        self,
        history: Sequence[Message],
        system_prompt: str,
        sampling: SamplingConfig,
    ) -> ChatTurn:
        """Open a generation session and return the turn's event stream.

        Raises:
            EngineNotReady: If the engine has not been loaded; no turn starts
        """
        session = GenerationSession(self.engine, self.config.generation)
        fragments = session.open(history, system_prompt, sampling)
        return ChatTurn(self, session, fragments)

    async def _score(self, session: GenerationSession) -> Optional[ScoreResult]:
        try:
            activations = session.activations()
        except (SessionCancelled, RuntimeError, ValueError) as e:
            logger.warning("Activations unavailable, response left unscored: %s", e)
            return None

        try:
            features = self.preprocessor.preprocess(activations)
        except (TypeError, ValueError) as e:
            logger.warning("Malformed activations, response left unscored: %s", e)
            return None

        try:
            return await asyncio.to_thread(self.classifier.score, features)
        except (ModelUnavailable, ModelOutputUnrecognized) as e:
            logger.warning("Classification failed, response left unscored: %s", e)
            return None

    async def respond(
        self,
        conversation: Conversation,
        settings: ChatSettings,
        rng: Optional[random.Random] = None,
    ) -> AsyncIterator[TurnEvent]:
        """Run one assistant turn against a conversation.

        Appends an assistant placeholder, applies every event to it before
        re-yielding the event, and updates the conversation average when the
        response is scored. Errors are appended to the response text.
        """
        history = [
            m for m in conversation.sorted_messages()
            if m.role is not MessageRole.ASSISTANT or m.content
        ]
        turn = self.converse(history, settings.system_prompt, settings.sampling_config(rng))

        assistant = conversation.append(Message(role=MessageRole.ASSISTANT))
        events = turn.__aiter__()
        try:
            async for event in events:
                if isinstance(event, FragmentEvent):
                    assistant.append_text(event.text)
                elif isinstance(event, ScoreEvent):
                    if event.score is not None:
                        assistant.set_score(event.score.probability)
                        self.aggregator.update(conversation, event.score.probability)
                elif isinstance(event, ErrorEvent):
                    assistant.append_text(f"\n[Error: {event.message}]")
                yield event
        finally:
            # Cancels the session when the caller stops consuming early
            await events.aclose()

    def get_statistics(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset_statistics(self):
        self._stats = {
            "turns_started": 0,
            "completed": 0,
            "scored": 0,
            "unscored": 0,
            "timed_out": 0,
            "failed": 0,
            "cancelled": 0,
        }

    def __repr__(self) -> str:
        return (
            f"StreamingChatOrchestrator("
            f"engine={type(self.engine).__name__}, "
            f"classifier={self.classifier!r}, "
            f"timeout={self.config.timeout_seconds}s)"
        )
