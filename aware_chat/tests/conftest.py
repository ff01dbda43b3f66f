"""Shared fixtures: scripted generation engines and small configs."""

import asyncio
from typing import List, Optional, Sequence

import pytest

from aware_chat.config.base import (
    ClassifierConfig,
    OrchestratorConfig,
    PreprocessorConfig,
    SamplingConfig,
)
from aware_chat.generation.engine import CancellationToken, GenerationEngine, TokenStream
from aware_chat.models.classifier import ClassifierBackend, HallucinationClassifier, StaticBackend

FEATURE_DIM = 8


class ScriptedTokenStream(TokenStream):
    """Emits a fixed list of fragments, optionally hanging or failing."""

    def __init__(
        self,
        fragments: Sequence[str],
        cancel_token: CancellationToken,
        activations=None,
        delay: float = 0.0,
        hang: bool = False,
        fail_at: Optional[int] = None,
    ):
        self.fragments = list(fragments)
        self.cancel_token = cancel_token
        self._activations = activations
        self.delay = delay
        self.hang = hang
        self.fail_at = fail_at
        self.closed = False
        self.emitted = 0

    async def __aiter__(self):
        for i, fragment in enumerate(self.fragments):
            if self.cancel_token.cancelled:
                return
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_at is not None and i == self.fail_at:
                raise RuntimeError("decoder crashed")
            self.emitted += 1
            yield fragment
        if self.hang:
            await asyncio.Event().wait()

    def activations(self):
        if self._activations is None:
            raise ValueError("No activations captured for this generation")
        return self._activations

    async def aclose(self):
        self.closed = True


class ScriptedEngine(GenerationEngine):
    """GenerationEngine returning ScriptedTokenStreams."""

    def __init__(self, fragments: Sequence[str] = (), ready: bool = True, activations=None, **stream_kwargs):
        self.fragments = list(fragments)
        self.ready = ready
        self.activations = activations if activations is not None else [[0.1, 0.2, 0.3], [0.4, 0.5]]
        self.stream_kwargs = stream_kwargs
        self.streams: List[ScriptedTokenStream] = []
        self.last_messages = None
        self.last_sampling = None

    @property
    def is_ready(self) -> bool:
        return self.ready

    def open_session(self, messages, sampling, cancel_token):
        self.last_messages = messages
        self.last_sampling = sampling
        stream = ScriptedTokenStream(
            self.fragments, cancel_token, activations=self.activations, **self.stream_kwargs
        )
        self.streams.append(stream)
        return stream


@pytest.fixture
def sampling():
    return SamplingConfig(temperature=0.0, seed=7, max_tokens=64)


@pytest.fixture
def classifier_config():
    return ClassifierConfig(feature_dim=FEATURE_DIM)


@pytest.fixture
def orchestrator_config():
    return OrchestratorConfig(
        timeout_seconds=1.0,
        preprocessor=PreprocessorConfig(feature_dim=FEATURE_DIM),
    )


@pytest.fixture
def make_classifier(classifier_config):
    def factory(probability: float = 0.2, label: Optional[int] = None):
        backend = StaticBackend.with_probability(probability, label=label)
        return HallucinationClassifier.from_backend(backend, classifier_config)

    return factory


class FunctionBackend(ClassifierBackend):
    """Backend delegating to a plain function, for unusual return shapes and crashes."""

    def __init__(self, fn):
        self.fn = fn

    def predict(self, features):
        return self.fn(features)
