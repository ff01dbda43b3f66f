"""Configuration dataclasses for aware_chat."""

from .base import (
    SamplingConfig,
    ChatSettings,
    PreprocessorConfig,
    ClassifierConfig,
    GenerationConfig,
    EngineConfig,
    OrchestratorConfig,
)

__all__ = [
    "SamplingConfig",
    "ChatSettings",
    "PreprocessorConfig",
    "ClassifierConfig",
    "GenerationConfig",
    "EngineConfig",
    "OrchestratorConfig",
]
