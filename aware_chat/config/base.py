"""Configuration dataclasses for the aware_chat components."""

import random
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

DEFAULT_STOP_SEQUENCES: FrozenSet[str] = frozenset({"<|im_end|>", "\n\n\n"})

# Seeds drawn per turn when ChatSettings.use_random_seed is set
RANDOM_SEED_RANGE = (0, 100000)


@dataclass(frozen=True)
class SamplingConfig:
    """Sampling parameters for a single turn.

    Immutable; a fresh instance is supplied with every call.
    """

    temperature: float = 0.7
    seed: int = 42
    max_tokens: int = 1000
    stop_sequences: FrozenSet[str] = DEFAULT_STOP_SEQUENCES

    def __post_init__(self):
        if not 0.0 <= self.temperature <= 1.0:
            raise ValueError(f"temperature must be in [0, 1], got {self.temperature}")
        if self.seed < 0:
            raise ValueError(f"seed must be unsigned, got {self.seed}")
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        # Accept any iterable of strings but store a frozenset
        object.__setattr__(self, "stop_sequences", frozenset(self.stop_sequences))
        if any(not s for s in self.stop_sequences):
            raise ValueError("stop_sequences must not contain empty strings")


@dataclass(frozen=True)
class ChatSettings:
    """Per-app chat settings, passed explicitly into every turn.

    Resolves to a fresh SamplingConfig per turn; with ``use_random_seed``
    each turn draws its own seed.
    """

    system_prompt: str = "You are a helpful assistant."
    temperature: float = 0.7
    seed: int = 42
    use_random_seed: bool = True
    max_tokens: int = 1000
    stop_sequences: FrozenSet[str] = DEFAULT_STOP_SEQUENCES

    def sampling_config(self, rng: Optional[random.Random] = None) -> SamplingConfig:
        """Build the sampling config for the next turn."""
        seed = self.seed
        if self.use_random_seed:
            rng = rng or random.Random()
            seed = rng.randint(*RANDOM_SEED_RANGE)

        return SamplingConfig(
            temperature=self.temperature,
            seed=seed,
            max_tokens=self.max_tokens,
            stop_sequences=self.stop_sequences,
        )


@dataclass
class PreprocessorConfig:
    """Configuration for the activation preprocessor."""

    # Fixed input width of the hallucination classifier
    feature_dim: int = 2204

    def __post_init__(self):
        if self.feature_dim <= 0:
            raise ValueError(f"feature_dim must be positive, got {self.feature_dim}")


@dataclass
class ClassifierConfig:
    """Configuration for the hallucination classifier.

    The backend exposes named outputs; the first recognizable entry in
    ``probability_output_names`` is used as P(hallucination).
    """

    # Saved probe state dict (None = no artifact, classifier stays unloaded)
    model_path: Optional[str] = None
    feature_dim: int = 2204

    # Decision rule
    threshold: float = 0.5
    hallucination_class: int = 1

    # Output lookup order
    probability_output_names: Tuple[str, ...] = (
        "hallucination_probability",
        "probability",
        "probabilities",
        "output_probability",
        "confidence",
        "output",
    )
    label_output_names: Tuple[str, ...] = (
        "label",
        "classLabel",
        "output_label",
        "prediction",
        "class",
    )

    device: str = "cpu"

    def __post_init__(self):
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be in [0, 1], got {self.threshold}")
        if self.feature_dim <= 0:
            raise ValueError(f"feature_dim must be positive, got {self.feature_dim}")


@dataclass
class GenerationConfig:
    """Configuration for generation sessions."""

    # Safety cap on emitted fragments, independent of SamplingConfig.max_tokens
    max_emitted_tokens: int = 1000

    def __post_init__(self):
        if self.max_emitted_tokens <= 0:
            raise ValueError(
                f"max_emitted_tokens must be positive, got {self.max_emitted_tokens}"
            )


@dataclass
class EngineConfig:
    """Configuration for the transformers-backed generation engine."""

    model_path: str = "LiquidAI/LFM2-1.2B"

    # Layer configuration
    layers_to_capture: Optional[List[int]] = None  # None = all layers
    hook_point: str = "mlp_output"  # "mlp_output", "post_attention", "pre_mlp", "hidden_states"

    device: Optional[str] = None  # None = cuda when available
    torch_dtype: str = "float32"

    # Prompt + generated tokens are truncated to this window
    max_context_tokens: int = 2048


@dataclass
class OrchestratorConfig:
    """Configuration for the streaming chat orchestrator."""

    timeout_seconds: float = 60.0
    preprocessor: PreprocessorConfig = field(default_factory=PreprocessorConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {self.timeout_seconds}")
