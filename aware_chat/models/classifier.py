"""Hallucination classifier over preprocessed activation features.

The classifier wraps an opaque scoring backend. Backends return named
outputs, much like a compiled inference artifact does; the classifier is
responsible for turning whatever shape the probability comes in into a
ScoreResult, and for refusing to guess when it cannot.
"""

import logging
import math
import numbers
from typing import Any, Dict, Mapping, Optional

import numpy as np
import torch

from ..config.base import ClassifierConfig
from ..errors import ModelOutputUnrecognized, ModelUnavailable
from .chat import FeatureVector, ScoreResult
from .probe import HallucinationProbe

logger = logging.getLogger(__name__)


class ClassifierBackend:
    """Capability interface for scoring backends."""

    def predict(self, features: FeatureVector) -> Any:
        """Run inference on a rank-1 feature vector.

        Returns named outputs, or a bare probability scalar or vector.
        """
        raise NotImplementedError


class ProbeBackend(ClassifierBackend):
    """Backend running a HallucinationProbe with torch."""

    def __init__(self, probe: HallucinationProbe, device: str = "cpu"):
        self.device = device
        self.probe = probe.to(device)
        self.probe.eval()

    @classmethod
    def from_pretrained(cls, path: str, config: ClassifierConfig) -> "ProbeBackend":
        probe = HallucinationProbe.from_pretrained(path, feature_dim=config.feature_dim)
        return cls(probe, device=config.device)

    def predict(self, features: FeatureVector) -> Dict[str, Any]:
        x = torch.as_tensor(np.asarray(features, dtype=np.float32), device=self.device)
        output = self.probe.predict(x)
        return {
            "hallucination_probability": output.probabilities[0].cpu().numpy(),
            "label": int(output.labels[0].item()),
        }

    def __repr__(self) -> str:
        return f"ProbeBackend(probe={self.probe!r}, device='{self.device}')"


class StaticBackend(ClassifierBackend):
    """Backend returning fixed outputs, for testing without a real artifact."""

    def __init__(self, outputs: Mapping[str, Any]):
        self.outputs = dict(outputs)
        self.calls = 0

    @classmethod
    def with_probability(cls, probability: float, label: Optional[int] = None) -> "StaticBackend":
        outputs: Dict[str, Any] = {"hallucination_probability": probability}
        if label is not None:
            outputs["label"] = label
        return cls(outputs)

    def predict(self, features: FeatureVector) -> Dict[str, Any]:
        self.calls += 1
        return dict(self.outputs)


def _as_probability(value: Any, hallucination_class: int) -> Optional[float]:
    """Interpret one backend output as P(hallucination), or None."""
    if isinstance(value, torch.Tensor):
        value = value.detach().cpu().numpy()

    if isinstance(value, Mapping):
        for key in (hallucination_class, str(hallucination_class)):
            if key in value:
                return _as_probability(value[key], hallucination_class)
        return None

    if isinstance(value, bool):
        return None

    if isinstance(value, numbers.Real):
        return float(value)

    if isinstance(value, (np.ndarray, list, tuple)):
        try:
            flat = np.asarray(value, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError):
            return None
        if flat.size >= 2:
            return float(flat[hallucination_class])
        if flat.size == 1:
            return float(flat[0])

    return None


def _as_label(value: Any) -> Optional[int]:
    if isinstance(value, torch.Tensor):
        value = value.detach().cpu().numpy()

    if isinstance(value, str):
        return int(value) if value.strip().lstrip("-").isdigit() else None
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, (np.ndarray, list, tuple)):
        flat = np.asarray(value).reshape(-1)
        if flat.size > 0:
            return _as_label(flat[0].item())
    return None


class HallucinationClassifier:
    """Score feature vectors for hallucination.

    Loading happens once, at construction. If the artifact is missing or
    malformed the classifier stays unloaded and every ``score`` call raises
    ModelUnavailable.

    Example:
        >>> classifier = HallucinationClassifier(ClassifierConfig(model_path="probe.pt"))
        >>> result = classifier.score(features)
        >>> print(f"P(hallucination)={result.probability:.2f}")
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        backend: Optional[ClassifierBackend] = None,
    ):
        self.config = config or ClassifierConfig()
        self.backend = backend if backend is not None else self._load_backend()

    def _load_backend(self) -> Optional[ClassifierBackend]:
        path = self.config.model_path
        if not path:
            logger.warning("No classifier artifact configured; responses will be unscored")
            return None

        try:
            backend = ProbeBackend.from_pretrained(path, self.config)
        except FileNotFoundError:
            logger.warning("Classifier artifact not found: %s", path)
            return None
        except Exception as e:
            logger.warning("Failed to load classifier artifact %s: %s", path, e)
            return None

        logger.info(
            "Loaded hallucination classifier from %s (%d parameters)",
            path, backend.probe.get_num_parameters(),
        )
        return backend

    @classmethod
    def from_backend(
        cls,
        backend: ClassifierBackend,
        config: Optional[ClassifierConfig] = None,
    ) -> "HallucinationClassifier":
        return cls(config=config, backend=backend)

    @property
    def is_loaded(self) -> bool:
        return self.backend is not None

    def score(self, features: FeatureVector) -> ScoreResult:
        """Classify one feature vector.

        Raises:
            ModelUnavailable: If no backend is loaded or the backend fails
            ModelOutputUnrecognized: If the backend exposes no usable probability
            ValueError: If the feature vector has the wrong length
        """
        if self.backend is None:
            raise ModelUnavailable("Hallucination classifier is not loaded")

        features = np.asarray(features, dtype=np.float32)
        if features.ndim != 1 or features.shape[0] != self.config.feature_dim:
            raise ValueError(
                f"Expected feature vector of length {self.config.feature_dim}, "
                f"got shape {features.shape}"
            )

        try:
            outputs = self.backend.predict(features)
        except Exception as e:
            raise ModelUnavailable(f"Classifier backend failed: {e}") from e

        if isinstance(outputs, Mapping):
            probability = self._extract_probability(outputs)
            label = self._extract_label(outputs)
        else:
            # Bare scalar or probability vector
            probability = self._check_probability(
                "output", _as_probability(outputs, self.config.hallucination_class)
            )
            label = None

        is_hallucination = (
            probability > self.config.threshold
            or label == self.config.hallucination_class
        )
        return ScoreResult(probability=probability, is_hallucination=is_hallucination)

    def _extract_probability(self, outputs: Mapping[str, Any]) -> float:
        for name in self.config.probability_output_names:
            if name not in outputs:
                continue
            probability = _as_probability(outputs[name], self.config.hallucination_class)
            if probability is None:
                continue
            return self._check_probability(name, probability)

        raise ModelOutputUnrecognized(
            f"No recognizable probability output among {sorted(map(str, outputs))}"
        )

    @staticmethod
    def _check_probability(name: str, probability: Optional[float]) -> float:
        if probability is None:
            raise ModelOutputUnrecognized(f"Output '{name}' has no recognizable probability")
        if not math.isfinite(probability) or not 0.0 <= probability <= 1.0:
            raise ModelOutputUnrecognized(
                f"Output '{name}' is not a probability: {probability}"
            )
        return probability

    def _extract_label(self, outputs: Mapping[str, Any]) -> Optional[int]:
        for name in self.config.label_output_names:
            if name in outputs:
                label = _as_label(outputs[name])
                if label is not None:
                    return label
        return None

    def __repr__(self) -> str:
        return (
            f"HallucinationClassifier("
            f"backend={type(self.backend).__name__ if self.backend else None}, "
            f"threshold={self.config.threshold})"
        )
