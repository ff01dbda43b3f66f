"""Reshape per-layer activations into the fixed classifier input."""

from typing import Optional

import numpy as np

from ..config.base import PreprocessorConfig
from ..models.chat import ActivationBatch, FeatureVector


class ActivationPreprocessor:
    """Flatten, truncate and zero-pad an ActivationBatch to ``feature_dim``.

    Layers are flattened row-major (layer 0 fully before layer 1). Inputs
    longer than the target are truncated to the first ``feature_dim`` values;
    shorter inputs are right-padded with 0.0. An empty batch yields an
    all-zero vector.

    Example:
        >>> pre = ActivationPreprocessor(PreprocessorConfig(feature_dim=4))
        >>> pre.preprocess([[1.0, 2.0], [3.0]])
        array([1., 2., 3., 0.], dtype=float32)
    """

    def __init__(self, config: Optional[PreprocessorConfig] = None):
        self.config = config or PreprocessorConfig()
        self.feature_dim = self.config.feature_dim

    def flatten(self, activations: ActivationBatch) -> np.ndarray:
        """Concatenate layers in order into one float32 vector."""
        layers = [np.asarray(layer, dtype=np.float32).reshape(-1) for layer in activations]
        if not layers:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(layers)

    def preprocess(self, activations: ActivationBatch) -> FeatureVector:
        flat = self.flatten(activations)

        features = np.zeros(self.feature_dim, dtype=np.float32)
        n = min(flat.shape[0], self.feature_dim)
        features[:n] = flat[:n]
        return features

    __call__ = preprocess

    def __repr__(self) -> str:
        return f"ActivationPreprocessor(feature_dim={self.feature_dim})"
