"""Linear hallucination probe over preprocessed activation features.

The probe is the default classifier backend network: a single linear layer
over the fixed-length feature vector followed by a 2-way softmax
(index 0 = grounded, index 1 = hallucination).
"""

import torch
import torch.nn as nn
from dataclasses import dataclass
from typing import Optional


@dataclass
class ProbeOutput:
    """Output from the hallucination probe."""

    logits: torch.Tensor  # [batch, 2]
    probabilities: torch.Tensor  # Softmax over classes [batch, 2]
    labels: torch.Tensor  # Argmax class [batch]


class HallucinationProbe(nn.Module):
    """Linear probe: p(y|x) = softmax(W^T * x + b).

    Example:
        >>> probe = HallucinationProbe(feature_dim=2204)
        >>> out = probe.predict(torch.zeros(1, 2204))
        >>> out.probabilities[0, 1]  # P(hallucination)
    """

    NUM_CLASSES = 2

    def __init__(self, feature_dim: int = 2204):
        super().__init__()
        self.feature_dim = feature_dim
        self.linear = nn.Linear(feature_dim, self.NUM_CLASSES, bias=True)

        nn.init.xavier_uniform_(self.linear.weight)
        nn.init.zeros_(self.linear.bias)

    def forward(self, features: torch.Tensor) -> torch.Tensor:
        """Compute class logits.

        Args:
            features: [batch, feature_dim] or [feature_dim]

        Returns:
            logits: [batch, 2]
        """
        if features.dim() == 1:
            features = features.unsqueeze(0)
        return self.linear(features)

    def predict(self, features: torch.Tensor) -> ProbeOutput:
        with torch.no_grad():
            logits = self.forward(features)
            probs = torch.softmax(logits, dim=-1)
        return ProbeOutput(
            logits=logits,
            probabilities=probs,
            labels=probs.argmax(dim=-1),
        )

    def get_num_parameters(self) -> int:
        return sum(p.numel() for p in self.parameters() if p.requires_grad)

    @classmethod
    def from_pretrained(cls, path: str, feature_dim: Optional[int] = None) -> "HallucinationProbe":
        """Load a probe from a saved state dict.

        The feature dimension is inferred from the weight shape when not given.

        Raises:
            FileNotFoundError: If the artifact does not exist
            ValueError: If the artifact does not hold probe weights
        """
        state_dict = torch.load(path, map_location="cpu")
        if not isinstance(state_dict, dict) or "linear.weight" not in state_dict:
            raise ValueError(f"{path} does not contain hallucination probe weights")

        weight_shape = state_dict["linear.weight"].shape
        if len(weight_shape) != 2 or weight_shape[0] != cls.NUM_CLASSES:
            raise ValueError(f"Unexpected probe weight shape {tuple(weight_shape)}")

        inferred_dim = weight_shape[1]
        if feature_dim is not None and feature_dim != inferred_dim:
            raise ValueError(
                f"Probe expects {inferred_dim} features, configured for {feature_dim}"
            )

        probe = cls(feature_dim=inferred_dim)
        probe.load_state_dict(state_dict)
        probe.eval()
        return probe

    def save_pretrained(self, path: str):
        torch.save(self.state_dict(), path)

    def __repr__(self) -> str:
        return f"HallucinationProbe(feature_dim={self.feature_dim}, classes={self.NUM_CLASSES})"
