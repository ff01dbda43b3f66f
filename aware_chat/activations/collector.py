"""Forward hooks that capture per-layer activations during generation.

The collector keeps only the most recent token position of each hooked
layer, so after the final forward pass of a turn it holds exactly one
``hidden_dim`` vector per layer: the ActivationBatch handed to the
preprocessor.
"""

import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional

import numpy as np
import torch


class LastTokenActivationCollector:
    """Capture last-token activations from selected transformer layers.

    Supports HuggingFace decoder layouts:
    - model.model.layers[N] (Llama, Qwen, LFM2 ...)
    - model.transformer.h[N] (GPT-2 style)
    - PEFT-wrapped variants of the above

    Example:
        >>> collector = LastTokenActivationCollector(model, layers=None)
        >>> with collector.collect():
        ...     model(input_ids)
        >>> batch = collector.activation_batch()  # [layers][hidden_dim]
    """

    SUPPORTED_HOOK_POINTS = ("mlp_output", "post_attention", "pre_mlp", "hidden_states")

    def __init__(
        self,
        model,
        layers: Optional[List[int]] = None,
        hook_point: str = "mlp_output",
    ):
        """Initialize the collector.

        Args:
            model: HuggingFace causal LM (can be PEFT-wrapped)
            layers: Layer indices to capture (None = every layer)
            hook_point: Where to read activations:
                - "mlp_output": MLP / feed-forward output
                - "post_attention": self-attention output
                - "pre_mlp": post-attention norm output
                - "hidden_states": full layer output
        """
        if hook_point not in self.SUPPORTED_HOOK_POINTS:
            raise ValueError(
                f"Unsupported hook_point: {hook_point}. "
                f"Must be one of {self.SUPPORTED_HOOK_POINTS}"
            )

        self.model = model
        self.hook_point = hook_point
        num_layers = len(self._model_layers())
        self.layers = sorted(layers) if layers is not None else list(range(num_layers))

        self.activations: Dict[int, torch.Tensor] = {}
        self.handles: List[torch.utils.hooks.RemovableHandle] = []
        # Hooks fire on the worker thread running the forward pass
        self._lock = threading.Lock()

    def _model_layers(self):
        model = self.model

        if hasattr(model, "base_model") and hasattr(model.base_model, "model"):
            model = model.base_model.model

        if hasattr(model, "model") and hasattr(model.model, "layers"):
            return model.model.layers
        if hasattr(model, "layers"):
            return model.layers
        if hasattr(model, "transformer") and hasattr(model.transformer, "h"):
            return model.transformer.h
        raise AttributeError(
            f"Cannot find decoder layers in model of type {type(self.model).__name__}"
        )

    def _hook_target(self, layer_idx: int):
        layers = self._model_layers()
        if layer_idx >= len(layers):
            raise IndexError(
                f"Layer index {layer_idx} out of range; model has {len(layers)} layers"
            )
        layer = layers[layer_idx]

        candidates = {
            "mlp_output": ("mlp", "feed_forward"),
            "post_attention": ("self_attn", "attention"),
            "pre_mlp": ("post_attention_layernorm", "ln_2", "ffn_norm"),
        }
        if self.hook_point == "hidden_states":
            return layer

        for name in candidates[self.hook_point]:
            if hasattr(layer, name):
                return getattr(layer, name)
        raise AttributeError(f"Cannot find '{self.hook_point}' module in layer {layer_idx}")

    def _make_hook(self, layer_idx: int) -> Callable:
        def hook(module, inputs, output):
            hidden = output[0] if isinstance(output, tuple) else output
            last = hidden[0, -1, :].detach().float().cpu()
            with self._lock:
                self.activations[layer_idx] = last

        return hook

    def register_hooks(self) -> "LastTokenActivationCollector":
        if self.handles:
            self.remove_hooks()
        self.clear()

        for layer_idx in self.layers:
            target = self._hook_target(layer_idx)
            self.handles.append(target.register_forward_hook(self._make_hook(layer_idx)))
        return self

    def remove_hooks(self) -> "LastTokenActivationCollector":
        for handle in self.handles:
            handle.remove()
        self.handles = []
        return self

    def clear(self) -> "LastTokenActivationCollector":
        with self._lock:
            self.activations = {}
        return self

    @contextmanager
    def collect(self):
        self.register_hooks()
        try:
            yield self
        finally:
            self.remove_hooks()

    def activation_batch(self) -> List[np.ndarray]:
        """Return the captured vectors ordered by layer index.

        Raises:
            ValueError: If no forward pass has been captured, or a layer is missing
        """
        with self._lock:
            captured = dict(self.activations)

        if not captured:
            raise ValueError("No activations captured; run a forward pass with hooks registered")

        missing = set(self.layers) - set(captured)
        if missing:
            raise ValueError(f"Missing activations for layers: {sorted(missing)}")

        return [captured[idx].numpy() for idx in self.layers]

    @property
    def is_active(self) -> bool:
        return bool(self.handles)

    def __repr__(self) -> str:
        return (
            f"LastTokenActivationCollector("
            f"layers={self.layers}, "
            f"hook_point='{self.hook_point}', "
            f"active={self.is_active})"
        )
