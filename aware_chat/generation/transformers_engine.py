"""Generation engine backed by a HuggingFace causal language model.

Generation runs token by token so that each fragment can be streamed as soon
as it is decoded and cancellation can be honoured between forward passes.
Forward passes run in a worker thread to keep the event loop responsive.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional

import torch

from ..activations.collector import LastTokenActivationCollector
from ..config.base import EngineConfig, SamplingConfig
from ..errors import EngineNotReady
from ..models.chat import ActivationBatch
from .engine import CancellationToken, ChatMessage, GenerationEngine, TokenStream

logger = logging.getLogger(__name__)


class TransformersTokenStream(TokenStream):
    """Token-by-token generation with last-token activation capture."""

    def __init__(
        self,
        engine: "TransformersGenerationEngine",
        prompt: str,
        sampling: SamplingConfig,
        cancel_token: CancellationToken,
    ):
        self.engine = engine
        self.prompt = prompt
        self.sampling = sampling
        self.cancel_token = cancel_token

        self.collector = LastTokenActivationCollector(
            model=engine.model,
            layers=engine.config.layers_to_capture,
            hook_point=engine.config.hook_point,
        )
        self._rng = torch.Generator(device="cpu").manual_seed(sampling.seed)
        self._started = False
        self._closed = False
        self._activations: Optional[ActivationBatch] = None

        self.input_ids: Optional[torch.Tensor] = None
        self.attention_mask: Optional[torch.Tensor] = None
        self.generated_ids: List[int] = []

    def _next_token(self, logits: torch.Tensor) -> int:
        if self.sampling.temperature == 0.0:
            return int(torch.argmax(logits, dim=-1).item())

        probs = torch.softmax(logits.float() / self.sampling.temperature, dim=-1).cpu()
        return int(torch.multinomial(probs, num_samples=1, generator=self._rng).item())

    def _step(self) -> int:
        """Run one forward pass and append the chosen token. Blocking."""
        max_context = self.engine.config.max_context_tokens
        input_ids = self.input_ids[:, -max_context:]
        attention_mask = self.attention_mask[:, -max_context:]

        with torch.no_grad():
            outputs = self.engine.model(input_ids=input_ids, attention_mask=attention_mask)

        next_token = self._next_token(outputs.logits[0, -1, :])

        device = self.input_ids.device
        self.input_ids = torch.cat(
            [self.input_ids, torch.tensor([[next_token]], device=device, dtype=self.input_ids.dtype)],
            dim=1,
        )
        self.attention_mask = torch.cat(
            [self.attention_mask, torch.ones((1, 1), device=device, dtype=self.attention_mask.dtype)],
            dim=1,
        )
        return next_token

    async def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("Token stream cannot be restarted")
        self._started = True

        tokenizer = self.engine.tokenizer
        inputs = tokenizer(self.prompt, return_tensors="pt")
        self.input_ids = inputs["input_ids"].to(self.engine.device)
        attention_mask = inputs.get("attention_mask") if hasattr(inputs, "get") else None
        if attention_mask is None:
            attention_mask = torch.ones_like(self.input_ids)
        self.attention_mask = attention_mask.to(self.engine.device)

        self.collector.register_hooks()
        emitted = ""

        for _ in range(self.sampling.max_tokens):
            if self.cancel_token.cancelled or self._closed:
                return

            next_token = await asyncio.to_thread(self._step)
            if next_token == tokenizer.eos_token_id:
                break

            self.generated_ids.append(next_token)
            text = tokenizer.decode(self.generated_ids, skip_special_tokens=True)
            # Hold back incomplete multi-byte sequences
            if text.endswith("�") or len(text) <= len(emitted):
                continue

            fragment = text[len(emitted):]
            emitted = text
            yield fragment

        if not self.cancel_token.cancelled:
            self._activations = self.collector.activation_batch()

    def activations(self) -> ActivationBatch:
        """Activations of the latest forward pass.

        Also available when the consumer stopped iterating early (stop
        sequence or emitted-token cap), but never after cancellation.
        """
        if self._activations is None:
            if not self._started or self.cancel_token.cancelled:
                raise ValueError("No activations captured for this generation")
            self._activations = self.collector.activation_batch()
        return self._activations

    async def aclose(self):
        self._closed = True
        self.collector.remove_hooks()


class TransformersGenerationEngine(GenerationEngine):
    """GenerationEngine over a HuggingFace causal LM.

    Example:
        >>> engine = TransformersGenerationEngine(EngineConfig(model_path="LiquidAI/LFM2-1.2B"))
        >>> engine.load()
        >>> session = GenerationSession(engine)
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.model = None
        self.tokenizer = None
        self.device = None

    @classmethod
    def from_model(cls, model, tokenizer, config: Optional[EngineConfig] = None) -> "TransformersGenerationEngine":
        """Wrap an already-loaded model and tokenizer."""
        engine = cls(config)
        engine.model = model
        engine.tokenizer = tokenizer
        engine.device = next(model.parameters()).device
        engine.model.eval()
        return engine

    def load(self) -> "TransformersGenerationEngine":
        if self.is_ready:
            return self

        from transformers import AutoModelForCausalLM, AutoTokenizer

        device = self.config.device or ("cuda" if torch.cuda.is_available() else "cpu")
        logger.info("Loading generation model: %s", self.config.model_path)

        tokenizer = AutoTokenizer.from_pretrained(self.config.model_path)
        if tokenizer.pad_token is None:
            tokenizer.pad_token = tokenizer.eos_token

        model = AutoModelForCausalLM.from_pretrained(
            self.config.model_path,
            torch_dtype=getattr(torch, self.config.torch_dtype),
        )
        model.to(device)
        model.eval()

        self.model = model
        self.tokenizer = tokenizer
        self.device = torch.device(device)
        logger.info("Generation model ready on %s", device)
        return self

    @property
    def is_ready(self) -> bool:
        return self.model is not None and self.tokenizer is not None

    def format_prompt(self, messages: List[ChatMessage]) -> str:
        if getattr(self.tokenizer, "chat_template", None) and hasattr(self.tokenizer, "apply_chat_template"):
            return self.tokenizer.apply_chat_template(
                messages, tokenize=False, add_generation_prompt=True
            )

        lines = [f"{m['role'].capitalize()}: {m['content']}" for m in messages]
        lines.append("Assistant:")
        return "\n".join(lines)

    def open_session(
        self,
        messages: List[ChatMessage],
        sampling: SamplingConfig,
        cancel_token: CancellationToken,
    ) -> TransformersTokenStream:
        if not self.is_ready:
            raise EngineNotReady("Generation model is not loaded")
        prompt = self.format_prompt(messages)
        return TransformersTokenStream(self, prompt, sampling, cancel_token)

    def __repr__(self) -> str:
        return (
            f"TransformersGenerationEngine("
            f"model='{self.config.model_path}', "
            f"ready={self.is_ready})"
        )
