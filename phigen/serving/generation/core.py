# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Generation options and the sampling pipeline.

This module handles the "what token comes next?" decision. The model
gives us raw scores (logits) for every token in the vocabulary, and a
fixed sequence of small, pure transforms narrows them down to one pick:

  1. Repetition penalty: tokens we generated recently get pushed down,
     which discourages the model from looping.
  2. Temperature: 0 means greedy: take the argmax and skip everything
     below. Otherwise divide the logits; higher temperature flattens the
     distribution, lower sharpens it.
  3. Top-k: only the k highest-scoring tokens stay in the running.
  4. Top-p (nucleus): only the smallest set of most likely tokens whose
     probabilities add up to at least p stays in the running.
  5. Draw: softmax what's left and sample one token.

The order matters (a penalty applied after top-k would be a different
distribution), which is why the pipeline lives in one place and each step
is a separate function you can test on its own.

Draws are reproducible: each step uses a fresh torch.Generator seeded with
seed + step, so the same seed, prompt and step always give the same token.
"""

import logging
import math
import random
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

import torch

from phigen.config.exceptions import ConfigValidationError
from phigen.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)


class StopMode(str, Enum):
    """How stop strings are matched against generated text."""

    SUFFIX = "suffix"
    CONTAINS = "contains"


@dataclass(frozen=True)
class GenerationConfig:
    """
    Everything that controls one generation request.

    The defaults give deterministic greedy decoding. Bump temperature
    above zero to sample instead. The config is validated when it's built
    and can't be changed afterwards; a different setting means a new
    config and a new session.

    seed=None means "pick one for me": a seed is drawn from the process
    RNG when the session starts, so runs differ unless bootstrap seeded it.
    eos_token_id=None means "use the tokenizer's EOS".
    """

    max_tokens: int = 512
    temperature: float = 0.0
    top_k: int | None = None
    top_p: float | None = None
    repetition_penalty: float | None = None
    repetition_window: int = 64
    stop_strings: frozenset[str] = field(default_factory=frozenset)
    stop_token_ids: frozenset[int] = field(default_factory=frozenset)
    stop_mode: StopMode = StopMode.SUFFIX
    seed: int | None = 42
    eos_token_id: int | None = None

    def __post_init__(self) -> None:
        # Accept any iterable for the set-valued fields, but store frozensets.
        object.__setattr__(self, "stop_strings", frozenset(self.stop_strings))
        object.__setattr__(self, "stop_token_ids", frozenset(self.stop_token_ids))
        try:
            object.__setattr__(self, "stop_mode", StopMode(self.stop_mode))
        except ValueError:
            raise ConfigValidationError(
                f"Invalid generation config: stop_mode must be 'suffix' or 'contains', got {self.stop_mode!r}"
            ) from None
        self._validate()

    def _validate(self) -> None:
        problems: list[str] = []

        if self.max_tokens <= 0:
            problems.append(f"max_tokens must be > 0, got {self.max_tokens}")
        if not math.isfinite(self.temperature) or self.temperature < 0:
            problems.append(f"temperature must be a finite value >= 0, got {self.temperature}")
        if self.top_k is not None and self.top_k <= 0:
            problems.append(f"top_k must be a positive integer, got {self.top_k}")
        if self.top_p is not None and not 0.0 < self.top_p <= 1.0:
            problems.append(f"top_p must be in (0, 1], got {self.top_p}")
        if self.repetition_penalty is not None and not self.repetition_penalty >= 1.0:
            problems.append(f"repetition_penalty must be >= 1, got {self.repetition_penalty}")
        if self.repetition_window < 0:
            problems.append(f"repetition_window must be >= 0, got {self.repetition_window}")
        if any(not s for s in self.stop_strings):
            problems.append("stop_strings must not contain empty strings")
        if self.seed is not None and self.seed < 0:
            problems.append(f"seed must be a non-negative integer, got {self.seed}")

        if problems:
            raise ConfigValidationError("Invalid generation config: " + "; ".join(problems))

    @property
    def is_greedy(self) -> bool:
        return self.temperature == 0.0


def apply_repetition_penalty(
    logits: torch.Tensor,
    history: Sequence[int],
    penalty: float | None,
    window: int,
) -> torch.Tensor:
    """
    Push down every token that appears in the last `window` generated tokens.

    Positive logits are divided by the penalty, negative ones multiplied,
    so the token always becomes less likely regardless of sign. Each token
    is penalized once no matter how often it repeats.
    """
    if penalty is None or penalty == 1.0 or window == 0 or not history:
        return logits

    recent = torch.tensor(sorted(set(history[-window:])), dtype=torch.long, device=logits.device)
    scores = logits.gather(-1, recent)
    scores = torch.where(scores > 0, scores / penalty, scores * penalty)
    return logits.scatter(-1, recent, scores)


def apply_temperature(logits: torch.Tensor, temperature: float) -> torch.Tensor:
    """Divide logits by temperature. Only meaningful for temperature > 0."""
    return logits / temperature


def apply_top_k(logits: torch.Tensor, top_k: int | None) -> torch.Tensor:
    """
    Keep exactly the k highest scores; everything else becomes -inf.

    Ties at the k-th score are broken by torch.topk, so no more than k
    tokens ever survive.
    """
    if top_k is None or top_k >= logits.size(-1):
        return logits
    keep = torch.topk(logits, top_k).indices
    remove = torch.ones_like(logits, dtype=torch.bool).scatter(-1, keep, False)
    return logits.masked_fill(remove, float("-inf"))


def apply_top_p(logits: torch.Tensor, top_p: float | None) -> torch.Tensor:
    """
    Keep the smallest probability-sorted prefix whose mass reaches top_p.

    A token survives if the mass of the tokens ranked strictly above it is
    still below top_p. The most likely token therefore always survives.
    """
    if top_p is None or top_p >= 1.0:
        return logits

    sorted_logits, sorted_indices = torch.sort(logits, descending=True)
    sorted_probs = torch.softmax(sorted_logits, dim=-1)
    mass_before = torch.cumsum(sorted_probs, dim=-1) - sorted_probs
    sorted_remove = mass_before >= top_p
    remove = sorted_remove.scatter(-1, sorted_indices, sorted_remove)
    return logits.masked_fill(remove, float("-inf"))


def draw_token(logits: torch.Tensor, generator: torch.Generator) -> int:
    """
    Softmax the surviving logits and sample one token.

    If the distribution is unusable (NaN, all zero), fall back to the
    argmax rather than letting multinomial blow up.
    """
    probs = torch.softmax(logits.float(), dim=-1)
    if not torch.isfinite(probs).all() or probs.sum() <= 0:
        logger.warning("Degenerate sampling distribution, falling back to argmax")
        return int(torch.nan_to_num(logits, nan=float("-inf")).argmax(dim=-1).item())
    return int(torch.multinomial(probs, num_samples=1, generator=generator).item())


def resolve_seed(seed: int | None) -> int:
    """The configured seed, or a fresh one from the process RNG."""
    if seed is not None:
        return seed
    return random.getrandbits(63)


class Sampler:
    """
    Runs the transform pipeline for one session.

    Built once per session from an immutable config. sample() is pure
    apart from reading the config; all state it needs (history, step) is
    passed in, so replaying a session replays its picks.
    """

    def __init__(self, config: GenerationConfig, seed: int, stop_token_ids: Iterable[int] = ()) -> None:
        self._config = config
        self._seed = seed
        self._stop_token_ids = frozenset(stop_token_ids) | config.stop_token_ids
        if config.eos_token_id is not None:
            self._stop_token_ids |= {config.eos_token_id}

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def stop_token_ids(self) -> frozenset[int]:
        return self._stop_token_ids

    def sample(
        self,
        logits: torch.Tensor,
        recent_token_history: Sequence[int],
        step: int = 0,
    ) -> tuple[int, bool]:
        """
        Pick the next token.

        Args:
            logits: Raw model output for the last position, shape [vocab_size].
            recent_token_history: Tokens generated so far in this session.
            step: Zero-based index of this pick within the session.

        Returns:
            (token_id, should_continue). should_continue is False when the
            pick is EOS or one of the configured stop tokens.
        """
        if logits.dim() > 1:
            logits = logits[-1]

        config = self._config
        logits = apply_repetition_penalty(
            logits, recent_token_history, config.repetition_penalty, config.repetition_window
        )

        if config.is_greedy:
            token_id = int(logits.argmax(dim=-1).item())
        else:
            logits = apply_temperature(logits, config.temperature)
            logits = apply_top_k(logits, config.top_k)
            logits = apply_top_p(logits, config.top_p)
            generator = torch.Generator(device="cpu")
            generator.manual_seed(self._seed + step)
            token_id = draw_token(logits.cpu(), generator)

        return token_id, token_id not in self._stop_token_ids
