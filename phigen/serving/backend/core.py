# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Compute backend: the model forward pass behind a mutual-exclusion boundary.

One model on one device is a shared resource. Several sessions can be
generating at once, each with its own KV cache, but their forward passes
must not interleave on the device. The backend owns a lock and holds it
for exactly the duration of one model call; everything else a session
does (sampling, decoding, streaming) runs outside it.

Failures from the model are re-raised as ComputeError. The backend
doesn't retry, because a failed call may have left a partial write in the
session's cache.
"""

import logging
import threading
from collections.abc import Sequence
from contextlib import AbstractContextManager

import torch
import torch.nn as nn

from phigen.logging.logger import get_logger
from phigen.serving.cache.core import KVCache
from phigen.serving.errors import ComputeError

logger: logging.Logger = get_logger(__name__)


class ComputeBackend:
    """
    Serialized access to a loaded model.

    The model must accept (input_ids, cache) and return logits of shape
    [batch, seq_len, vocab_size], and expose a `config` with vocab_size,
    n_layers, n_heads, head_dim and max_seq_len. PhiModel does.

    Pass the same `lock` to several backends if they share a device.
    """

    def __init__(
        self,
        model: nn.Module,
        device: torch.device,
        lock: AbstractContextManager | None = None,
    ) -> None:
        self._model = model
        self._device = device
        self._lock = lock if lock is not None else threading.Lock()
        self._forward_calls = 0

        config = model.config
        self._vocab_size: int = config.vocab_size
        self._n_layers: int = config.n_layers
        self._n_heads: int = config.n_heads
        self._head_dim: int = config.head_dim
        self._max_context_length: int = config.max_seq_len

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    @property
    def max_context_length(self) -> int:
        return self._max_context_length

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def forward_calls(self) -> int:
        """Model invocations made through this backend, for diagnostics."""
        return self._forward_calls

    def new_cache(self) -> KVCache:
        """A fresh, empty cache shaped for this model."""
        return KVCache(
            n_layers=self._n_layers,
            n_heads=self._n_heads,
            head_dim=self._head_dim,
            max_seq_len=self._max_context_length,
        )

    @torch.no_grad()
    def forward(self, token_ids: Sequence[int], cache: KVCache) -> torch.Tensor:
        """
        Process the new tokens and return next-token logits.

        The cache grows by exactly len(token_ids) positions.

        Args:
            token_ids: Tokens not yet in the cache (the whole prompt on the
                first call, a single token afterwards).
            cache: The calling session's cache.

        Returns:
            Float32 logits on CPU for the last position, shape [vocab_size].

        Raises:
            ValueError: Empty input, ids outside the vocabulary, or a cache
                shaped for a different model.
            ComputeError: The model call failed or produced NaN logits.
        """
        if not token_ids:
            raise ValueError("forward() needs at least one token")

        bad_ids = [t for t in token_ids if not 0 <= t < self._vocab_size]
        if bad_ids:
            raise ValueError(
                f"Token ids {bad_ids[:8]} are outside the vocabulary of size {self._vocab_size}"
            )

        if cache.n_layers != self._n_layers or cache.max_length != self._max_context_length:
            raise ValueError("KV cache was not created for this model")

        expected_length = cache.length + len(token_ids)
        input_tensor = torch.tensor([list(token_ids)], dtype=torch.long, device=self._device)

        try:
            with self._lock:
                self._forward_calls += 1
                output = self._model(input_tensor, cache)
        except Exception as err:
            raise ComputeError(f"Forward pass failed: {err}") from err

        if cache.length != expected_length:
            raise ComputeError(
                f"KV cache length is {cache.length} after the forward pass, expected {expected_length}"
            )

        logits = output[0, -1, :].float().cpu()
        if torch.isnan(logits).any():
            raise ComputeError("Forward pass produced NaN logits")

        return logits
