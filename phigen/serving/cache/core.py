# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
KV cache for incremental decoding.

Every attention layer produces a key and a value tensor for each token it
processes. Those never change once computed, so a session keeps them here
and each step only computes the new token's contribution. That turns the
per-token cost from "re-run the whole prefix" into "run one position".

Storage grows geometrically: capacity starts small and doubles (capped at
the context length) whenever a write would overflow it, so appends are
amortized O(1) and a short generation doesn't pay for a full context
window up front.

A cache belongs to exactly one session. The session binds it on start and
releases it on halt; binding a cache someone else holds is a programming
error and raises.
"""

import logging

import torch

from phigen.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)

_INITIAL_CAPACITY = 64


class KVCache:
    """
    Growable per-layer key/value storage for one generation session.

    The model writes one layer at a time with extend(), then calls
    advance() once all layers have the new positions. length only moves
    on advance(), so it always equals the number of positions every layer
    has processed.

    Per-layer tensor shape: [1, n_heads, capacity, head_dim]. dtype and
    device follow the first tensors written, so the cache matches whatever
    precision the model runs in.
    """

    def __init__(
        self,
        n_layers: int,
        n_heads: int,
        head_dim: int,
        max_seq_len: int,
        initial_capacity: int = _INITIAL_CAPACITY,
    ) -> None:
        self._n_layers = n_layers
        self._n_heads = n_heads
        self._head_dim = head_dim
        self._max_seq_len = max_seq_len
        self._initial_capacity = max(1, min(initial_capacity, max_seq_len))

        self._keys: list[torch.Tensor | None] = [None] * n_layers
        self._values: list[torch.Tensor | None] = [None] * n_layers
        self._written: list[int] = [0] * n_layers
        self._capacity = 0
        self._current_len = 0
        self._owner: str | None = None

    @property
    def length(self) -> int:
        """Positions processed by every layer so far."""
        return self._current_len

    @property
    def max_length(self) -> int:
        return self._max_seq_len

    @property
    def capacity(self) -> int:
        """Positions the backing storage can hold before the next growth."""
        return self._capacity

    @property
    def is_full(self) -> bool:
        return self._current_len >= self._max_seq_len

    @property
    def remaining_capacity(self) -> int:
        return self._max_seq_len - self._current_len

    @property
    def n_layers(self) -> int:
        return self._n_layers

    @property
    def owner(self) -> str | None:
        return self._owner

    def bind(self, owner: str) -> None:
        """
        Claim the cache for one session.

        Raises:
            RuntimeError: If another session already holds it.
        """
        if self._owner is not None and self._owner != owner:
            raise RuntimeError(
                f"KV cache is owned by session {self._owner}; "
                f"it cannot be shared with session {owner}"
            )
        self._owner = owner

    def release(self) -> None:
        """Drop all state and give up ownership."""
        self.reset()
        self._owner = None

    def extend(
        self,
        layer_idx: int,
        new_key: torch.Tensor,
        new_value: torch.Tensor,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """
        Append one layer's keys/values for the positions being processed
        and return that layer's full history including them.

        Args:
            layer_idx: Which layer is writing.
            new_key: [1, n_heads, new_positions, head_dim]
            new_value: Same shape as new_key.

        Returns:
            (keys, values) of shape [1, n_heads, length + new_positions, head_dim].

        Raises:
            RuntimeError: On shape mismatch, or if the write would run past
                the context length.
        """
        expected = (1, self._n_heads, new_key.shape[2], self._head_dim)
        if tuple(new_key.shape) != expected or new_value.shape != new_key.shape:
            raise RuntimeError(
                f"KV cache shape mismatch at layer {layer_idx}: expected {expected}, "
                f"got keys {tuple(new_key.shape)} and values {tuple(new_value.shape)}"
            )

        start = self._current_len
        end = start + new_key.shape[2]
        if end > self._max_seq_len:
            raise RuntimeError(
                f"KV cache overflow: trying to write to position {end} "
                f"but max is {self._max_seq_len}"
            )

        if end > self._capacity:
            self._grow(end)

        keys = self._keys[layer_idx]
        values = self._values[layer_idx]
        if keys is None or values is None:
            keys = self._allocate(new_key)
            values = self._allocate(new_value)
            self._keys[layer_idx] = keys
            self._values[layer_idx] = values

        keys[:, :, start:end, :] = new_key
        values[:, :, start:end, :] = new_value
        self._written[layer_idx] = end

        return keys[:, :, :end, :], values[:, :, :end, :]

    def advance(self, steps: int = 1) -> None:
        """
        Commit `steps` new positions once every layer has written them.

        Raises:
            RuntimeError: If some layer hasn't been extended that far.
        """
        target = self._current_len + steps
        lagging = [idx for idx, written in enumerate(self._written) if written != target]
        if lagging:
            raise RuntimeError(
                f"Cannot advance KV cache to {target}: layers {lagging} were not extended"
            )
        self._current_len = target

    def reset(self) -> None:
        """Clear the cache and free its storage."""
        self._keys = [None] * self._n_layers
        self._values = [None] * self._n_layers
        self._written = [0] * self._n_layers
        self._capacity = 0
        self._current_len = 0

    def memory_bytes(self) -> int:
        """Bytes held by the backing storage right now."""
        total = 0
        for tensor in (*self._keys, *self._values):
            if tensor is not None:
                total += tensor.nelement() * tensor.element_size()
        return total

    def memory_mb(self) -> float:
        return self.memory_bytes() / (1024 * 1024)

    def _allocate(self, like: torch.Tensor) -> torch.Tensor:
        return torch.zeros(
            1, self._n_heads, self._capacity, self._head_dim,
            device=like.device, dtype=like.dtype,
        )

    def _grow(self, needed: int) -> None:
        """Double capacity until `needed` fits, copying committed positions over."""
        new_capacity = max(self._capacity, self._initial_capacity)
        while new_capacity < needed:
            new_capacity *= 2
        new_capacity = min(new_capacity, self._max_seq_len)

        for idx in range(self._n_layers):
            for store in (self._keys, self._values):
                old = store[idx]
                if old is None:
                    continue
                grown = torch.zeros(
                    1, self._n_heads, new_capacity, self._head_dim,
                    device=old.device, dtype=old.dtype,
                )
                grown[:, :, : self._written[idx], :] = old[:, :, : self._written[idx], :]
                store[idx] = grown

        logger.debug(
            "KV cache grown",
            extra={"old_capacity": self._capacity, "new_capacity": new_capacity},
        )
        self._capacity = new_capacity
