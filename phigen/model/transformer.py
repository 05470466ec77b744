# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Full Phi model.

Topology:
  Input Tokens → Embedding → N × Parallel Blocks → LayerNorm → Linear LM Head → Logits

The model is the tensor compute provider for the serving runtime. It
knows nothing about sampling or streaming. Its only stateful contract is
the KV cache: given the cache for a session, forward() processes just the
new tokens, appends their keys/values to the cache, and commits exactly
that many positions.
"""

from typing import TYPE_CHECKING

import torch
import torch.nn as nn

from phigen.model.block import PhiBlock
from phigen.model.config import PhiModelConfig
from phigen.model.rotary import precompute_rotary_tables

if TYPE_CHECKING:
    from phigen.serving.cache.core import KVCache


def _init_weights(module: nn.Module, seed: int, init_std: float) -> None:
    """
    Deterministic init from a dedicated Generator.

    Matrices get N(0, init_std), LayerNorm weights 1, biases 0. Real
    checkpoints overwrite all of this; it only matters for tests and for
    shape-checking a config before weights arrive.
    """
    generator = torch.Generator()
    generator.manual_seed(seed)

    with torch.no_grad():
        for name, param in module.named_parameters():
            if param.dim() >= 2:
                param.normal_(0.0, init_std, generator=generator)
            elif name.endswith("ln.weight") or name.endswith("norm.weight"):
                param.fill_(1.0)
            else:
                param.zero_()


class PhiModel(nn.Module):
    """
    Decoder-only Phi transformer.

    Args:
        config: PhiModelConfig with all architecture dimensions.
    """

    def __init__(self, config: PhiModelConfig) -> None:
        super().__init__()
        self.config = config

        self.embed = nn.Embedding(config.vocab_size, config.dim)
        self.layers = nn.ModuleList([
            PhiBlock(
                dim=config.dim,
                n_heads=config.n_heads,
                intermediate_size=config.intermediate_size,
                norm_eps=config.norm_eps,
            )
            for _ in range(config.n_layers)
        ])
        self.norm = nn.LayerNorm(config.dim, eps=config.norm_eps)
        self.lm_head = nn.Linear(config.dim, config.vocab_size, bias=True)

        rope_cos, rope_sin = precompute_rotary_tables(
            rotary_dim=config.rotary_dim,
            max_seq_len=config.max_seq_len,
            theta=config.rope_theta,
        )
        self.register_buffer("rope_cos", rope_cos, persistent=False)
        self.register_buffer("rope_sin", rope_sin, persistent=False)

        _init_weights(self, seed=config.seed, init_std=config.init_std)

    def forward(
        self,
        tokens: torch.Tensor,
        cache: "KVCache | None" = None,
    ) -> torch.Tensor:
        """
        Run the new tokens through the model.

        Args:
            tokens: (batch, seq_len) token ids for the positions not yet in
                the cache. Without a cache, the whole sequence.
            cache: Session KV cache. Grows by seq_len positions.

        Returns:
            Logits of shape (batch, seq_len, vocab_size).
        """
        seq_len = tokens.shape[1]
        start = cache.length if cache is not None else 0
        end = start + seq_len
        if end > self.config.max_seq_len:
            raise RuntimeError(
                f"Sequence of {end} positions exceeds context length {self.config.max_seq_len}"
            )

        cos = self.rope_cos[start:end]
        sin = self.rope_sin[start:end]

        h = self.embed(tokens)
        for layer_idx, layer in enumerate(self.layers):
            h = layer(h, cos, sin, layer_idx, cache)

        if cache is not None:
            cache.advance(seq_len)

        h = self.norm(h)
        return self.lm_head(h)

    def count_parameters(self) -> int:
        """Total number of parameters."""
        return sum(p.numel() for p in self.parameters())
