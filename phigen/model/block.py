# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Phi parallel block.

Unlike the usual pre-norm stack (attention, then MLP on the attention
output), Phi runs attention and MLP side by side on the same normalized
input and adds both to the residual:

    h = ln(x)
    out = x + attn(h) + mlp(h)

One LayerNorm per block, shared by both branches.
"""

from typing import TYPE_CHECKING

import torch
import torch.nn as nn
import torch.nn.functional as F

from phigen.model.attention import PhiAttention

if TYPE_CHECKING:
    from phigen.serving.cache.core import KVCache


class PhiMLP(nn.Module):
    """Two biased linears with a tanh-approximated GELU in between."""

    def __init__(self, dim: int, intermediate_size: int) -> None:
        super().__init__()
        self.fc1 = nn.Linear(dim, intermediate_size, bias=True)
        self.fc2 = nn.Linear(intermediate_size, dim, bias=True)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.fc2(F.gelu(self.fc1(x), approximate="tanh"))


class PhiBlock(nn.Module):
    """
    One parallel attention + MLP block.

    Args:
        dim: Model hidden dimension.
        n_heads: Number of attention heads.
        intermediate_size: MLP inner width.
        norm_eps: LayerNorm epsilon.
    """

    def __init__(
        self,
        dim: int,
        n_heads: int,
        intermediate_size: int,
        norm_eps: float = 1e-5,
    ) -> None:
        super().__init__()
        self.ln = nn.LayerNorm(dim, eps=norm_eps)
        self.mixer = PhiAttention(dim=dim, n_heads=n_heads)
        self.mlp = PhiMLP(dim=dim, intermediate_size=intermediate_size)

    def forward(
        self,
        x: torch.Tensor,
        cos: torch.Tensor,
        sin: torch.Tensor,
        layer_idx: int,
        cache: "KVCache | None" = None,
    ) -> torch.Tensor:
        h = self.ln(x)
        return x + self.mixer(h, cos, sin, layer_idx, cache) + self.mlp(h)
