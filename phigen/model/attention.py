# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Multi-head causal self-attention for Phi, with KV cache support.

The computation:
  1. One fused projection produces Q, K and V
  2. Partial RoPE is applied to Q and K
  3. K and V for the new positions are appended to the cache, which hands
     back the full history for this layer
  4. Scaled dot-product attention over that history
  5. Output projection back to model dimension

With a cache, the new queries sit at the end of the key sequence, so the
causal mask is offset: query i may see every cached position plus new
positions up to and including i.
"""

from typing import TYPE_CHECKING

import torch
import torch.nn as nn
import torch.nn.functional as F

from phigen.model.rotary import apply_partial_rotary

if TYPE_CHECKING:
    from phigen.serving.cache.core import KVCache


class PhiAttention(nn.Module):
    """
    Causal self-attention with fused QKV and partial rotary encoding.

    Args:
        dim: Model hidden dimension.
        n_heads: Number of attention heads.
    """

    def __init__(self, dim: int, n_heads: int) -> None:
        super().__init__()
        self.n_heads = n_heads
        self.head_dim = dim // n_heads
        self.dim = dim

        self.wqkv = nn.Linear(dim, 3 * dim, bias=True)
        self.out_proj = nn.Linear(dim, dim, bias=True)

    def forward(
        self,
        x: torch.Tensor,
        cos: torch.Tensor,
        sin: torch.Tensor,
        layer_idx: int,
        cache: "KVCache | None" = None,
    ) -> torch.Tensor:
        """
        Args:
            x: (batch, seq_len, dim) hidden states for the new positions.
            cos, sin: Rotary tables sliced to the new positions.
            layer_idx: Which cache slot belongs to this layer.
            cache: Session KV cache, or None for a stateless full pass.

        Returns:
            (batch, seq_len, dim)
        """
        batch_size, seq_len, _ = x.shape

        qkv = self.wqkv(x).view(batch_size, seq_len, 3, self.n_heads, self.head_dim)
        xq, xk, xv = qkv.unbind(dim=2)

        # (batch, n_heads, seq_len, head_dim)
        xq = xq.transpose(1, 2)
        xk = xk.transpose(1, 2)
        xv = xv.transpose(1, 2)

        xq, xk = apply_partial_rotary(xq, xk, cos, sin)

        if cache is not None:
            xk, xv = cache.extend(layer_idx, xk, xv)

        total_len = xk.shape[2]
        attn_mask = None
        if seq_len > 1:
            attn_mask = torch.ones(seq_len, total_len, dtype=torch.bool, device=x.device).tril(
                diagonal=total_len - seq_len
            )

        output = F.scaled_dot_product_attention(xq, xk, xv, attn_mask=attn_mask)

        output = output.transpose(1, 2).contiguous().view(batch_size, seq_len, self.dim)
        return self.out_proj(output)
