# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Partial rotary positional embedding for Phi.

Phi only rotates the first `rotary_dim` dimensions of each head; the rest
pass through untouched. The rotation uses the rotate-half layout (first
half of the rotary slice pairs with the second half) rather than
interleaved pairs.

The cos/sin tables are computed once for the whole context window. During
incremental decoding the model slices them at the cache's current
position, so token n always gets the rotation for position n no matter how
many tokens arrived with it.
"""

import torch


def precompute_rotary_tables(
    rotary_dim: int,
    max_seq_len: int,
    theta: float = 10000.0,
    device: torch.device | None = None,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Build the cos and sin tables for every position in the context window.

    Args:
        rotary_dim: Number of rotated dims per head (even).
        max_seq_len: Positions to precompute.
        theta: Base frequency of the geometric series.
        device: Where to put the tables.

    Returns:
        (cos, sin), each of shape (max_seq_len, rotary_dim).
    """
    inv_freq = 1.0 / (theta ** (torch.arange(0, rotary_dim, 2, device=device).float() / rotary_dim))
    positions = torch.arange(max_seq_len, device=device).float()
    freqs = torch.outer(positions, inv_freq)
    emb = torch.cat((freqs, freqs), dim=-1)
    return emb.cos(), emb.sin()


def _rotate_half(x: torch.Tensor) -> torch.Tensor:
    x1, x2 = x.chunk(2, dim=-1)
    return torch.cat((-x2, x1), dim=-1)


def apply_partial_rotary(
    xq: torch.Tensor,
    xk: torch.Tensor,
    cos: torch.Tensor,
    sin: torch.Tensor,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Rotate the leading cos.shape[-1] dims of queries and keys.

    Args:
        xq: Queries, (batch, n_heads, seq_len, head_dim).
        xk: Keys, (batch, n_heads, seq_len, head_dim).
        cos: (seq_len, rotary_dim) slice for the positions being processed.
        sin: Same shape as cos.

    Returns:
        (rotated_q, rotated_k) with the input shapes and dtypes.
    """
    rotary_dim = cos.shape[-1]
    cos = cos[None, None, :, :]
    sin = sin[None, None, :, :]

    def _rotate(x: torch.Tensor) -> torch.Tensor:
        x_rot, x_pass = x[..., :rotary_dim], x[..., rotary_dim:]
        x_rot = x_rot.float()
        rotated = x_rot * cos + _rotate_half(x_rot) * sin
        return torch.cat((rotated.type_as(x), x_pass), dim=-1)

    return _rotate(xq), _rotate(xk)
