# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Phi model architecture package.

Decoder-only transformer in the MixFormer layout used by phi-1, phi-1.5
and phi-2:
  - LayerNorm (one per block, shared by attention and MLP)
  - parallel attention + MLP residual
  - partial rotary positional encoding
  - GELU (tanh) feedforward
  - untied, biased LM head
"""
