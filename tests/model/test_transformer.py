# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the full PhiModel.

Shape correctness, deterministic init, the parallel block layout, and
the property the serving runtime depends on: decoding one token at a time
through the KV cache gives the same logits as one full pass.
"""

import pytest
import torch

from phigen.model.block import PhiBlock
from phigen.model.config import PhiModelConfig
from phigen.model.transformer import PhiModel
from phigen.serving.cache.core import KVCache


def _tiny_config(**overrides: int) -> PhiModelConfig:
    params = dict(vocab_size=97, dim=32, n_layers=2, n_heads=4, rotary_dim=4, max_seq_len=32, seed=42)
    params.update(overrides)
    return PhiModelConfig(**params)


def _cache_for(config: PhiModelConfig, initial_capacity: int = 4) -> KVCache:
    return KVCache(
        n_layers=config.n_layers,
        n_heads=config.n_heads,
        head_dim=config.head_dim,
        max_seq_len=config.max_seq_len,
        initial_capacity=initial_capacity,
    )


class TestForwardPass:

    def test_forward_shape(self) -> None:
        model = PhiModel(_tiny_config())
        tokens = torch.randint(0, 97, (2, 10))
        assert model(tokens).shape == (2, 10, 97)

    def test_sequence_longer_than_context_rejected(self) -> None:
        model = PhiModel(_tiny_config())
        with pytest.raises(RuntimeError, match="context length"):
            model(torch.zeros(1, 33, dtype=torch.long))

    def test_causal(self) -> None:
        """Changing a later token must not change earlier logits."""
        model = PhiModel(_tiny_config())
        model.eval()
        a = torch.tensor([[1, 2, 3, 4, 5]])
        b = torch.tensor([[1, 2, 3, 4, 60]])
        with torch.no_grad():
            assert torch.allclose(model(a)[0, :4], model(b)[0, :4], atol=1e-6)

    def test_parameter_count(self) -> None:
        config = _tiny_config()
        model = PhiModel(config)
        dim, inner, vocab = config.dim, config.intermediate_size, config.vocab_size
        per_block = 2 * dim + (dim * 3 * dim + 3 * dim) + (dim * dim + dim) + (dim * inner + inner) + (inner * dim + dim)
        expected = vocab * dim + config.n_layers * per_block + 2 * dim + (dim * vocab + vocab)
        assert model.count_parameters() == expected

    def test_rotary_tables_not_in_state_dict(self) -> None:
        keys = PhiModel(_tiny_config()).state_dict().keys()
        assert not any("rope" in key for key in keys)

    def test_layers_are_parallel_blocks(self) -> None:
        model = PhiModel(_tiny_config())
        assert all(isinstance(layer, PhiBlock) for layer in model.layers)


class TestDeterministicInit:

    def test_same_seed_same_weights(self) -> None:
        a = PhiModel(_tiny_config(seed=7)).state_dict()
        b = PhiModel(_tiny_config(seed=7)).state_dict()
        assert all(torch.equal(a[name], b[name]) for name in a)

    def test_different_seed_different_weights(self) -> None:
        a = PhiModel(_tiny_config(seed=1))
        b = PhiModel(_tiny_config(seed=2))
        assert not torch.equal(a.embed.weight, b.embed.weight)

    def test_norms_start_at_identity(self) -> None:
        model = PhiModel(_tiny_config())
        assert torch.equal(model.norm.weight, torch.ones(32))
        assert torch.equal(model.layers[0].ln.bias, torch.zeros(32))


class TestKVCacheEquivalence:

    @torch.no_grad()
    def test_incremental_matches_full_pass(self) -> None:
        config = _tiny_config()
        model = PhiModel(config)
        model.eval()
        tokens = torch.randint(0, config.vocab_size, (1, 20), generator=torch.Generator().manual_seed(3))

        full = model(tokens)

        cache = _cache_for(config)
        prefix = model(tokens[:, :8], cache)
        steps = [model(tokens[:, i:i + 1], cache) for i in range(8, 20)]
        incremental = torch.cat([prefix, *steps], dim=1)

        assert cache.length == 20
        assert torch.allclose(full, incremental, atol=1e-5)

    @torch.no_grad()
    def test_token_by_token_from_empty_cache(self) -> None:
        config = _tiny_config()
        model = PhiModel(config)
        model.eval()
        tokens = torch.tensor([[5, 9, 13, 2, 77]])

        full = model(tokens)
        cache = _cache_for(config, initial_capacity=1)
        last = None
        for i in range(tokens.shape[1]):
            last = model(tokens[:, i:i + 1], cache)

        assert last is not None
        assert torch.allclose(full[:, -1], last[:, -1], atol=1e-5)

    @torch.no_grad()
    def test_cache_overflow_rejected(self) -> None:
        config = _tiny_config(max_seq_len=16)
        model = PhiModel(config)
        cache = _cache_for(config)
        model(torch.zeros(1, 16, dtype=torch.long), cache)

        with pytest.raises(RuntimeError):
            model(torch.zeros(1, 1, dtype=torch.long), cache)
