# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Model configuration for the Phi family.

This is a plain data object (not pydantic) because it's read inside torch
modules on every forward pass. Validation of user-supplied values happens
in config/schema.py; presets here are known-good.

The published Phi checkpoints all share one layout and differ only in
size, so a preset is just a set of dimensions.
"""


class PhiModelConfig:
    """
    Architecture dimensions for one Phi model.

    Args:
        vocab_size: Rows in the embedding table / width of the LM head.
        dim: Hidden dimension.
        n_layers: Number of parallel attention+MLP blocks.
        n_heads: Number of attention heads. head_dim is dim // n_heads.
        rotary_dim: How many leading dims of each head get rotary encoding.
        intermediate_size: MLP inner width. None means 4 * dim.
        max_seq_len: Context length; also sizes the rotary tables.
        norm_eps: LayerNorm epsilon.
        rope_theta: Rotary base frequency.
        init_std: Standard deviation for weight initialization.
        seed: Random seed for deterministic initialization.
    """

    __slots__ = (
        "vocab_size",
        "dim",
        "n_layers",
        "n_heads",
        "rotary_dim",
        "intermediate_size",
        "max_seq_len",
        "norm_eps",
        "rope_theta",
        "init_std",
        "seed",
    )

    def __init__(
        self,
        vocab_size: int,
        dim: int,
        n_layers: int,
        n_heads: int,
        rotary_dim: int = 32,
        intermediate_size: int | None = None,
        max_seq_len: int = 2048,
        norm_eps: float = 1e-5,
        rope_theta: float = 10000.0,
        init_std: float = 0.02,
        seed: int = 42,
    ) -> None:
        if dim % n_heads != 0:
            raise ValueError(f"dim ({dim}) must be divisible by n_heads ({n_heads})")
        if rotary_dim > dim // n_heads or rotary_dim % 2 != 0:
            raise ValueError(
                f"rotary_dim ({rotary_dim}) must be even and at most head_dim ({dim // n_heads})"
            )

        self.vocab_size = vocab_size
        self.dim = dim
        self.n_layers = n_layers
        self.n_heads = n_heads
        self.rotary_dim = rotary_dim
        self.intermediate_size = intermediate_size if intermediate_size is not None else 4 * dim
        self.max_seq_len = max_seq_len
        self.norm_eps = norm_eps
        self.rope_theta = rope_theta
        self.init_std = init_std
        self.seed = seed

    @property
    def head_dim(self) -> int:
        return self.dim // self.n_heads

    @classmethod
    def from_preset(cls, name: str, seed: int = 42) -> "PhiModelConfig":
        """Build the config for a named Phi variant."""
        try:
            dims = PHI_PRESETS[name]
        except KeyError:
            raise ValueError(
                f"Unknown preset '{name}'. Known presets: {', '.join(sorted(PHI_PRESETS))}"
            ) from None
        return cls(seed=seed, **dims)

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={getattr(self, name)!r}" for name in self.__slots__)
        return f"PhiModelConfig({fields})"


PHI_PRESETS: dict[str, dict[str, int]] = {
    "phi-1": {
        "vocab_size": 51200,
        "dim": 2048,
        "n_layers": 24,
        "n_heads": 32,
        "rotary_dim": 32,
        "max_seq_len": 2048,
    },
    "phi-1.5": {
        "vocab_size": 51200,
        "dim": 2048,
        "n_layers": 24,
        "n_heads": 32,
        "rotary_dim": 32,
        "max_seq_len": 2048,
    },
    "phi-2": {
        "vocab_size": 51200,
        "dim": 2560,
        "n_layers": 32,
        "n_heads": 32,
        "rotary_dim": 32,
        "max_seq_len": 2048,
    },
    "puffin-phi-v2": {
        "vocab_size": 50304,
        "dim": 2048,
        "n_layers": 24,
        "n_heads": 32,
        "rotary_dim": 32,
        "max_seq_len": 2048,
    },
    "dolphin-phi2": {
        "vocab_size": 51200,
        "dim": 2560,
        "n_layers": 32,
        "n_heads": 32,
        "rotary_dim": 32,
        "max_seq_len": 2048,
    },
}
