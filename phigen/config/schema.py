# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for phigen.

A config file has up to three sections (`global`, `model` and `runtime`)
and each one maps to a frozen pydantic model here. Frozen means once it's
built you can't mutate it; changing a setting means loading a new config.

All models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

The generation defaults in RuntimeConfig mirror the per-request
GenerationConfig in phigen.serving.generation.core. The schema validates
what comes off disk; GenerationConfig validates what reaches the sampler.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from phigen.model.config import PHI_PRESETS


class GlobalConfig(BaseModel):
    """
    Cross-cutting settings that apply to the whole process.

    Controls reproducibility (seed), observability (log_level, log_file)
    and project identity.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    project_name: str = Field(
        default="phigen", description="Human-readable project identifier"
    )
    seed: int = Field(
        default=42,
        ge=0,
        description="Process-wide random seed applied during bootstrap",
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output, relative to project root",
    )


class ModelConfig(BaseModel):
    """
    Phi architecture definition.

    Either name a preset (phi-1, phi-1.5, phi-2, puffin-phi-v2, dolphin-phi2)
    and the geometry comes from that, or leave preset unset and spell the
    geometry out. The defaults below are phi-1.5.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    preset: Optional[str] = Field(
        default=None,
        description="Named Phi variant; overrides every geometry field when set",
    )
    vocab_size: int = Field(default=51200, ge=2, description="Embedding rows / LM head width")
    hidden_size: int = Field(default=2048, ge=8, description="Model hidden dimension")
    n_layers: int = Field(default=24, ge=1, le=128, description="Number of parallel blocks")
    n_heads: int = Field(default=32, ge=1, description="Number of attention heads")
    rotary_dim: int = Field(
        default=32,
        ge=2,
        description="Leading dims of each head that get rotary encoding",
    )
    intermediate_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="MLP inner width; None means 4 * hidden_size",
    )
    context_length: int = Field(default=2048, ge=16, description="Maximum sequence length")
    norm_eps: float = Field(default=1e-5, gt=0.0, description="LayerNorm epsilon")
    rope_theta: float = Field(default=10000.0, gt=0.0, description="Rotary base frequency")

    @field_validator("preset")
    @classmethod
    def _known_preset(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in PHI_PRESETS:
            raise ValueError(
                f"Unknown preset '{value}'. Known presets: {', '.join(sorted(PHI_PRESETS))}"
            )
        return value

    @model_validator(mode="after")
    def _heads_divide_hidden(self) -> "ModelConfig":
        if self.hidden_size % self.n_heads != 0:
            raise ValueError(
                f"hidden_size ({self.hidden_size}) must be divisible by n_heads ({self.n_heads})"
            )
        head_dim = self.hidden_size // self.n_heads
        if self.rotary_dim > head_dim or self.rotary_dim % 2 != 0:
            raise ValueError(
                f"rotary_dim ({self.rotary_dim}) must be even and at most head_dim ({head_dim})"
            )
        return self


class RuntimeConfig(BaseModel):
    """
    Inference runtime settings: where the artifacts live, which device to
    run on, how the stream behaves, and the default generation options used
    when the CLI doesn't override them.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    device: str = Field(
        default="auto",
        description="'auto', 'cpu', 'cuda', 'cuda:N' or 'mps'",
    )
    model_path: str = Field(
        default="models/phi",
        description="Directory holding model.pt, relative to project root",
    )
    tokenizer_path: str = Field(
        default="models/phi",
        description="Directory holding tokenizer.json, relative to project root",
    )
    stream: bool = Field(default=True, description="Print fragments as they arrive")
    max_buffered_fragments: int = Field(
        default=0,
        ge=0,
        description="Bound on queued fragments between generator and reader; 0 is unbounded",
    )
    max_tokens: int = Field(default=512, ge=1, description="Generated-token limit per request")
    temperature: float = Field(default=0.0, ge=0.0, description="0 means greedy decoding")
    top_k: Optional[int] = Field(default=None, gt=0, description="Keep only the k best tokens")
    top_p: Optional[float] = Field(
        default=None,
        gt=0.0,
        le=1.0,
        description="Nucleus mass to keep",
    )
    repetition_penalty: Optional[float] = Field(
        default=None,
        ge=1.0,
        description="Down-weighting for recently generated tokens",
    )
    repetition_window: int = Field(
        default=64,
        ge=0,
        description="How many recent generated tokens the penalty looks at",
    )
    stop_strings: list[str] = Field(
        default_factory=list,
        description="Generation halts when the output hits any of these",
    )
    stop_mode: Literal["suffix", "contains"] = Field(
        default="suffix",
        description="Whether stop strings must end the text or may appear anywhere in new text",
    )
    seed: Optional[int] = Field(
        default=42,
        ge=0,
        description="Sampling seed; null draws a fresh seed per request",
    )


class PhigenConfig(BaseModel):
    """
    Top-level config container.

    Only `global` is required. Commands that need a model check that the
    `model` and `runtime` sections are present themselves.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    global_config: GlobalConfig = Field(alias="global")
    model: Optional[ModelConfig] = Field(default=None)
    runtime: Optional[RuntimeConfig] = Field(default=None)
