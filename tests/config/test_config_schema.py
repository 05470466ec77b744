# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the pydantic config schemas.

Validates field constraints, defaults, and the cross-field model checks.
"""

import pytest
from pydantic import ValidationError

from phigen.config.schema import GlobalConfig, ModelConfig, PhigenConfig, RuntimeConfig


class TestGlobalConfigSchema:
    def test_seed_must_be_non_negative(self) -> None:
        with pytest.raises(ValidationError):
            GlobalConfig(config_version="1.0.0", seed=-1)

    def test_seed_zero_is_valid(self) -> None:
        assert GlobalConfig(config_version="1.0.0", seed=0).seed == 0

    def test_default_log_level_is_info(self) -> None:
        assert GlobalConfig(config_version="1.0.0").log_level == "INFO"

    def test_default_project_name(self) -> None:
        assert GlobalConfig(config_version="1.0.0").project_name == "phigen"

    def test_config_version_is_required(self) -> None:
        with pytest.raises(ValidationError):
            GlobalConfig()  # type: ignore[call-arg]


class TestModelConfigSchema:
    def test_defaults_are_phi_1_5(self) -> None:
        cfg = ModelConfig(config_version="1.0.0")
        assert (cfg.hidden_size, cfg.n_layers, cfg.n_heads, cfg.rotary_dim) == (2048, 24, 32, 32)
        assert cfg.vocab_size == 51200
        assert cfg.preset is None

    def test_known_preset_accepted(self) -> None:
        assert ModelConfig(config_version="1.0.0", preset="dolphin-phi2").preset == "dolphin-phi2"

    def test_unknown_preset_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown preset"):
            ModelConfig(config_version="1.0.0", preset="gpt-2")

    def test_heads_must_divide_hidden(self) -> None:
        with pytest.raises(ValidationError, match="divisible"):
            ModelConfig(config_version="1.0.0", hidden_size=100, n_heads=3, rotary_dim=2)

    def test_rotary_dim_must_fit_head(self) -> None:
        with pytest.raises(ValidationError, match="rotary_dim"):
            ModelConfig(config_version="1.0.0", hidden_size=64, n_heads=8, rotary_dim=16)


class TestRuntimeConfigSchema:
    def test_defaults(self) -> None:
        cfg = RuntimeConfig(config_version="1.0.0")
        assert cfg.stream is True
        assert cfg.seed == 42
        assert cfg.stop_strings == []
        assert cfg.repetition_window == 64

    def test_stop_mode_values(self) -> None:
        assert RuntimeConfig(config_version="1.0.0", stop_mode="contains").stop_mode == "contains"
        with pytest.raises(ValidationError):
            RuntimeConfig(config_version="1.0.0", stop_mode="regex")

    def test_negative_buffer_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RuntimeConfig(config_version="1.0.0", max_buffered_fragments=-1)

    def test_unknown_field_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RuntimeConfig(config_version="1.0.0", port=8080)  # type: ignore[call-arg]


class TestPhigenConfigSchema:
    def test_requires_global_section(self) -> None:
        with pytest.raises(ValidationError):
            PhigenConfig.model_validate({})

    def test_rejects_top_level_unknown_fields(self) -> None:
        with pytest.raises(ValidationError):
            PhigenConfig.model_validate({"global": {"config_version": "1.0.0"}, "dataset": {}})

    def test_global_alias(self) -> None:
        config = PhigenConfig.model_validate({"global": {"config_version": "1.0.0"}})
        assert config.global_config.config_version == "1.0.0"
