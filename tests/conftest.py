# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for phigen tests.

Config files of every shape live here, along with a tiny exported model
and tokenizer on disk so the loader and the CLI can be exercised end to
end. Engine fixtures are in tests/serving/conftest.py.
"""

import json
import textwrap
from pathlib import Path

import pytest
import torch

from phigen.model.config import PhiModelConfig
from phigen.model.transformer import PhiModel
from phigen.utils.hashing import compute_sha256

from tests.serving.scripted import TINY_CONTEXT, TINY_VOCAB, build_byte_tokenizer


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """The smallest config that passes schema validation: a global section."""
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          project_name: "phigen-test"
          seed: 42
          log_level: "DEBUG"
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """Valid YAML that fails schema validation (config_version missing)."""
    config_content = textwrap.dedent("""\
        global:
          project_name: "phigen-test"
          seed: 42
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file


@pytest.fixture()
def tiny_phi_config() -> PhiModelConfig:
    return PhiModelConfig(
        vocab_size=TINY_VOCAB,
        dim=32,
        n_layers=2,
        n_heads=4,
        rotary_dim=4,
        max_seq_len=TINY_CONTEXT,
        seed=42,
    )


@pytest.fixture()
def tiny_phi_model(tiny_phi_config: PhiModelConfig) -> PhiModel:
    model = PhiModel(tiny_phi_config)
    model.eval()
    return model


@pytest.fixture()
def model_export_dir(tmp_path: Path, tiny_phi_model: PhiModel) -> Path:
    """A directory laid out like an exported model: model.pt plus metadata."""
    export_dir = tmp_path / "model"
    export_dir.mkdir()

    weights_path = export_dir / "model.pt"
    torch.save(tiny_phi_model.state_dict(), weights_path)

    metadata = {"weights_sha256": compute_sha256(weights_path), "preset": None}
    (export_dir / "export_metadata.json").write_text(json.dumps(metadata, indent=2), encoding="utf-8")
    return export_dir


@pytest.fixture()
def tokenizer_dir(tmp_path: Path) -> Path:
    tok_dir = tmp_path / "tokenizer"
    tok_dir.mkdir()
    build_byte_tokenizer().save(str(tok_dir / "tokenizer.json"))
    return tok_dir


@pytest.fixture()
def runtime_config_yaml(tmp_path: Path, model_export_dir: Path, tokenizer_dir: Path) -> Path:
    """A config file with global, model and runtime sections for the tiny model."""
    config_content = textwrap.dedent(f"""\
        global:
          config_version: "1.0.0"
          project_name: "phigen-test"
          seed: 42
          log_level: "DEBUG"
        model:
          config_version: "1.0.0"
          vocab_size: {TINY_VOCAB}
          hidden_size: 32
          n_layers: 2
          n_heads: 4
          rotary_dim: 4
          context_length: {TINY_CONTEXT}
        runtime:
          config_version: "1.0.0"
          device: "cpu"
          model_path: "{model_export_dir}"
          tokenizer_path: "{tokenizer_dir}"
          stream: true
          max_tokens: 8
          temperature: 0.0
          seed: 42
    """)
    config_file = tmp_path / "runtime_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file
