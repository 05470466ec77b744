# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Artifact loader for the generation runtime.

Finds the Phi weights and tokenizer on disk, checks the weights against
the checksum in the export metadata when there is one, builds the model
and hands everything back as one bundle.

The loader is strict. A missing file or a checksum mismatch stops
startup with an error rather than serving from a model we can't vouch
for. Nothing here touches the network.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import torch

from phigen.config.schema import ModelConfig, RuntimeConfig
from phigen.logging.logger import get_logger
from phigen.model.config import PhiModelConfig
from phigen.model.transformer import PhiModel
from phigen.serving.tokenizer.core import TokenizerAdapter
from phigen.utils.hashing import verify_checksum
from phigen.utils.paths import resolve_artifact_path

logger: logging.Logger = get_logger(__name__)


@dataclass(frozen=True)
class LoadedArtifacts:
    """Everything the engine needs, bundled together after loading."""

    model: PhiModel
    tokenizer: TokenizerAdapter
    model_config: PhiModelConfig
    device: torch.device
    metadata: dict[str, object]


def resolve_device(device_str: str) -> torch.device:
    """
    Turn the config's device string into a torch device.

    "auto" picks CUDA when it's there and CPU otherwise.
    """
    if device_str == "auto":
        if torch.cuda.is_available():
            return torch.device("cuda")
        return torch.device("cpu")
    return torch.device(device_str)


def _find_model_weights(model_dir: Path) -> Path:
    """model.pt if present, else the first *.pt in the directory."""
    standard = model_dir / "model.pt"
    if standard.is_file():
        return standard

    pt_files = sorted(model_dir.glob("*.pt"))
    if pt_files:
        return pt_files[0]

    raise FileNotFoundError(f"No model weights (.pt file) found in {model_dir}")


def _verify_checksum(weights_path: Path, expected_hash: str | None) -> None:
    """
    Compare the weights against the exported SHA-256.

    No hash in the metadata means nothing to check against; that's logged
    and loading carries on. A hash that doesn't match is fatal.
    """
    if expected_hash is None:
        logger.warning("No checksum available for weights, skipping verification")
        return

    if not verify_checksum(weights_path, expected_hash):
        raise RuntimeError(
            f"Weights checksum mismatch. "
            f"Expected: {expected_hash.strip()[:16]}... "
            f"The model file may be corrupted."
        )
    logger.info("Weights checksum verified", extra={"hash": expected_hash.strip().lower()[:16] + "..."})


def _load_export_metadata(model_dir: Path) -> dict[str, object]:
    meta_path = model_dir / "export_metadata.json"
    if meta_path.is_file():
        return json.loads(meta_path.read_text(encoding="utf-8"))
    return {}


def build_model_config(model_cfg: ModelConfig, seed: int = 42) -> PhiModelConfig:
    """
    Translate the YAML model section into the model's own config.

    A preset wins over the geometry fields. Otherwise the schema's
    user-facing names (hidden_size, context_length) map onto the model's
    (dim, max_seq_len).
    """
    if model_cfg.preset is not None:
        return PhiModelConfig.from_preset(model_cfg.preset, seed=seed)

    return PhiModelConfig(
        vocab_size=model_cfg.vocab_size,
        dim=model_cfg.hidden_size,
        n_layers=model_cfg.n_layers,
        n_heads=model_cfg.n_heads,
        rotary_dim=model_cfg.rotary_dim,
        intermediate_size=model_cfg.intermediate_size,
        max_seq_len=model_cfg.context_length,
        norm_eps=model_cfg.norm_eps,
        rope_theta=model_cfg.rope_theta,
        seed=seed,
    )


def load_tokenizer(tokenizer_dir: Path) -> TokenizerAdapter:
    """Load tokenizer.json from a directory (or a direct path to the file)."""
    tokenizer_path = tokenizer_dir if tokenizer_dir.suffix == ".json" else tokenizer_dir / "tokenizer.json"
    if not tokenizer_path.is_file():
        raise FileNotFoundError(f"Tokenizer not found: {tokenizer_path}")
    return TokenizerAdapter.from_file(tokenizer_path)


def load_artifacts(
    model_cfg: ModelConfig,
    runtime_cfg: RuntimeConfig,
    project_root: Path,
    seed: int = 42,
) -> LoadedArtifacts:
    """
    Load everything needed for generation in one shot.

      1. Resolve the device and find the weights
      2. Verify the weights checksum if the export metadata has one
      3. Build the Phi model from config and load the state dict
      4. Move it to the device and switch to eval mode
      5. Load the tokenizer

    Args:
        model_cfg: Model architecture section of the config.
        runtime_cfg: Runtime section (device and artifact paths).
        project_root: Base for relative artifact paths.
        seed: Seed for the (immediately overwritten) weight init.

    Raises:
        FileNotFoundError: Model directory, weights or tokenizer missing.
        RuntimeError: Checksum mismatch, or weights that don't fit the
            configured architecture.
    """
    device = resolve_device(runtime_cfg.device)
    model_dir = resolve_artifact_path(project_root, runtime_cfg.model_path)

    if not model_dir.is_dir():
        raise FileNotFoundError(f"Model directory not found: {model_dir}")

    metadata = _load_export_metadata(model_dir)
    weights_path = _find_model_weights(model_dir)
    expected_hash = metadata.get("weights_sha256")
    _verify_checksum(weights_path, expected_hash)

    phi_cfg = build_model_config(model_cfg, seed)
    model = PhiModel(phi_cfg)

    # Load onto CPU first so a GPU-saved checkpoint works on a CPU-only host.
    state_dict = torch.load(weights_path, map_location="cpu", weights_only=True)
    model.load_state_dict(state_dict)
    model = model.to(device)
    model.eval()

    tokenizer = load_tokenizer(resolve_artifact_path(project_root, runtime_cfg.tokenizer_path))
    if tokenizer.vocab_size > phi_cfg.vocab_size:
        raise RuntimeError(
            f"Tokenizer vocabulary ({tokenizer.vocab_size}) is larger than the "
            f"model's embedding table ({phi_cfg.vocab_size})"
        )

    logger.info(
        "Artifacts loaded successfully",
        extra={
            "device": str(device),
            "parameters": model.count_parameters(),
            "model_path": str(model_dir),
            "preset": model_cfg.preset,
        },
    )

    return LoadedArtifacts(
        model=model,
        tokenizer=tokenizer,
        model_config=phi_cfg,
        device=device,
        metadata=metadata,
    )
