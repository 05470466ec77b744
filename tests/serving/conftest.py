# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared fixtures for serving tests.

A tiny real PhiModel (random weights, 257-token vocab, from the root
conftest) covers the actual compute path. ScriptedModel
(tests/serving/scripted.py) covers everything that needs to know exactly
what text comes out.
"""

from collections.abc import Callable

import pytest
import torch

from phigen.model.transformer import PhiModel
from phigen.serving.backend.core import ComputeBackend
from phigen.serving.engine.core import InferenceEngine
from phigen.serving.tokenizer.core import TokenizerAdapter

from tests.serving.scripted import ScriptedModel, build_byte_tokenizer


@pytest.fixture()
def byte_tokenizer() -> TokenizerAdapter:
    return TokenizerAdapter(build_byte_tokenizer())


@pytest.fixture()
def scripted_engine_factory(
    byte_tokenizer: TokenizerAdapter,
) -> Callable[..., tuple[InferenceEngine, ScriptedModel]]:
    """
    Build an engine whose model emits the given text, then EOS.

    Extra keyword arguments go to ScriptedModel; `max_buffered` goes to
    the engine.
    """

    def factory(text: str, max_buffered: int = 0, **model_kwargs: object) -> tuple[InferenceEngine, ScriptedModel]:
        model = ScriptedModel(
            script=byte_tokenizer.encode(text),
            fallback=byte_tokenizer.eos_token_id,
            **model_kwargs,
        )
        backend = ComputeBackend(model, torch.device("cpu"))
        engine = InferenceEngine(backend, byte_tokenizer, max_buffered_fragments=max_buffered)
        return engine, model

    return factory


@pytest.fixture()
def tiny_engine(tiny_phi_model: PhiModel, byte_tokenizer: TokenizerAdapter) -> InferenceEngine:
    return InferenceEngine(ComputeBackend(tiny_phi_model, torch.device("cpu")), byte_tokenizer)
