# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Inference engine, the front door of the generation runtime.

This module ties together the compute backend, the tokenizer and the
per-request sessions behind one small interface. Call
`engine.generate_stream("The capital of France is")` and you get a
FragmentStream back straight away; tokenization and the request checks
happen before that returns, and the decoding loop runs on a background
thread feeding the stream.

The engine holds no per-request state. Each request gets its own
session, KV cache and sampler, so several streams can be open at once;
their forward passes take turns on the backend's lock.
"""

import logging
import time

from phigen.logging.logger import get_logger
from phigen.serving.api.schema import GenerateResponse
from phigen.serving.backend.core import ComputeBackend
from phigen.serving.errors import ContextOverflowError, EmptyPromptError
from phigen.serving.generation.core import GenerationConfig
from phigen.serving.metrics.core import ServingMetrics
from phigen.serving.session.core import GenerationSession
from phigen.serving.streaming.core import FragmentStream
from phigen.serving.tokenizer.core import TokenizerAdapter

logger: logging.Logger = get_logger(__name__)


class InferenceEngine:
    """
    High-level generation API.

    This is what the CLI talks to. Build one with a ComputeBackend and a
    TokenizerAdapter, then call generate_stream() or generate().

    The engine doesn't know about CLI arguments or file paths; it takes
    prompts and hands back text.
    """

    def __init__(
        self,
        backend: ComputeBackend,
        tokenizer: TokenizerAdapter,
        max_buffered_fragments: int = 0,
    ) -> None:
        self._backend = backend
        self._tokenizer = tokenizer
        self._max_buffered_fragments = max_buffered_fragments
        self._metrics = ServingMetrics()

    @property
    def metrics(self) -> ServingMetrics:
        return self._metrics

    @property
    def backend(self) -> ComputeBackend:
        return self._backend

    def start_session(
        self,
        prompt: str,
        config: GenerationConfig | None = None,
    ) -> GenerationSession:
        """
        Validate a request and start its session on a background thread.

        Raises:
            EmptyPromptError: The prompt encodes to no tokens.
            ContextOverflowError: Prompt plus max_tokens won't fit in the
                model's context window. Checked before any compute.
        """
        config = config or GenerationConfig()
        prompt_ids = self._tokenizer.encode(prompt)

        if not prompt_ids:
            raise EmptyPromptError("Prompt is empty after tokenization")

        context_length = self._backend.max_context_length
        if len(prompt_ids) + config.max_tokens > context_length:
            raise ContextOverflowError(len(prompt_ids), config.max_tokens, context_length)

        session = GenerationSession(
            backend=self._backend,
            tokenizer=self._tokenizer,
            prompt_ids=prompt_ids,
            config=config,
            stream=FragmentStream(max_buffered=self._max_buffered_fragments),
            metrics=self._metrics,
        )
        session.start()
        return session

    def generate_stream(
        self,
        prompt: str,
        config: GenerationConfig | None = None,
    ) -> FragmentStream:
        """
        Start generating and return the stream to read fragments from.

        Read it with `for fragment in stream` or `async for`. Close it to
        cancel. Request errors (empty prompt, context overflow) raise here,
        synchronously; a failure mid-generation raises from the iteration
        after the last good fragment.
        """
        return self.start_session(prompt, config).stream

    def generate(
        self,
        prompt: str,
        config: GenerationConfig | None = None,
    ) -> GenerateResponse:
        """
        Generate text from a prompt and return it all at once.

        Runs the same streaming path and collects the fragments, so the
        result matches what a streaming reader would have seen.
        """
        start = time.monotonic()
        session = self.start_session(prompt, config)

        with session.stream as stream:
            text = "".join(fragment.text for fragment in stream)
        session.join()

        elapsed_ms = (time.monotonic() - start) * 1000.0
        generated = len(session.generated_tokens)
        tps = (generated / elapsed_ms * 1000.0) if elapsed_ms > 0 else 0.0

        return GenerateResponse(
            text=text,
            tokens_generated=generated,
            prompt_tokens=session.prompt_tokens,
            total_time_ms=round(elapsed_ms, 2),
            tokens_per_second=round(tps, 2),
            finish_reason=session.termination_reason,
        )
