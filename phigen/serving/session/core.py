# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
The generation loop for one request.

A session owns everything that belongs to a single request: its KV
cache, its sampler, its stop conditions, its incremental decoder and the
producer end of the stream it writes to. It runs on its own background thread and nothing
else touches its state while it does.

Lifecycle:

  initializing  cache allocated and bound, the whole prompt run through
                the model in one forward pass to prime it
  stepping      sample a token, check the stop conditions, push any newly
                completed text, then run the model on that one token
  halted        terminal; the cache is released and the reason recorded

Position bookkeeping: `position` is how many tokens the model has
processed, which always equals the cache length. The last sampled token
is never fed back (there's nothing left to predict), so after M generated
tokens the position is len(prompt) + M - 1.
"""

import logging
import threading
import time
import uuid
from collections.abc import Sequence
from enum import Enum

from phigen.logging.logger import get_logger
from phigen.serving.api.schema import TerminationReason
from phigen.serving.backend.core import ComputeBackend
from phigen.serving.cache.core import KVCache
from phigen.serving.errors import ComputeError, StreamClosedError
from phigen.serving.generation.core import GenerationConfig, Sampler, resolve_seed
from phigen.serving.metrics.core import RequestMetrics, ServingMetrics
from phigen.serving.stopping.core import StopEngine
from phigen.serving.streaming.core import FragmentBuilder, FragmentSink, FragmentStream
from phigen.serving.tokenizer.core import TokenizerAdapter

logger: logging.Logger = get_logger(__name__)


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    STEPPING = "stepping"
    HALTED = "halted"


class _SessionLoop:
    """
    The state the session thread works on.

    Writes only to the producer end of the stream, so the background
    thread never keeps the reader's handle alive.
    """

    def __init__(
        self,
        session_id: str,
        backend: ComputeBackend,
        tokenizer: TokenizerAdapter,
        prompt_ids: list[int],
        config: GenerationConfig,
        sink: FragmentSink,
        metrics: ServingMetrics | None,
    ) -> None:
        self.session_id = session_id
        self._backend = backend
        self._tokenizer = tokenizer
        self._prompt_ids = prompt_ids
        self.prompt_tokens = len(prompt_ids)
        self._config = config
        self._sink = sink
        self._metrics = metrics

        self.state = SessionState.INITIALIZING
        self.reason = TerminationReason.NONE
        self.error: BaseException | None = None
        self.generated: list[int] = []
        self.position = 0
        self._cache_mb = 0.0

    def run(self) -> None:
        """
        Drive the session from prompt to halt.

        Never raises: failures end the session with reason ERROR and reach
        the reader through the stream.
        """
        config = self._config
        start = time.monotonic()
        first_token_ms = 0.0

        stop_token_ids: set[int] = set(config.stop_token_ids)
        eos_token_id = config.eos_token_id
        if eos_token_id is None:
            eos_token_id = self._tokenizer.eos_token_id
        if eos_token_id is not None:
            stop_token_ids.add(eos_token_id)

        seed = resolve_seed(config.seed)
        sampler = Sampler(config, seed, stop_token_ids)
        stop_engine = StopEngine(config.stop_strings, config.stop_mode, config.max_tokens)
        decoder = self._tokenizer.incremental_decoder()
        builder = FragmentBuilder()

        logger.info(
            "Session started",
            extra={
                "session_id": self.session_id,
                "prompt_tokens": len(self._prompt_ids),
                "max_tokens": config.max_tokens,
                "temperature": config.temperature,
                "seed": seed,
            },
        )

        reason = TerminationReason.NONE
        error: BaseException | None = None
        cache: KVCache | None = None
        try:
            cache = self._backend.new_cache()
            cache.bind(self.session_id)
            self._check_open()
            logits = self._backend.forward(self._prompt_ids, cache)
            self.position = cache.length
            self.state = SessionState.STEPPING

            unemitted_ids: list[int] = []
            while True:
                step = len(self.generated)
                token_id, should_continue = sampler.sample(logits, self.generated, step)
                if step == 0:
                    first_token_ms = (time.monotonic() - start) * 1000.0

                if not should_continue:
                    reason = TerminationReason.STOP_TOKEN
                    break

                self.generated.append(token_id)
                unemitted_ids.append(token_id)

                text, matched = stop_engine.feed(decoder.push(token_id))
                if text:
                    self._sink.push(builder.build(text, unemitted_ids))
                    unemitted_ids = []
                if matched:
                    reason = TerminationReason.STOP_STRING
                    break
                if stop_engine.reached_max(len(self.generated)):
                    reason = TerminationReason.MAX_LENGTH
                    break

                self._check_open()
                logits = self._backend.forward([token_id], cache)
                self.position = cache.length

            if reason is not TerminationReason.STOP_STRING:
                text, matched = stop_engine.feed(decoder.finish())
                if matched:
                    reason = TerminationReason.STOP_STRING
                else:
                    text += stop_engine.flush()
                if text:
                    self._sink.push(builder.build(text, unemitted_ids))

        except StreamClosedError:
            reason = TerminationReason.CANCELLED
        except ComputeError as err:
            reason = TerminationReason.ERROR
            error = err
            logger.error(
                "Session failed",
                extra={"session_id": self.session_id, "step": len(self.generated), "error": str(err)},
            )
        except Exception as err:
            reason = TerminationReason.ERROR
            error = err
            logger.exception("Session crashed", extra={"session_id": self.session_id})
        finally:
            self._halt(reason, error, cache_mb=cache.memory_mb() if cache is not None else 0.0)
            if cache is not None:
                cache.release()

            elapsed_ms = (time.monotonic() - start) * 1000.0
            generated = len(self.generated)
            tps = (generated / elapsed_ms * 1000.0) if elapsed_ms > 0 else 0.0
            if self._metrics is not None:
                self._metrics.record(
                    RequestMetrics(
                        session_id=self.session_id,
                        prompt_tokens=len(self._prompt_ids),
                        generated_tokens=generated,
                        total_time_ms=elapsed_ms,
                        first_token_ms=first_token_ms,
                        tokens_per_second=tps,
                        peak_memory_mb=ServingMetrics.get_gpu_memory_mb(),
                        cache_memory_mb=self._cache_mb,
                        termination_reason=reason,
                    )
                )

            logger.info(
                "Session halted",
                extra={
                    "session_id": self.session_id,
                    "termination_reason": reason.value,
                    "generated_tokens": generated,
                    "position": self.position,
                },
            )
            self._sink.finish(reason, error)

    def _check_open(self) -> None:
        if self._sink.closed:
            raise StreamClosedError(f"Consumer closed session {self.session_id}")

    def _halt(self, reason: TerminationReason, error: BaseException | None, cache_mb: float) -> None:
        self.reason = reason
        self.error = error
        self._cache_mb = cache_mb
        self.state = SessionState.HALTED


class GenerationSession:
    """
    One request's autoregressive decoding loop.

    Built by InferenceEngine after the prompt has been tokenized and
    checked against the context window. Call start() to run it on a
    daemon thread, or run() to drive it on the current one.

    This object is the caller's handle and keeps the stream alive. The
    thread itself only holds the stream's sink, so once the caller lets
    go of both the handle and the stream, the stream closes and the
    session cancels at its next step.
    """

    def __init__(
        self,
        backend: ComputeBackend,
        tokenizer: TokenizerAdapter,
        prompt_ids: Sequence[int],
        config: GenerationConfig,
        stream: FragmentStream,
        metrics: ServingMetrics | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._stream = stream
        self._loop = _SessionLoop(
            self.session_id,
            backend,
            tokenizer,
            list(prompt_ids),
            config,
            stream.sink(),
            metrics,
        )
        self._thread: threading.Thread | None = None

    @property
    def stream(self) -> FragmentStream:
        return self._stream

    @property
    def state(self) -> SessionState:
        return self._loop.state

    @property
    def termination_reason(self) -> TerminationReason:
        return self._loop.reason

    @property
    def error(self) -> BaseException | None:
        return self._loop.error

    @property
    def position(self) -> int:
        """Tokens the model has processed so far (prompt included)."""
        return self._loop.position

    @property
    def prompt_tokens(self) -> int:
        return self._loop.prompt_tokens

    @property
    def generated_tokens(self) -> list[int]:
        """Generated ids, not including a stop token that ended the session."""
        return list(self._loop.generated)

    def start(self) -> None:
        """Run the loop on a background daemon thread."""
        if self._thread is not None:
            raise RuntimeError(f"Session {self.session_id} was already started")
        self._thread = threading.Thread(
            target=self._loop.run,
            name=f"phigen-session-{self.session_id}",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the background thread. True if it has exited."""
        if self._thread is None:
            return self._loop.state is SessionState.HALTED
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def run(self) -> None:
        """Drive the session on the current thread. Never raises."""
        self._loop.run()
