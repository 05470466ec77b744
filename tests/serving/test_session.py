# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for the per-request generation loop."""

import gc
import threading
import time
from collections.abc import Callable

import pytest
import torch

from phigen.serving.api.schema import TerminationReason
from phigen.serving.backend.core import ComputeBackend
from phigen.serving.engine.core import InferenceEngine
from phigen.serving.errors import ComputeError
from phigen.serving.generation.core import GenerationConfig
from phigen.serving.metrics.core import ServingMetrics
from phigen.serving.session.core import GenerationSession, SessionState
from phigen.serving.streaming.core import FragmentStream
from phigen.serving.tokenizer.core import TokenizerAdapter

from tests.serving.scripted import ScriptedModel

EngineFactory = Callable[..., tuple[InferenceEngine, ScriptedModel]]

PROMPT = "The capital of France is"


class TestSessionTermination:

    def test_max_length(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory(" Paris, of course")
        session = engine.start_session(PROMPT, GenerationConfig(max_tokens=6))

        text = "".join(fragment.text for fragment in session.stream)
        session.join(timeout=5.0)

        assert text == " Paris"
        assert session.termination_reason is TerminationReason.MAX_LENGTH
        assert session.stream.termination_reason is TerminationReason.MAX_LENGTH
        assert session.state is SessionState.HALTED

    def test_single_token(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory(" Paris")
        session = engine.start_session(PROMPT, GenerationConfig(max_tokens=1))

        fragments = list(session.stream)
        session.join(timeout=5.0)

        assert [fragment.text for fragment in fragments] == [" "]
        assert session.termination_reason is TerminationReason.MAX_LENGTH

    def test_eos_ends_with_stop_token(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("short")
        session = engine.start_session(PROMPT, GenerationConfig(max_tokens=50))

        text = "".join(fragment.text for fragment in session.stream)
        session.join(timeout=5.0)

        assert text == "short"
        assert session.termination_reason is TerminationReason.STOP_TOKEN
        assert len(session.generated_tokens) == 5

    def test_configured_stop_token(
        self, scripted_engine_factory: EngineFactory, byte_tokenizer: TokenizerAdapter
    ) -> None:
        engine, _ = scripted_engine_factory("ab;cd")
        semicolon = byte_tokenizer.encode(";")[0]
        session = engine.start_session(PROMPT, GenerationConfig(max_tokens=20, stop_token_ids={semicolon}))

        text = "".join(fragment.text for fragment in session.stream)
        session.join(timeout=5.0)

        assert text == "ab"
        assert session.termination_reason is TerminationReason.STOP_TOKEN
        assert semicolon not in session.generated_tokens

    def test_stop_string_is_not_emitted(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("answer.\n\nExtra")
        session = engine.start_session("Q:", GenerationConfig(max_tokens=40, stop_strings={"\n\n"}))

        text = "".join(fragment.text for fragment in session.stream)
        session.join(timeout=5.0)

        assert text == "answer."
        assert session.termination_reason is TerminationReason.STOP_STRING

    def test_stop_string_contains_mode(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("one END two")
        config = GenerationConfig(max_tokens=40, stop_strings={"END"}, stop_mode="contains")
        session = engine.start_session("Go", config)

        text = "".join(fragment.text for fragment in session.stream)
        session.join(timeout=5.0)

        assert text == "one "
        assert session.termination_reason is TerminationReason.STOP_STRING

    def test_held_back_text_flushed_on_max_length(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("wait\n")
        session = engine.start_session("Go", GenerationConfig(max_tokens=5, stop_strings={"\n\n"}))

        text = "".join(fragment.text for fragment in session.stream)
        session.join(timeout=5.0)

        assert text == "wait\n"
        assert session.termination_reason is TerminationReason.MAX_LENGTH


class TestSessionFragments:

    def test_steps_are_contiguous(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("hello world")
        fragments = list(engine.generate_stream("Hi", GenerationConfig(max_tokens=30)))
        assert [fragment.step for fragment in fragments] == list(range(len(fragments)))

    def test_multibyte_characters_arrive_whole(
        self, scripted_engine_factory: EngineFactory, byte_tokenizer: TokenizerAdapter
    ) -> None:
        engine, _ = scripted_engine_factory("é!")
        fragments = list(engine.generate_stream("Hi", GenerationConfig(max_tokens=30)))

        assert [fragment.text for fragment in fragments] == ["é", "!"]
        assert list(fragments[0].token_ids) == byte_tokenizer.encode("é")
        assert all("\ufffd" not in fragment.text for fragment in fragments)

    def test_fragment_ids_cover_every_emitted_token(
        self, scripted_engine_factory: EngineFactory, byte_tokenizer: TokenizerAdapter
    ) -> None:
        text = "naïve 🚀"
        engine, _ = scripted_engine_factory(text)
        fragments = list(engine.generate_stream("Hi", GenerationConfig(max_tokens=30)))

        ids = [token_id for fragment in fragments for token_id in fragment.token_ids]
        assert ids == byte_tokenizer.encode(text)


class TestSessionPosition:

    def test_position_after_max_length(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory(" Paris")
        session = engine.start_session(PROMPT, GenerationConfig(max_tokens=6))
        list(session.stream)
        session.join(timeout=5.0)

        # the last sampled token is never fed back
        assert session.position == session.prompt_tokens + 6 - 1
        assert engine.backend.forward_calls == 6

    def test_position_after_stop_token(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("abc")
        session = engine.start_session(PROMPT, GenerationConfig(max_tokens=20))
        list(session.stream)
        session.join(timeout=5.0)

        assert session.termination_reason is TerminationReason.STOP_TOKEN
        assert session.position == session.prompt_tokens + 3
        assert session.position == session.prompt_tokens + engine.backend.forward_calls - 1

    def test_position_with_real_model(self, tiny_engine: InferenceEngine) -> None:
        session = tiny_engine.start_session("hello there", GenerationConfig(max_tokens=7, temperature=0.9, seed=3))
        list(session.stream)
        session.join(timeout=30.0)

        assert session.position == session.prompt_tokens + tiny_engine.backend.forward_calls - 1


class TestSessionFailures:

    def test_compute_error_after_last_good_fragment(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("abcdef", fail_at_call=3)
        session = engine.start_session("Go", GenerationConfig(max_tokens=20))

        received: list[str] = []
        with pytest.raises(ComputeError):
            for fragment in session.stream:
                received.append(fragment.text)
        session.join(timeout=5.0)

        assert "".join(received) == "abc"
        assert session.termination_reason is TerminationReason.ERROR
        assert isinstance(session.error, ComputeError)

    def test_nan_logits_are_a_compute_error(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("abcdef", nan_at_call=2)
        stream = engine.generate_stream("Go", GenerationConfig(max_tokens=20))

        received: list[str] = []
        with pytest.raises(ComputeError, match="NaN"):
            for fragment in stream:
                received.append(fragment.text)

        assert "".join(received) == "ab"

    def test_failure_during_prefill(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("abc", fail_at_call=0)
        stream = engine.generate_stream("Go", GenerationConfig(max_tokens=5))

        with pytest.raises(ComputeError):
            list(stream)
        assert stream.termination_reason is TerminationReason.ERROR


class TestSessionCancellation:

    def test_close_stops_the_model(self, scripted_engine_factory: EngineFactory) -> None:
        engine, model = scripted_engine_factory("x" * 100, max_buffered=1, delay=0.01)
        session = engine.start_session("Go", GenerationConfig(max_tokens=100))

        first = next(iter(session.stream))
        session.stream.close()

        assert session.join(timeout=5.0)
        calls_at_halt = model.total_calls
        time.sleep(0.1)

        assert first.text == "x"
        assert session.termination_reason is TerminationReason.CANCELLED
        assert session.stream.termination_reason is TerminationReason.CANCELLED
        assert model.total_calls == calls_at_halt
        assert calls_at_halt < 100

    def test_closed_before_prefill(
        self, byte_tokenizer: TokenizerAdapter
    ) -> None:
        model = ScriptedModel(script=[], fallback=byte_tokenizer.eos_token_id)
        backend = ComputeBackend(model, torch.device("cpu"))
        stream = FragmentStream()
        stream.close()

        session = GenerationSession(backend, byte_tokenizer, byte_tokenizer.encode("Go"), GenerationConfig(), stream)
        session.run()

        assert session.termination_reason is TerminationReason.CANCELLED
        assert model.total_calls == 0

    def test_backpressure_pauses_generation(self, scripted_engine_factory: EngineFactory) -> None:
        engine, model = scripted_engine_factory("abcdefgh", max_buffered=2)
        session = engine.start_session("Go", GenerationConfig(max_tokens=8))
        time.sleep(0.3)

        # two fragments queued, the third waiting for room
        assert session.state is SessionState.STEPPING
        assert model.total_calls <= 3

        text = "".join(fragment.text for fragment in session.stream)
        assert text == "abcdefgh"
        assert session.join(timeout=5.0)

    def test_dropping_the_stream_cancels(self, scripted_engine_factory: EngineFactory) -> None:
        """A reader that walks away without close() still stops the session."""
        engine, model = scripted_engine_factory("x" * 100, max_buffered=1, delay=0.01)
        stream = engine.generate_stream("Go", GenerationConfig(max_tokens=100))
        next(iter(stream))

        del stream
        gc.collect()

        deadline = time.monotonic() + 5.0
        while engine.metrics.total_requests == 0 and time.monotonic() < deadline:
            time.sleep(0.02)

        assert engine.metrics.termination_counts().get("cancelled") == 1
        assert model.total_calls < 100


class TestSessionLifecycle:

    def test_run_on_current_thread(self, byte_tokenizer: TokenizerAdapter) -> None:
        model = ScriptedModel(script=byte_tokenizer.encode("ok"), fallback=byte_tokenizer.eos_token_id)
        backend = ComputeBackend(model, torch.device("cpu"))
        metrics = ServingMetrics()
        session = GenerationSession(
            backend,
            byte_tokenizer,
            byte_tokenizer.encode("Go"),
            GenerationConfig(max_tokens=10),
            FragmentStream(),
            metrics=metrics,
            session_id="fixed-id",
        )

        assert session.state is SessionState.INITIALIZING
        session.run()

        assert session.state is SessionState.HALTED
        assert "".join(fragment.text for fragment in session.stream) == "ok"
        assert metrics.requests()[0].session_id == "fixed-id"
        assert metrics.requests()[0].generated_tokens == 2

    def test_start_twice_raises(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("ab")
        session = engine.start_session("Go", GenerationConfig(max_tokens=2))
        with pytest.raises(RuntimeError, match="already started"):
            session.start()
        list(session.stream)

    def test_runs_on_named_daemon_thread(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("abc", delay=0.05)
        session = engine.start_session("Go", GenerationConfig(max_tokens=3))

        names = [thread.name for thread in threading.enumerate()]
        list(session.stream)
        session.join(timeout=5.0)

        assert f"phigen-session-{session.session_id}" in names

    def test_metrics_recorded_per_session(self, scripted_engine_factory: EngineFactory) -> None:
        engine, _ = scripted_engine_factory("abc")
        for _ in range(2):
            engine.generate("Go", GenerationConfig(max_tokens=2))

        assert engine.metrics.total_requests == 2
        assert engine.metrics.termination_counts() == {"max_length": 2}
