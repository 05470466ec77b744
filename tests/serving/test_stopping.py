# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Tests for incremental stop-string matching."""

from phigen.serving.generation.core import StopMode
from phigen.serving.stopping.core import StopEngine


def _feed_all(engine: StopEngine, deltas: list[str]) -> tuple[str, bool]:
    emitted = []
    for delta in deltas:
        text, matched = engine.feed(delta)
        emitted.append(text)
        if matched:
            return "".join(emitted), True
    emitted.append(engine.flush())
    return "".join(emitted), False


class TestStopEngineSuffix:

    def test_no_stop_strings_passes_everything(self) -> None:
        engine = StopEngine()
        assert engine.feed("hello") == ("hello", False)
        assert engine.flush() == ""

    def test_match_split_across_deltas(self) -> None:
        engine = StopEngine({"\n\n"})
        text, matched = _feed_all(engine, list("answer.\n\nExtra"))
        assert matched
        assert text == "answer."
        assert engine.matched == "\n\n"

    def test_possible_prefix_is_held_back(self) -> None:
        engine = StopEngine({"END"})
        assert engine.feed("the E") == ("the ", False)
        assert engine.pending == "E"
        assert engine.feed("N") == ("", False)
        assert engine.pending == "EN"

    def test_held_back_text_released_when_match_fails(self) -> None:
        engine = StopEngine({"END"})
        engine.feed("the E")
        assert engine.feed("ast") == ("East", False)
        assert engine.pending == ""

    def test_flush_releases_tail(self) -> None:
        engine = StopEngine({"###"})
        assert engine.feed("done #") == ("done ", False)
        assert engine.flush() == "#"
        assert engine.pending == ""

    def test_match_at_end_of_multi_character_delta(self) -> None:
        engine = StopEngine({"User:"})
        assert engine.feed("Sure.\nUser:") == ("Sure.\n", True)

    def test_suffix_mode_ignores_buried_match(self) -> None:
        engine = StopEngine({"##"}, mode=StopMode.SUFFIX)
        assert engine.feed("a##b") == ("a##b", False)

    def test_earliest_match_wins(self) -> None:
        engine = StopEngine({"c", "bc"})
        assert engine.feed("abc") == ("a", True)

    def test_nothing_emitted_after_match(self) -> None:
        engine = StopEngine({"!"})
        engine.feed("hi!")
        assert engine.feed("more") == ("", True)

    def test_concatenation_without_match_is_lossless(self) -> None:
        engine = StopEngine({"<stop>", "\n\n\n"})
        deltas = ["Some ", "<st", "uff", "> and\n", "\n", "x", "<", "s"]
        text, matched = _feed_all(engine, deltas)
        assert not matched
        assert text == "".join(deltas)


class TestStopEngineContains:

    def test_match_in_middle_of_delta(self) -> None:
        engine = StopEngine({"##"}, mode="contains")
        assert engine.feed("a##b") == ("a", True)

    def test_match_across_pending_and_delta(self) -> None:
        engine = StopEngine({"STOP"}, mode=StopMode.CONTAINS)
        assert engine.feed("go ST") == ("go ", False)
        assert engine.feed("OP now") == ("", True)


class TestStopEngineLength:

    def test_reached_max(self) -> None:
        engine = StopEngine(max_tokens=3)
        assert not engine.reached_max(2)
        assert engine.reached_max(3)

    def test_no_limit(self) -> None:
        assert not StopEngine().reached_max(10_000)
