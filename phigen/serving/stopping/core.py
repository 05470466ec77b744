# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Stop-string and length checks for a running session.

Stop tokens are easy: the sampler already knows the token id. Stop
strings are harder, because the text arrives a fragment at a time and a
stop string can straddle two fragments. If we emitted "\\n" and the next
token is also "\\n", a "\\n\\n" stop string matched, but half of it is
already on the user's screen.

So the engine holds back the tail of the text that could still turn into
a match: the longest suffix of pending text that is a prefix of some stop
string. Only text that can no longer be part of a match is released.
When a match lands, everything from the start of the match onwards is
dropped. When the session stops for any other reason, the held-back tail
is flushed since it turned out to be ordinary text.

Two matching modes:

  suffix    the stop string must sit at the very end of the text after a
            step. A stop string buried inside a longer fragment is
            ordinary text.
  contains  the stop string can appear anywhere in newly decoded text;
            generation stops at the first occurrence.
"""

import logging
from collections.abc import Iterable

from phigen.logging.logger import get_logger
from phigen.serving.generation.core import StopMode

logger: logging.Logger = get_logger(__name__)


class StopEngine:
    """Per-session stop-condition state. Not shared across sessions."""

    def __init__(
        self,
        stop_strings: Iterable[str] = (),
        mode: StopMode | str = StopMode.SUFFIX,
        max_tokens: int | None = None,
    ) -> None:
        self._stop_strings: tuple[str, ...] = tuple(sorted(set(stop_strings)))
        self._mode = StopMode(mode)
        self._max_tokens = max_tokens
        self._longest = max((len(s) for s in self._stop_strings), default=0)
        self._pending = ""
        self._matched: str | None = None

    @property
    def pending(self) -> str:
        """Text held back because it might still start a stop string."""
        return self._pending

    @property
    def matched(self) -> str | None:
        """The stop string that fired, if any."""
        return self._matched

    def feed(self, delta: str) -> tuple[str, bool]:
        """
        Account for newly decoded text.

        Returns:
            (text_to_emit, matched). On a match, text_to_emit is everything
            before the stop string and the engine is done.
        """
        if not self._stop_strings:
            return delta, False
        if self._matched is not None:
            return "", True

        text = self._pending + delta
        found = self._find_match(text)
        if found is not None:
            start, stop_string = found
            self._matched = stop_string
            self._pending = ""
            logger.debug("Stop string matched", extra={"stop_string": stop_string})
            return text[:start], True

        keep = self._holdback_length(text)
        split = len(text) - keep
        self._pending = text[split:]
        return text[:split], False

    def flush(self) -> str:
        """Release the held-back tail. Call when stopping for any other reason."""
        tail = self._pending
        self._pending = ""
        return tail

    def reached_max(self, generated_tokens: int) -> bool:
        return self._max_tokens is not None and generated_tokens >= self._max_tokens

    def _find_match(self, text: str) -> tuple[int, str] | None:
        best: tuple[int, str] | None = None
        for stop_string in self._stop_strings:
            if self._mode is StopMode.SUFFIX:
                start = len(text) - len(stop_string) if text.endswith(stop_string) else -1
            else:
                start = text.find(stop_string)
            if start >= 0 and (best is None or start < best[0]):
                best = (start, stop_string)
        return best

    def _holdback_length(self, text: str) -> int:
        for keep in range(min(len(text), self._longest), 0, -1):
            tail = text[-keep:]
            if any(s.startswith(tail) for s in self._stop_strings):
                return keep
        return 0
