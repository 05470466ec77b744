# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Streaming bridge between a generating session and its reader.

Instead of waiting for the model to finish before showing anything, the
session pushes each fragment into the stream as soon as it's decoded,
and the reader pulls them out on its own thread (or event loop) while
generation continues in the background.

The bridge is an ordered queue.Queue with two ends:

  FragmentStream  the reader's handle: iterate it (sync or async), close
                  it to cancel
  FragmentSink    the producer's handle: push fragments, then finish

The session only ever holds the sink. Once nothing references the reader
handle any more it is closed automatically, so a reader that walks away
without calling close() still cancels the request.

Fragments come out in the order they went in and nothing is dropped.
With a bound set, a fast producer simply waits for a slow reader.
"""

import asyncio
import logging
import queue
import threading
import time
import weakref
from collections.abc import Iterator, Sequence

from phigen.logging.logger import get_logger
from phigen.serving.api.schema import GeneratedFragment, TerminationReason
from phigen.serving.errors import StreamClosedError

logger: logging.Logger = get_logger(__name__)

_POLL_INTERVAL_S = 0.05
_END = object()


class FragmentBuilder:
    """
    Stamps text into GeneratedFragments with a step index and timing.

    The step counter starts at 0 and goes up by one per fragment; elapsed
    time is measured from when the builder was created (session start).
    """

    def __init__(self) -> None:
        self._step: int = 0
        self._start_time: float = time.monotonic()

    @property
    def fragment_count(self) -> int:
        return self._step

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self._start_time) * 1000.0

    def build(self, text: str, token_ids: Sequence[int]) -> GeneratedFragment:
        fragment = GeneratedFragment(
            text=text,
            step=self._step,
            token_ids=tuple(token_ids),
            elapsed_ms=self.elapsed_ms,
        )
        self._step += 1
        return fragment


class _Channel:
    """Queue and flags shared by both ends of one stream."""

    def __init__(self, max_buffered: int, poll_interval: float) -> None:
        self.queue: queue.Queue = queue.Queue(maxsize=max_buffered)
        self.poll_interval = poll_interval
        self.closed = threading.Event()
        self.finished = threading.Event()
        self.exhausted = False
        self.reason = TerminationReason.NONE
        self.error: BaseException | None = None

    def close(self) -> None:
        if not self.closed.is_set():
            logger.debug("Stream closed by consumer")
        self.closed.set()

    def push(self, fragment: GeneratedFragment) -> None:
        while True:
            if self.closed.is_set():
                raise StreamClosedError("Stream was closed by the consumer")
            try:
                self.queue.put(fragment, timeout=self.poll_interval)
                return
            except queue.Full:
                continue

    def finish(self, reason: TerminationReason, error: BaseException | None) -> None:
        self.reason = reason
        self.error = error
        self.finished.set()
        while not self.closed.is_set():
            try:
                self.queue.put(_END, timeout=self.poll_interval)
                return
            except queue.Full:
                continue

    def next_item(self) -> object:
        while not self.exhausted:
            if self.closed.is_set():
                self.exhausted = True
                break
            try:
                item = self.queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if item is _END:
                self.exhausted = True
                if self.error is not None:
                    raise self.error
                break
            return item
        return _END


class FragmentSink:
    """
    Producer end of a FragmentStream, held by the session thread.

    Holding a sink does not keep the reader's handle alive.
    """

    def __init__(self, channel: _Channel) -> None:
        self._channel = channel

    @property
    def closed(self) -> bool:
        """True once the reader has cancelled or gone away."""
        return self._channel.closed.is_set()

    def push(self, fragment: GeneratedFragment) -> None:
        """
        Hand one fragment to the reader, waiting for room if the queue is full.

        Raises:
            StreamClosedError: The reader closed the stream.
        """
        self._channel.push(fragment)

    def finish(self, reason: TerminationReason, error: BaseException | None = None) -> None:
        """Record how the session ended and wake the reader."""
        self._channel.finish(reason, error)


class FragmentStream:
    """
    Single-pass, ordered channel of GeneratedFragments, reader side.

    Iterate with `for` or `async for`, close() to cancel, wait() for the
    producer to be done. The producer writes through sink(). Dropping the
    last reference to the stream closes it.

    If the session failed, iteration raises its error after the last good
    fragment. A cancelled stream just ends; check termination_reason.

    Args:
        max_buffered: Queue bound. 0 means unbounded; otherwise push()
            blocks while that many fragments are waiting to be read.
    """

    def __init__(self, max_buffered: int = 0, poll_interval: float = _POLL_INTERVAL_S) -> None:
        if max_buffered < 0:
            raise ValueError(f"max_buffered must be >= 0, got {max_buffered}")
        self._channel = _Channel(max_buffered, poll_interval)
        self._pending: asyncio.Future | None = None
        weakref.finalize(self, self._channel.close)

    def sink(self) -> FragmentSink:
        """The producer end of this stream."""
        return FragmentSink(self._channel)

    @property
    def closed(self) -> bool:
        """True once the reader has cancelled."""
        return self._channel.closed.is_set()

    @property
    def finished(self) -> bool:
        """True once the producer has reported how the session ended."""
        return self._channel.finished.is_set()

    @property
    def termination_reason(self) -> TerminationReason:
        return self._channel.reason

    @property
    def error(self) -> BaseException | None:
        return self._channel.error

    def close(self) -> None:
        """Cancel from the reader side. Safe to call more than once."""
        self._channel.close()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the producer calls finish(). False on timeout."""
        return self._channel.finished.wait(timeout)

    def __iter__(self) -> Iterator[GeneratedFragment]:
        return self

    def __next__(self) -> GeneratedFragment:
        item = self._channel.next_item()
        if item is _END:
            raise StopIteration
        return item

    def __aiter__(self) -> "FragmentStream":
        return self

    async def __anext__(self) -> GeneratedFragment:
        # The blocking get runs in a worker thread so the event loop stays
        # free. If this await is cancelled, the read in flight is kept and
        # the next __anext__ picks up its result.
        pending = self._pending
        if pending is None or pending.cancelled():
            pending = asyncio.ensure_future(asyncio.to_thread(self._channel.next_item))
            self._pending = pending
        try:
            item = await asyncio.shield(pending)
        except asyncio.CancelledError:
            if pending.cancelled():
                self._pending = None
            raise
        except BaseException:
            self._pending = None
            raise
        self._pending = None
        if item is _END:
            raise StopAsyncIteration
        return item

    def __enter__(self) -> "FragmentStream":
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()
