# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Serving metrics collector.

Tracks the numbers that tell you whether generation is fast enough:
ms per token, tokens per second, time to first token, peak memory, and
how sessions end. Sessions report from their own threads, so every
update goes through a lock. Everything stays local; nothing is exported.
"""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass

import torch

from phigen.logging.logger import get_logger
from phigen.serving.api.schema import TerminationReason

logger: logging.Logger = get_logger(__name__)


@dataclass
class RequestMetrics:
    """Stats captured for a single generation session."""

    session_id: str = ""
    prompt_tokens: int = 0
    generated_tokens: int = 0
    total_time_ms: float = 0.0
    first_token_ms: float = 0.0
    tokens_per_second: float = 0.0
    peak_memory_mb: float = 0.0
    cache_memory_mb: float = 0.0
    termination_reason: TerminationReason = TerminationReason.NONE


class ServingMetrics:
    """
    Accumulates per-session metrics across the life of an engine.

    Keeps running totals and lets you query averages, enough to catch a
    latency regression without a monitoring stack.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: list[RequestMetrics] = []
        self._reasons: Counter[TerminationReason] = Counter()
        self._start_time: float = time.monotonic()

    @property
    def total_requests(self) -> int:
        with self._lock:
            return len(self._requests)

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._start_time

    def record(self, metrics: RequestMetrics) -> None:
        """Save metrics from a finished session and log them."""
        with self._lock:
            self._requests.append(metrics)
            self._reasons[metrics.termination_reason] += 1
        logger.info(
            "Request completed",
            extra={
                "session_id": metrics.session_id,
                "prompt_tokens": metrics.prompt_tokens,
                "generated_tokens": metrics.generated_tokens,
                "total_time_ms": round(metrics.total_time_ms, 2),
                "first_token_ms": round(metrics.first_token_ms, 2),
                "tokens_per_second": round(metrics.tokens_per_second, 2),
                "peak_memory_mb": round(metrics.peak_memory_mb, 2),
                "termination_reason": metrics.termination_reason.value,
            },
        )

    def requests(self) -> list[RequestMetrics]:
        with self._lock:
            return list(self._requests)

    def termination_counts(self) -> dict[str, int]:
        with self._lock:
            return {reason.value: count for reason, count in self._reasons.items()}

    def average_tokens_per_second(self) -> float:
        with self._lock:
            if not self._requests:
                return 0.0
            return sum(r.tokens_per_second for r in self._requests) / len(self._requests)

    def average_ms_per_token(self) -> float:
        tps = self.average_tokens_per_second()
        if tps <= 0:
            return 0.0
        return 1000.0 / tps

    def average_first_token_ms(self) -> float:
        with self._lock:
            if not self._requests:
                return 0.0
            return sum(r.first_token_ms for r in self._requests) / len(self._requests)

    def peak_memory_mb(self) -> float:
        with self._lock:
            if not self._requests:
                return 0.0
            return max(r.peak_memory_mb for r in self._requests)

    def summary(self) -> dict[str, object]:
        """Structured summary suitable for logging."""
        return {
            "total_requests": self.total_requests,
            "uptime_seconds": round(self.uptime_seconds, 2),
            "avg_tokens_per_second": round(self.average_tokens_per_second(), 2),
            "avg_ms_per_token": round(self.average_ms_per_token(), 2),
            "avg_first_token_ms": round(self.average_first_token_ms(), 2),
            "peak_memory_mb": round(self.peak_memory_mb(), 2),
            "termination_reasons": self.termination_counts(),
        }

    @staticmethod
    def get_gpu_memory_mb() -> float:
        """Peak GPU memory PyTorch has allocated. Zero on CPU."""
        if torch.cuda.is_available():
            return torch.cuda.max_memory_allocated() / (1024 * 1024)
        return 0.0
