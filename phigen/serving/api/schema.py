# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Request and response types for the generation runtime.

Plain dataclasses rather than pydantic: these are runtime values passed
between threads, not config that needs validating from a file. The one
piece of validation a request needs lives in GenerationConfig.
"""

from dataclasses import dataclass
from enum import Enum


class TerminationReason(str, Enum):
    """Why a session stopped. NONE only while it's still running."""

    NONE = "none"
    STOP_TOKEN = "stop_token"
    STOP_STRING = "stop_string"
    MAX_LENGTH = "max_length"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class GeneratedFragment:
    """
    One piece of streamed output.

    A fragment is whatever text became complete at one step. It can be
    empty-handed for a while (a multi-byte character still being built) and
    then carry several tokens' worth at once, which is why it records the
    token ids that produced it rather than a single id.
    """

    text: str
    step: int
    token_ids: tuple[int, ...]
    elapsed_ms: float


@dataclass(frozen=True)
class GenerateResponse:
    """What comes back after a non-streaming generate() call."""

    text: str
    tokens_generated: int
    prompt_tokens: int
    total_time_ms: float
    tokens_per_second: float
    finish_reason: TerminationReason = TerminationReason.MAX_LENGTH
