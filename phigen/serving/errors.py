# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Runtime errors for the generation path.

Bad configuration raises ConfigError (phigen.config.exceptions) before
anything runs. Everything here is about a specific request:

  - ContextOverflowError and EmptyPromptError are raised synchronously by
    the engine, before the first forward pass.
  - ComputeError happens mid-generation on the background thread. It's
    fatal to the session and reaches the consumer through the stream,
    after the last good fragment.
  - StreamClosedError is how the stream tells the producer the consumer
    went away. It never reaches the consumer.

Cancellation isn't an error at all: the stream just ends and reports
TerminationReason.CANCELLED.
"""


class GenerationError(Exception):
    """Base for all request-level generation failures."""


class ContextOverflowError(GenerationError):
    """Prompt tokens plus max_tokens don't fit in the model's context window."""

    def __init__(self, prompt_tokens: int, max_tokens: int, context_length: int) -> None:
        self.prompt_tokens = prompt_tokens
        self.max_tokens = max_tokens
        self.context_length = context_length
        super().__init__(
            f"Prompt of {prompt_tokens} tokens plus max_tokens={max_tokens} "
            f"exceeds the context length of {context_length}"
        )


class EmptyPromptError(GenerationError):
    """The prompt encoded to zero tokens, so there's nothing to prime the cache with."""


class ComputeError(GenerationError):
    """
    The compute backend failed during a forward pass.

    Not retried: the KV cache may hold a partial write for the failed step,
    so the session's state can't be trusted afterwards.
    """


class StreamClosedError(GenerationError):
    """The consumer closed the stream; the producer should stop."""
