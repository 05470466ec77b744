# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tokenizer adapter and incremental detokenization.

The vocabulary and merge table live in a HuggingFace `tokenizers` bundle
(tokenizer.json); this module only adapts it to the two operations the
runtime needs, encode and decode, plus the EOS lookup.

Streaming needs one more thing: turning tokens into text one at a time
without breaking characters. Phi's tokenizer is byte-level BPE, so a
single emoji or accented letter can span several tokens, and decoding one
of those tokens alone gives U+FFFD. Decoding each token in isolation also
loses context-dependent spacing. IncrementalDecoder handles both by
decoding a small window of recent tokens and emitting only the new,
complete suffix.
"""

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from tokenizers import Tokenizer

from phigen.logging.logger import get_logger

logger: logging.Logger = get_logger(__name__)

EOS_TOKEN = "<|endoftext|>"
_REPLACEMENT_CHAR = "\ufffd"


class IncrementalDecoder:
    """
    Decodes a growing token sequence into text deltas.

    Keeps a window [prev_index, current_index) of already-emitted tokens as
    decoding context. For each new token it decodes the window with and
    without the token; the difference is the new text. If that text ends
    in a replacement character, the token finished only part of a UTF-8
    sequence, so nothing is emitted until a later token completes it.

    Concatenating every push() result and the final finish() gives exactly
    decode(all tokens).
    """

    def __init__(self, decode_fn: Callable[[list[int]], str]) -> None:
        self._decode = decode_fn
        self._tokens: list[int] = []
        self._prev_index = 0
        self._current_index = 0

    @property
    def tokens(self) -> list[int]:
        return list(self._tokens)

    def push(self, token_id: int) -> str:
        """Add a token; return whatever text it completes (possibly "")."""
        prev_text = self._window_text(self._current_index)
        self._tokens.append(token_id)
        text = self._decode(self._tokens[self._prev_index :])

        if len(text) > len(prev_text) and not text.endswith(_REPLACEMENT_CHAR):
            self._prev_index = self._current_index
            self._current_index = len(self._tokens)
            return text[len(prev_text) :]
        return ""

    def finish(self) -> str:
        """Flush text held back for tokens that never completed a character."""
        prev_text = self._window_text(self._current_index)
        text = self._decode(self._tokens[self._prev_index :])
        self._prev_index = self._current_index = len(self._tokens)
        if len(text) > len(prev_text):
            return text[len(prev_text) :]
        return ""

    def reset(self) -> None:
        self._tokens.clear()
        self._prev_index = 0
        self._current_index = 0

    def _window_text(self, end: int) -> str:
        if end <= self._prev_index:
            return ""
        return self._decode(self._tokens[self._prev_index : end])


class TokenizerAdapter:
    """
    Thin wrapper around a `tokenizers.Tokenizer`.

    encode() treats its input as plain text: no special tokens are added,
    and a literal "<|endoftext|>" in a prompt is spelled out as ordinary
    tokens rather than turned into the EOS id. decode() always skips
    special ids, so the EOS marker never leaks into output, and
    decode(encode(text)) == text for any text.
    """

    def __init__(self, tokenizer: Tokenizer, eos_token: str = EOS_TOKEN) -> None:
        self._tokenizer = tokenizer
        self._tokenizer.encode_special_tokens = True
        self._eos_token = eos_token
        self._eos_token_id: int | None = tokenizer.token_to_id(eos_token)
        if self._eos_token_id is None:
            logger.warning(
                "EOS token not in vocabulary; generation will only stop on other conditions",
                extra={"eos_token": eos_token},
            )

    @classmethod
    def from_file(cls, path: Path, eos_token: str = EOS_TOKEN) -> "TokenizerAdapter":
        """Load a tokenizer.json bundle."""
        tokenizer = Tokenizer.from_file(str(path))
        logger.info("Tokenizer loaded", extra={"path": str(path)})
        return cls(tokenizer, eos_token=eos_token)

    @property
    def eos_token_id(self) -> int | None:
        return self._eos_token_id

    @property
    def vocab_size(self) -> int:
        return self._tokenizer.get_vocab_size()

    def encode(self, text: str) -> list[int]:
        """Turn text into token ids."""
        return self._tokenizer.encode(text, add_special_tokens=False).ids

    def decode(self, token_ids: Sequence[int]) -> str:
        """Turn token ids back into text."""
        return self._tokenizer.decode(list(token_ids), skip_special_tokens=True)

    def incremental_decoder(self) -> IncrementalDecoder:
        """A fresh streaming decoder bound to this tokenizer."""
        return IncrementalDecoder(self.decode)
