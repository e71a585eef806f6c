"""
Token counting.

A thin wrapper around tiktoken. The classification server usually runs a
model whose exact vocabulary is not available locally, so an OpenAI encoding
is used as a close estimate for budgeting purposes.
"""

from __future__ import annotations

import structlog
import tiktoken

log = structlog.get_logger(__name__)

DEFAULT_ENCODING = "cl100k_base"


class Tokenizer:
    """Encode/decode text with a tiktoken encoding selected by name."""

    def __init__(self, name: str = DEFAULT_ENCODING):
        self.encoding = self._resolve(name or DEFAULT_ENCODING)

    @staticmethod
    def _resolve(name: str) -> tiktoken.Encoding:
        # Accept both model names ("gpt-4o") and encoding names ("p50k_base").
        try:
            return tiktoken.encoding_for_model(name)
        except KeyError:
            pass
        try:
            return tiktoken.get_encoding(name)
        except ValueError:
            log.warning(
                "Unknown tokenizer encoding; falling back",
                requested=name,
                fallback=DEFAULT_ENCODING,
            )
            return tiktoken.get_encoding(DEFAULT_ENCODING)

    @property
    def name(self) -> str:
        return self.encoding.name

    def encode(self, text: str) -> list[int]:
        # Special-token strings inside documents are plain text here.
        return self.encoding.encode(text, disallowed_special=())

    def decode(self, tokens: list[int]) -> str:
        return self.encoding.decode(tokens)

    def count_tokens(self, text: str) -> int:
        return len(self.encode(text))
