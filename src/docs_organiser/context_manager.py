"""
Context Budgeting
=================

Keeps every prompt within the model's token ceiling. The ceiling is split
into fixed shares for the system prompt, examples, document content and the
expected output, and text that does not fit its share is either truncated
(keeping the head and the tail of the document) or chunked for map-reduce
summarization.
"""

from __future__ import annotations

import enum
from typing import NamedTuple, Protocol

DEFAULT_MAX_TOKENS = 4096

SYSTEM_BUDGET_PCT = 0.10
EXAMPLES_BUDGET_PCT = 0.20
CONTENT_BUDGET_PCT = 0.60
OUTPUT_BUDGET_PCT = 0.10

TRUNCATED_MARKER = "\n[... truncated ...]\n"
EXTRACTED_MARKER = "\n[... content extracted ...]\n"

# Share of the kept tokens taken from the head in middle extraction.
MIDDLE_EXTRACTION_HEAD_PCT = 0.4


class TextTokenizer(Protocol):
    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...

    def count_tokens(self, text: str) -> int: ...


class TruncationStrategy(str, enum.Enum):
    SLIDING_WINDOW = "sliding_window"
    MIDDLE_EXTRACTION = "middle_extraction"


class ContextBudget(NamedTuple):
    system: int
    examples: int
    content: int
    output: int


def get_budgets(max_tokens: int) -> ContextBudget:
    """
    Split a token ceiling into per-section budgets.

    Each share is floored independently, so the four values never add up to
    more than the ceiling. A non-positive ceiling means "use the default".
    """
    if max_tokens <= 0:
        max_tokens = DEFAULT_MAX_TOKENS
    return ContextBudget(
        system=int(max_tokens * SYSTEM_BUDGET_PCT),
        examples=int(max_tokens * EXAMPLES_BUDGET_PCT),
        content=int(max_tokens * CONTENT_BUDGET_PCT),
        output=int(max_tokens * OUTPUT_BUDGET_PCT),
    )


class ContextManager:
    """Token budgeting, truncation and chunking for one model ceiling."""

    def __init__(self, tokenizer: TextTokenizer, max_tokens: int = DEFAULT_MAX_TOKENS):
        if max_tokens <= 0:
            max_tokens = DEFAULT_MAX_TOKENS
        self.tokenizer = tokenizer
        self.max_tokens = max_tokens

    def get_budgets(self) -> ContextBudget:
        return get_budgets(self.max_tokens)

    def count_tokens(self, text: str) -> int:
        return self.tokenizer.count_tokens(text)

    def estimate_response_budget(self) -> int:
        return self.get_budgets().output

    def is_exceeding_hard_limit(self, text: str) -> bool:
        return self.count_tokens(text) > self.max_tokens

    def truncate(
        self,
        text: str,
        limit: int,
        strategy: TruncationStrategy = TruncationStrategy.SLIDING_WINDOW,
    ) -> str:
        """
        Fit ``text`` into ``limit`` tokens, returning it unchanged if it fits.

        Cutting on token boundaries may split a multi-token character; the
        decoder's replacement output is accepted as is.
        """
        tokens = self.tokenizer.encode(text)
        if len(tokens) <= limit:
            return text
        limit = max(0, limit)

        if strategy == TruncationStrategy.MIDDLE_EXTRACTION:
            head_size = int(limit * MIDDLE_EXTRACTION_HEAD_PCT)
            marker = EXTRACTED_MARKER
        else:
            head_size = limit // 2
            marker = TRUNCATED_MARKER
        tail_size = limit - head_size

        head = self.tokenizer.decode(tokens[:head_size])
        tail = self.tokenizer.decode(tokens[len(tokens) - tail_size :])
        return head + marker + tail

    def chunk(self, text: str, chunk_size: int) -> list[str]:
        """
        Split ``text`` into consecutive pieces of at most ``chunk_size`` tokens.
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        tokens = self.tokenizer.encode(text)
        if len(tokens) <= chunk_size:
            return [text]
        return [
            self.tokenizer.decode(tokens[i : i + chunk_size])
            for i in range(0, len(tokens), chunk_size)
        ]
