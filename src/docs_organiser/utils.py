"""
Utilities
=========

This module provides utility functions and classes that are used across
the application but do not belong to a more specific domain like the
categorization engine or the pipeline.

It contains the sanitizers that turn model-generated strings into safe
folder and file names, the cleanup applied to raw model replies before JSON
decoding, and a small cooperative `Deadline` used to bound per-file work and
to observe the run-wide cancellation signal from worker threads.
"""

from __future__ import annotations

import re
import threading
import time

UNNAMED = "unnamed"

# Characters that are unsafe in paths on at least one supported platform.
_UNSAFE_PATH_CHARS = re.compile(r'[\\:*?"<>|]')
_NON_CATEGORY_CHARS = re.compile(r"[^A-Za-z0-9_\-. /]")
_NON_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_\-. ]")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")
_REPEATED_SLASHES = re.compile(r"/{2,}")

END_OF_TURN_TOKENS = (
    "<|eot_id|>",
    "<|im_end|>",
    "<|end|>",
    "<|endoftext|>",
    "</s>",
)


def sanitize_category(value: str) -> str:
    """
    Make a category safe to use as a relative folder path.

    Forward slashes are kept so nested categories ("Work/Projects") map to
    nested folders; everything else outside ``[A-Za-z0-9 _.-]`` becomes ``_``.
    """
    value = _UNSAFE_PATH_CHARS.sub("_", value)
    value = _NON_CATEGORY_CHARS.sub("_", value).strip()
    value = _REPEATED_UNDERSCORES.sub("_", value)
    value = _REPEATED_SLASHES.sub("/", value)
    value = value.strip(". _/")
    return value or UNNAMED


def sanitize_filename(value: str) -> str:
    """
    Make a model-generated title safe to use as a single file name.
    """
    value = value.replace("/", "_")
    value = _UNSAFE_PATH_CHARS.sub("_", value)
    value = _NON_FILENAME_CHARS.sub("_", value).strip()
    value = _REPEATED_UNDERSCORES.sub("_", value)
    value = value.strip(". _")
    return value or UNNAMED


def clean_json_reply(text: str) -> str:
    """
    Strip markdown fences and end-of-turn tokens, then cut the reply down to
    the span between the first ``{`` and the last ``}``.
    """
    text = text.strip()
    for prefix in ("```json", "```JSON", "```"):
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    if text.endswith("```"):
        text = text[:-3]

    for token in END_OF_TURN_TOKENS:
        text = text.replace(token, "")

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        text = text[start : end + 1]
    return text.strip()


class OperationCancelled(Exception):
    """The run-wide cancellation signal was raised."""


class DeadlineExceeded(TimeoutError):
    """A unit of work ran past its own time budget."""


class Deadline:
    """
    Cooperative time budget for one unit of work.

    Python threads cannot be interrupted from the outside, so long operations
    call `check()` between steps and size their blocking calls with
    `timeout()`. A deadline also observes an optional parent `threading.Event`
    so an interrupt reaches every worker.
    """

    def __init__(
        self,
        seconds: float | None = None,
        cancel_event: threading.Event | None = None,
        clock=time.monotonic,
    ):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds
        self.cancel_event = cancel_event

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def remaining(self) -> float | None:
        """Seconds left, or None when there is no time limit."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        """Raise if the work should stop now."""
        if self.cancelled:
            raise OperationCancelled("operation cancelled")
        if self.expired():
            raise DeadlineExceeded("deadline exceeded")

    def timeout(self, default: float) -> float:
        """
        Clamp a blocking-call timeout to what is left of the budget.
        """
        self.check()
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)
