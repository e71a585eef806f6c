"""
Category Registry
=================

The set of destination categories the model may choose from. The registry is
filled once before any worker starts (from a manual list or by discovering
the destination tree) and then frozen; workers only ever read the immutable
tuple it holds.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Iterable

import structlog

log = structlog.get_logger(__name__)

FALLBACK_CATEGORY = "Misc"

DEFAULT_CATEGORIES = (
    "Personal",
    "Work",
    "Finance",
    "Health",
    "Education",
    "Technical",
    "Travel",
    "Legal",
    "Projects",
    "Receipts",
    FALLBACK_CATEGORY,
)

MAX_DISCOVERY_DEPTH = 3


class CategoryRegistry:
    """Publish-once, read-many set of allowed categories."""

    def __init__(
        self,
        categories: Iterable[str] = DEFAULT_CATEGORIES,
        fallback: str = FALLBACK_CATEGORY,
    ):
        self.fallback = fallback
        self._lock = threading.Lock()
        self._frozen = False
        self._categories = self._normalize(categories)

    def _normalize(self, categories: Iterable[str]) -> tuple[str, ...]:
        seen = []
        for category in categories:
            if category and category not in seen:
                seen.append(category)
        if self.fallback not in seen:
            seen.append(self.fallback)
        return tuple(seen)

    @property
    def categories(self) -> tuple[str, ...]:
        return self._categories

    @property
    def frozen(self) -> bool:
        return self._frozen

    def publish(self, categories: Iterable[str]) -> bool:
        """
        Replace the active set. An empty argument is ignored so a failed or
        empty discovery never erases a configured list.

        Returns True when the set was replaced.
        """
        categories = [c for c in categories if c]
        if not categories:
            return False
        with self._lock:
            if self._frozen:
                raise RuntimeError("Category registry is frozen; publish before processing starts.")
            self._categories = self._normalize(categories)
        return True

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    def is_member(self, category: str) -> bool:
        return category in self._categories

    def __contains__(self, category: object) -> bool:
        return category in self._categories

    def __iter__(self):
        return iter(self._categories)

    def __len__(self) -> int:
        return len(self._categories)


def discover_categories(
    dest_dir: str | os.PathLike,
    max_depth: int = MAX_DISCOVERY_DEPTH,
    fallback: str = FALLBACK_CATEGORY,
) -> list[str]:
    """
    List existing folders under ``dest_dir`` as category paths.

    Paths are relative, use ``/`` on every platform and go at most
    ``max_depth`` levels deep. Hidden folders are skipped together with
    everything below them. The fallback category is appended when missing.
    A destination that does not exist yet yields an empty list.
    """
    root = Path(dest_dir)
    if not root.exists():
        return []
    if not root.is_dir():
        raise NotADirectoryError(f"Destination is not a directory: {root}")

    def _raise(error: OSError) -> None:
        raise error

    categories = []
    for current, dirnames, _filenames in os.walk(root, onerror=_raise):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        rel = Path(current).relative_to(root)
        depth = len(rel.parts)
        if depth >= max_depth:
            dirnames[:] = []
        for name in dirnames:
            categories.append((rel / name).as_posix())

    categories.sort()
    if fallback not in categories:
        categories.append(fallback)
    return categories
