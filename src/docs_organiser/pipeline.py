"""
Document Organising Pipeline
============================

This module defines the `Pipeline`, which orchestrates one organising run:

1. Publish the category registry (manual list or folders discovered under
   the destination) and freeze it.
2. Scan the source tree for supported files and stream them into a bounded
   worker pool.
3. For each file: extract text, ask the categorization engine for a category
   and title, and move the file into place.

Each file is an isolated unit of work with its own time budget. Failures are
counted per file; only a missing source directory aborts the run.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

import structlog

from .categorizer import CategorizationEngine
from .config import Settings
from .extractor import ExtractionError, extract_text
from .fileops import move_file
from .registry import CategoryRegistry, discover_categories
from .utils import Deadline, DeadlineExceeded, OperationCancelled, sanitize_filename
from .worker_pool import run_bounded_pool

log = structlog.get_logger(__name__)

SUPPORTED_EXTENSIONS = frozenset({".pdf", ".txt", ".md"})


class ProgressCounters:
    """Thread-safe, monotonically increasing run counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self._total = 0
        self._processed = 0
        self._failed = 0

    def add_total(self) -> None:
        with self._lock:
            self._total += 1

    def add_processed(self) -> None:
        with self._lock:
            self._processed += 1

    def add_failed(self) -> None:
        with self._lock:
            self._failed += 1

    def snapshot(self) -> tuple[int, int, int]:
        """Return (total, processed, failed) read under one lock."""
        with self._lock:
            return self._total, self._processed, self._failed

    @property
    def total(self) -> int:
        return self.snapshot()[0]

    @property
    def processed(self) -> int:
        return self.snapshot()[1]

    @property
    def failed(self) -> int:
        return self.snapshot()[2]


@dataclass(frozen=True)
class RunSummary:
    total: int
    processed: int
    failed: int
    cancelled: bool
    duration_seconds: float

    def render(self) -> str:
        return (
            "Summary:\n"
            f"- Total Files:        {self.total}\n"
            f"- Successfully Moved: {self.processed}\n"
            f"- Failed/Skipped:     {self.failed}\n"
        )


def scan_files(
    source_dir: str | os.PathLike,
    extensions: frozenset[str] = SUPPORTED_EXTENSIONS,
    cancel_event: threading.Event | None = None,
) -> Iterator[Path]:
    """
    Yield supported files under ``source_dir`` in a stable walk order.

    Unreadable directories abort the scan with the underlying OSError.
    """

    def _raise(error: OSError) -> None:
        raise error

    for current, dirnames, filenames in os.walk(source_dir, onerror=_raise):
        dirnames.sort()
        for name in sorted(filenames):
            if cancel_event is not None and cancel_event.is_set():
                return
            path = Path(current) / name
            if path.suffix.lower() in extensions and path.is_file():
                yield path


class Pipeline:
    """
    Orchestrates the organising of one source tree into a destination tree.
    """

    def __init__(
        self,
        settings: Settings,
        engine: CategorizationEngine,
        registry: CategoryRegistry,
        extract: Callable[[Path, int], str] = extract_text,
        move: Callable[[Path, Path, str], Path] = move_file,
    ):
        self.settings = settings
        self.engine = engine
        self.registry = registry
        self.extract = extract
        self.move = move
        self.counters = ProgressCounters()

    def run(self, cancel_event: threading.Event | None = None) -> RunSummary:
        """
        Execute the run and return the final counters.

        Setting ``cancel_event`` (or pressing Ctrl-C while files are being
        scanned) stops the run early; the summary then reports what was done.
        """
        cancel_event = cancel_event or threading.Event()
        source_dir = self.settings.SOURCE_DIR
        if not source_dir.is_dir():
            raise FileNotFoundError(f"Source directory does not exist: {source_dir}")

        self.publish_categories()
        self.registry.freeze()

        start_time = time.monotonic()
        log.info(
            "Scanning source directory",
            source=str(source_dir),
            destination=str(self.settings.DEST_DIR),
            workers=self.settings.WORKERS,
        )
        run_bounded_pool(
            pool_name="organiser",
            items=self._iter_jobs(cancel_event),
            process_item=lambda path: self.process_file(path, cancel_event),
            max_workers=self.settings.WORKERS,
            cancel_event=cancel_event,
            on_item_error=self._on_fault,
        )

        total, processed, failed = self.counters.snapshot()
        summary = RunSummary(
            total=total,
            processed=processed,
            failed=failed,
            cancelled=cancel_event.is_set(),
            duration_seconds=time.monotonic() - start_time,
        )
        log.info(
            "Run finished",
            total=total,
            processed=processed,
            failed=failed,
            cancelled=summary.cancelled,
            elapsed_time=round(summary.duration_seconds, 2),
        )
        return summary

    def publish_categories(self) -> None:
        """Publish manual categories, or discover them from the destination."""
        if self.settings.CATEGORIES:
            self.registry.publish(self.settings.CATEGORIES)
            log.info("Using configured categories", count=len(self.registry))
            return

        try:
            discovered = discover_categories(
                self.settings.DEST_DIR, fallback=self.registry.fallback
            )
        except OSError as e:
            log.warning(
                "Category discovery failed; using defaults",
                destination=str(self.settings.DEST_DIR),
                error=str(e),
            )
            return

        if any(category != self.registry.fallback for category in discovered):
            self.registry.publish(discovered)
            log.info(
                "Discovered categories",
                count=len(discovered),
                destination=str(self.settings.DEST_DIR),
            )
        else:
            log.info("No category folders found; using defaults", count=len(self.registry))

    def _iter_jobs(self, cancel_event: threading.Event) -> Iterator[Path]:
        for path in scan_files(self.settings.SOURCE_DIR, cancel_event=cancel_event):
            self.counters.add_total()
            yield path

    def process_file(self, path: Path, cancel_event: threading.Event | None = None) -> None:
        """
        Process one file within its own time budget and record the outcome.
        """
        deadline = Deadline(self.settings.FILE_TIMEOUT, cancel_event)
        log.info("Processing", file=path.name)
        try:
            succeeded = self._process(path, deadline)
        except OperationCancelled:
            log.info("Cancelled; file left in place", file=path.name)
            return
        except DeadlineExceeded:
            log.warning(
                "File timed out; left in place",
                file=path.name,
                file_timeout=self.settings.FILE_TIMEOUT,
            )
            succeeded = False
        self._record(succeeded)

    def _process(self, path: Path, deadline: Deadline) -> bool:
        deadline.check()
        try:
            text = self.extract(path, self.settings.EXTRACT_LIMIT)
        except ExtractionError as e:
            log.warning("Failed to extract text", file=path.name, error=str(e))
            return False

        deadline.check()
        result, error = self.engine.categorize(text, deadline)
        if error is not None:
            log.warning(
                "Categorization failed; using fallback category",
                file=path.name,
                category=self.registry.fallback,
                error=str(error),
            )
            folder = self.registry.fallback
            target_name = sanitize_filename(path.name)
        else:
            folder = result.category
            target_name = result.title + path.suffix

        dest_root = self.settings.DEST_DIR
        dest_folder = dest_root / folder
        if not dest_folder.resolve().is_relative_to(dest_root.resolve()):
            log.error("Category resolves outside destination", file=path.name, category=folder)
            return False

        deadline.check()
        try:
            final_path = self.move(path, dest_folder, target_name)
        except OSError as e:
            log.error(
                "Failed to move file",
                file=path.name,
                category=folder,
                target=target_name,
                error=str(e),
            )
            return False

        log.info(
            "Moved file",
            file=path.name,
            category=folder,
            target=str(final_path),
            confidence=result.confidence_score,
        )
        return True

    def _on_fault(self, path: Path, error: BaseException) -> None:
        self._record(False)

    def _record(self, succeeded: bool) -> None:
        if succeeded:
            self.counters.add_processed()
        else:
            self.counters.add_failed()
        self._report_progress()

    def _report_progress(self) -> None:
        total, processed, failed = self.counters.snapshot()
        completed = processed + failed
        percentage = (completed / total * 100) if total else 0.0
        log.info(
            "Progress",
            completed=completed,
            total=total,
            percent=round(percentage, 1),
            processed=processed,
            failed=failed,
        )
