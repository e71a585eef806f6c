"""
Bounded Worker Pool
===================

The organiser processes a stream of independent work items with a fixed
number of worker threads. The control-flow pattern is the same for any kind
of item:

- A producer (the calling thread) pushes items into a bounded queue and
  blocks while the queue is full, so scanning never runs far ahead of
  processing.
- N workers drain the queue. Exceptions raised while processing one item are
  logged and do not stop the worker or its siblings.
- A shared cancellation event is polled on both sides of the queue, so an
  interrupt stops the producer and lets workers finish their current item
  and exit.

This module contains a small, reusable implementation so the pipeline stays
focused on what happens to a single file.
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

_DONE = object()


def run_bounded_pool(
    *,
    pool_name: str,
    items: Iterable[T],
    process_item: Callable[[T], None],
    max_workers: int,
    cancel_event: threading.Event,
    queue_size: int | None = None,
    on_item_error: Callable[[T, BaseException], None] | None = None,
    poll_interval: float = 0.1,
) -> int:
    """
    Feed ``items`` through ``max_workers`` threads and wait for them to finish.

    Args:
        pool_name:
            Name used in log messages.
        items:
            Work items. Consumed lazily on the calling thread; exceptions raised
            by the iterable propagate after the workers have been stopped.
        process_item:
            Processes a single work item. Exceptions are caught and logged.
        max_workers:
            Number of worker threads.
        cancel_event:
            Set to stop producing and consuming. Items already taken by a
            worker run to completion.
        queue_size:
            Queue capacity; defaults to twice the worker count.
        on_item_error:
            Optional hook invoked after an item's exception has been logged
            (e.g. to count the failure).
        poll_interval:
            How often blocked queue operations re-check ``cancel_event``.

    Returns:
        The number of items enqueued.
    """
    max_workers = max(1, int(max_workers))
    jobs: queue.Queue = queue.Queue(maxsize=queue_size or max_workers * 2)

    def worker() -> None:
        while True:
            if cancel_event.is_set():
                return
            try:
                item = jobs.get(timeout=poll_interval)
            except queue.Empty:
                continue
            if item is _DONE:
                return
            try:
                process_item(item)
            except Exception as e:
                log.exception(
                    "Work item failed",
                    pool=pool_name,
                    item=_safe_item_summary(item),
                )
                if on_item_error is not None:
                    on_item_error(item, e)

    enqueued = 0
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=pool_name) as executor:
        workers = [executor.submit(worker) for _ in range(max_workers)]
        try:
            for item in items:
                if not _put(jobs, item, cancel_event, poll_interval):
                    break
                enqueued += 1
        except KeyboardInterrupt:
            log.info("Ctrl-C received; stopping", pool=pool_name)
            cancel_event.set()
        except BaseException:
            cancel_event.set()
            raise
        finally:
            # One end marker per worker; cancelled workers leave without them.
            for _ in workers:
                if not _put(jobs, _DONE, cancel_event, poll_interval):
                    break
            for future in workers:
                future.result()
    return enqueued


def _put(jobs: queue.Queue, item: object, cancel_event: threading.Event, poll_interval: float) -> bool:
    """Block until ``item`` is queued; False if cancelled first."""
    while not cancel_event.is_set():
        try:
            jobs.put(item, timeout=poll_interval)
            return True
        except queue.Full:
            continue
    return False


def _safe_item_summary(item: object) -> str:
    """
    Best-effort string for logging a work item.
    """
    try:
        return str(item)
    except Exception:
        return "<unprintable>"
