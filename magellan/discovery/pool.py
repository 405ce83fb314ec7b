"""
Magellan - Bounded Worker Pool.

Producer/worker pattern shared by the scanner and the collector:
N threads consume from a queue sized N+1, the producer blocks while the
queue is full, and the call returns once every worker has drained.

Handlers own their result aggregation (under their own lock); the pool
only guarantees that an exception in one item never stops the others.
"""

import logging
import queue
import threading
from typing import Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sentinel telling a worker the queue is closed
_DONE = object()


def run_bounded(
        items: Iterable[T],
        workers: int,
        handler: Callable[[T], None],
        cancel_event: Optional[threading.Event] = None,
        name: str = "magellan-worker",
) -> int:
    """
    Run handler(item) for every item on `workers` threads.

    Args:
        items: Work items, dispatched in order.
        workers: Thread count (>= 1).
        handler: Called once per item from a worker thread.
        cancel_event: When set, no further items are dispatched; items
            already queued still run.
        name: Thread name prefix.

    Returns:
        Number of items dispatched.
    """
    workers = max(1, workers)
    work: queue.Queue = queue.Queue(maxsize=workers + 1)

    def worker() -> None:
        while True:
            item = work.get()
            if item is _DONE:
                return
            try:
                handler(item)
            except Exception as e:
                logger.exception(f"Unhandled error processing {item!r}: {e}")

    threads = [
        threading.Thread(target=worker, name=f"{name}-{i}", daemon=True)
        for i in range(workers)
    ]
    for t in threads:
        t.start()

    dispatched = 0
    try:
        for item in items:
            if cancel_event and cancel_event.is_set():
                logger.info("Cancelled, no further work dispatched")
                break
            work.put(item)
            dispatched += 1
    finally:
        for _ in threads:
            work.put(_DONE)
        for t in threads:
            t.join()

    return dispatched
