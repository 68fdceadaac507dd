"""Bounded FIFO of application keys.

Watch callbacks enqueue keys from the informer thread; the reconciler thread
drains them. The queue is neither deduplicated nor prioritised: the same key
may be queued several times, and each occurrence causes one reconciliation.
"""

import logging
import queue

from core.models import is_valid_key

logger = logging.getLogger("operator.queue")

DEFAULT_CAPACITY = 1024


class WorkQueue:
    """Bounded, thread-safe FIFO of application keys."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            msg = f"capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self.capacity = capacity
        self._queue: queue.Queue[str] = queue.Queue(maxsize=capacity)
        self.dropped = 0

    def enqueue(self, key: str) -> bool:
        """Append `key` without blocking.

        Malformed keys and keys arriving while the queue is full are logged
        and dropped.

        Returns:
            True if the key was queued.
        """
        if not is_valid_key(key):
            logger.warning("Ignoring invalid work item", extra={"key": repr(key)})
            return False
        try:
            self._queue.put_nowait(key)
        except queue.Full:
            self.dropped += 1
            logger.error(
                "Work queue full, dropping item",
                extra={"key": key, "capacity": self.capacity, "dropped_total": self.dropped},
            )
            return False
        return True

    def dequeue(self, timeout: float | None = None) -> str | None:
        """Remove and return the oldest key.

        Args:
            timeout: Seconds to wait for an item. None blocks indefinitely.

        Returns:
            The key, or None if `timeout` expired first.
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()
