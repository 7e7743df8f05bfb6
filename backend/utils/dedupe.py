from collections import deque
from typing import Deque, Set


class DedupeWindow:
    """
    "Seen recently" set with FIFO eviction.

    Collapses at-least-once delivery of the same round into one processing
    attempt. Keys that fall out of the window count as new again.
    """

    def __init__(self, capacity: int):
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"Invalid dedupe capacity: {capacity!r}")
        self._capacity = capacity
        self._seen: Set[str] = set()
        self._order: Deque[str] = deque()

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, key: str) -> bool:
        return key in self._seen

    def mark_once(self, key: str) -> bool:
        """True if ``key`` is new inside the window, False for a repeat."""
        if key in self._seen:
            return False

        self._seen.add(key)
        self._order.append(key)

        while len(self._order) > self._capacity:
            self._seen.discard(self._order.popleft())
        return True
