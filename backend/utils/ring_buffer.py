from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Fixed-capacity buffer that overwrites the oldest element when full.
    Items come back oldest -> newest.
    """

    def __init__(self, capacity: int):
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"Invalid ring buffer capacity: {capacity!r}")
        self._capacity = capacity
        self._buf: List[Optional[T]] = [None] * capacity
        self._head = 0  # index of the oldest element
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, item: T) -> Optional[T]:
        """Insert an item. Returns the evicted oldest element when the buffer was full."""
        dropped: Optional[T] = None
        if self._size == self._capacity:
            dropped = self._buf[self._head]
            self._buf[self._head] = None
            self._head = (self._head + 1) % self._capacity
            self._size -= 1

        tail = (self._head + self._size) % self._capacity
        self._buf[tail] = item
        self._size += 1
        return dropped

    def to_list(self) -> List[T]:
        """Chronological snapshot (oldest -> newest)."""
        return [
            self._buf[(self._head + i) % self._capacity]  # type: ignore[misc]
            for i in range(self._size)
        ]

    def drain(self, n: int) -> List[T]:
        """Remove and return up to ``n`` oldest elements, preserving order."""
        if n <= 0:
            return []
        count = min(n, self._size)
        out: List[T] = []
        for i in range(count):
            idx = (self._head + i) % self._capacity
            out.append(self._buf[idx])  # type: ignore[arg-type]
            self._buf[idx] = None

        self._head = (self._head + count) % self._capacity
        self._size -= count
        return out
