from typing import List, Optional

from models.lore import ChronicleEntry
from utils.ring_buffer import RingBuffer


class ChronicleStore:
    """
    Last N published chronicles, kept in memory and fed back to the writer
    as continuity context. Oldest entry is evicted first.
    """

    def __init__(self, capacity: int = 10):
        self._ring: RingBuffer[ChronicleEntry] = RingBuffer(capacity)

    def __len__(self) -> int:
        return len(self._ring)

    @property
    def capacity(self) -> int:
        return self._ring.capacity

    def push(self, entry: ChronicleEntry) -> Optional[ChronicleEntry]:
        return self._ring.push(entry)

    def list_oldest_first(self) -> List[ChronicleEntry]:
        return self._ring.to_list()

    def list_newest_first(self) -> List[ChronicleEntry]:
        return list(reversed(self._ring.to_list()))

    def latest(self) -> Optional[ChronicleEntry]:
        items = self._ring.to_list()
        return items[-1] if items else None
