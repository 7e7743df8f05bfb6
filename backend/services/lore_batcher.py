"""
Lore batcher: turns the unbounded round stream into fixed-size batches.

The rounds ring is kept for introspection only. Batch composition comes from
the unbatched queue, always in ingestion order. Formed batches wait in a
bounded pending ring; when the worker cannot keep up, the oldest undelivered
batch is dropped.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from models.lore import LoreBatch, RoundRecord
from utils.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

BatchReadyCallback = Callable[[], Any]


class LoreBatcher:
    def __init__(self, rounds_capacity: int = 100, batch_size: int = 20, pending_capacity: int = 10):
        if batch_size <= 0:
            raise ValueError(f"Invalid batch size: {batch_size!r}")
        self._batch_size = batch_size
        self._rounds: RingBuffer[RoundRecord] = RingBuffer(rounds_capacity)
        self._pending: RingBuffer[LoreBatch] = RingBuffer(pending_capacity)
        self._unbatched: List[RoundRecord] = []
        self._on_batch_ready: Optional[BatchReadyCallback] = None

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def set_on_batch_ready(self, cb: Optional[BatchReadyCallback]) -> None:
        """Register the callback fired once per newly formed batch."""
        self._on_batch_ready = cb

    def ingest(self, record: RoundRecord) -> None:
        evicted = self._rounds.push(record)
        if evicted is not None:
            logger.info(
                "[batcher] Round %d evicted from ring (ts=%d)",
                evicted.round_number, evicted.ts,
            )

        self._unbatched.append(record)
        logger.info(
            "[batcher] Round %d ingested (stored=%d/%d, unbatched=%d/%d, pending=%d/%d)",
            record.round_number,
            len(self._rounds), self._rounds.capacity,
            len(self._unbatched), self._batch_size,
            len(self._pending), self._pending.capacity,
        )

        while len(self._unbatched) >= self._batch_size:
            rounds = self._unbatched[: self._batch_size]
            del self._unbatched[: self._batch_size]

            created_at = int(time.time() * 1000)
            batch_id = f"batch_{rounds[0].round_number}_{rounds[-1].round_number}_{created_at}"
            batch = LoreBatch(id=batch_id, created_at=created_at, rounds=rounds)

            dropped = self._pending.push(batch)
            if dropped is not None:
                logger.warning(
                    "[batcher] Pending ring full; dropped undelivered batch %s (rounds %d-%d)",
                    dropped.id, dropped.first_round, dropped.last_round,
                )

            logger.info(
                "[batcher] Batch %s ready (rounds %d-%d, pending=%d)",
                batch_id, batch.first_round, batch.last_round, len(self._pending),
            )
            self._notify_ready(batch_id)

    def _notify_ready(self, batch_id: str) -> None:
        if self._on_batch_ready is None:
            return
        try:
            self._on_batch_ready()
        except Exception:
            logger.error("[batcher] Batch-ready callback failed for %s", batch_id, exc_info=True)

    def drain_pending(self, n: int) -> List[LoreBatch]:
        return self._pending.drain(n)

    def pending_count(self) -> int:
        return len(self._pending)

    def status(self) -> Dict[str, Any]:
        pending = self._pending.to_list()
        return {
            "rounds_stored": len(self._rounds),
            "rounds_capacity": self._rounds.capacity,
            "unbatched": len(self._unbatched),
            "batch_size": self._batch_size,
            "pending_batches": len(pending),
            "pending_capacity": self._pending.capacity,
            "last_batch_id": pending[-1].id if pending else None,
        }
