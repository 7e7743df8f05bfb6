import asyncio
import logging
import time
from typing import Set

from agents.round_result_agent import RoundResultAgent
from models.lore import RoundEvent, RoundRecord
from services.lore_batcher import LoreBatcher
from utils.dedupe import DedupeWindow

logger = logging.getLogger(__name__)


class RoundProcessor:
    """Round intake: dedupe, kick off the round comment, then batch the round."""

    def __init__(self, dedupe: DedupeWindow, batcher: LoreBatcher, round_results: RoundResultAgent):
        self.dedupe = dedupe
        self.batcher = batcher
        self.round_results = round_results
        self._tasks: Set[asyncio.Task] = set()

    def handle(self, event: RoundEvent) -> bool:
        """Returns False for a duplicate delivery of an already-seen round."""
        if not self.dedupe.mark_once(f"round:{event.round_number}"):
            logger.info("[intake] Round %d deduped", event.round_number)
            return False

        record = RoundRecord(
            round_number=event.round_number,
            ts=event.created_at,
            received_at=int(time.time() * 1000),
            payload=event.payload,
            summary=event.summary,
        )

        # Comment first so it queues on the permit ahead of a batch formed by this round
        task = asyncio.create_task(self.round_results.produce(record))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self.batcher.ingest(record)
        return True
