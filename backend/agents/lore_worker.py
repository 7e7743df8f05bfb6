"""
Lore Worker: drains pending batches one at a time.

Per batch, one permit hold covers every generation step (chronicle, then the
short-form teaser) so round comments and marketing posts cannot interleave
with it. Publishing and continuity bookkeeping run after the permit is
released. A failing batch is recorded and consumed; the loop moves on to the
next pending batch until the backlog is empty.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Set, Tuple

from agents.lore_writer import LoreWriter, build_lore_context
from agents.notification_writer import NotificationWriter, ensure_valid_notification, pick_mention_ids
from agents.short_form_campaign import ShortFormCampaign
from models.lore import ChronicleEntry, LoreBatch, LoreWorkerState
from services.chronicle_store import ChronicleStore
from services.firestore_service import ChronicleChannel, build_long_form_key
from services.genai_service import GenAIService
from services.lore_batcher import LoreBatcher
from utils.errors import ValidationRejection
from utils.permit_gate import PermitGate

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _now_ms() -> int:
    return int(time.time() * 1000)


class LoreWorker:
    def __init__(
        self,
        cfg,
        batcher: LoreBatcher,
        chronicles: ChronicleStore,
        gate: PermitGate,
        genai: GenAIService,
        lore_writer: LoreWriter,
        notification_writer: NotificationWriter,
        long_form: ChronicleChannel,
        campaign: ShortFormCampaign,
        owns_short_channel: Callable[[datetime], bool] = lambda _when: False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cfg = cfg
        self.batcher = batcher
        self.chronicles = chronicles
        self.gate = gate
        self.genai = genai
        self.lore_writer = lore_writer
        self.notification_writer = notification_writer
        self.long_form = long_form
        self.campaign = campaign
        self.owns_short_channel = owns_short_channel
        self.clock = clock
        self.state = LoreWorkerState()
        self._tasks: Set[asyncio.Task] = set()

    def get_status(self) -> LoreWorkerState:
        return self.state.model_copy(deep=True)

    def schedule_run(self) -> None:
        """Fire-and-forget trigger; used as the batcher's ready callback."""
        task = asyncio.create_task(self.tick())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def run_once(self) -> None:
        await self.tick()

    async def tick(self) -> None:
        self.state.last_tick_at = _now_ms()
        if self.state.busy:
            return
        if not self.genai.configured:
            logger.debug("[lore_worker] Generation not configured; tick is a no-op")
            return
        if self.batcher.pending_count() == 0:
            return

        self.state.busy = True
        try:
            while True:
                drained = self.batcher.drain_pending(1)
                if not drained:
                    break
                await self._process(drained[0])
        finally:
            self.state.busy = False

    async def _process(self, batch: LoreBatch) -> None:
        self.state.last_batch_id = batch.id
        self.state.last_error = None
        try:
            await self._run_cycle(batch)
        except Exception as exc:
            self.state.last_error = str(exc) or type(exc).__name__
            logger.error("[%s] Lore cycle failed: %s", batch.id, self.state.last_error, exc_info=True)

    async def _run_cycle(self, batch: LoreBatch) -> None:
        memory = self.chronicles.list_oldest_first()
        context = build_lore_context(batch, memory, self.chronicles.capacity)

        async with self.gate.permit("lore_cycle"):
            lore, short_text = await self._generate(batch, context.payload, context.mention_ids)

        external_ref: Optional[str] = None
        if self.cfg.publish_long_form:
            key = build_long_form_key(batch.first_round, batch.last_round, batch.created_at)
            published = await self.long_form.publish(lore, key)
            self.state.last_long_form = published
            external_ref = published.ref

        if self.cfg.publish_short_form and short_text:
            self.state.last_short_form = await self.campaign.publish(
                short_text, batch.id, context.image_prompt
            )

        self.chronicles.push(ChronicleEntry(batch_id=batch.id, external_ref=external_ref, text=lore))
        logger.info(
            "[%s] Chronicle stored (%d/%d, ref=%s)",
            batch.id, len(self.chronicles), self.chronicles.capacity, external_ref,
        )

    async def _generate(self, batch: LoreBatch, payload: str, mention_ids) -> Tuple[str, Optional[str]]:
        """Caller holds the permit for the whole cycle."""
        lore = await self.lore_writer.write(payload, batch.id)

        if not self.cfg.publish_short_form:
            return lore, None

        if self.owns_short_channel(self.clock()):
            logger.info(
                "[%s] Short-form publish skipped (reason=marketing_window)", batch.id
            )
            return lore, None

        ids = pick_mention_ids(mention_ids)
        max_attempts = max(1, int(self.cfg.notification_max_attempts))
        last_exc: Optional[Exception] = None
        for attempt in range(1, max_attempts + 1):
            try:
                text = await self.notification_writer.write(lore, batch.id, attempt, ids)
                ensure_valid_notification(text, ids, self.cfg.notification_max_chars)
                return lore, text
            except ValidationRejection as rej:
                last_exc = rej
                logger.info("[%s] Notification attempt %d rejected: %s", batch.id, attempt, rej.reason)
            except Exception as exc:
                last_exc = exc
                logger.warning("[%s] Notification attempt %d failed: %s", batch.id, attempt, exc)

        raise last_exc or ValidationRejection("notification_failed_to_fit_constraints")
