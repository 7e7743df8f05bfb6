"""
Process-wide wiring. Every long-lived object is built exactly once here and
passed by reference; nothing else in the code base keeps module singletons.
"""
import logging
from typing import Optional

from agents.lore_worker import LoreWorker
from agents.lore_writer import LoreWriter
from agents.marketing_poster import MarketingPoster
from agents.notification_writer import NotificationWriter
from agents.round_processor import RoundProcessor
from agents.round_result_agent import RoundResultAgent
from agents.short_form_campaign import ShortFormCampaign
from services.chronicle_store import ChronicleStore
from services.firestore_service import ChronicleChannel
from services.genai_service import GenAIService
from services.lore_batcher import LoreBatcher
from services.short_form_publisher import ShortFormPublisher
from utils.dedupe import DedupeWindow
from utils.permit_gate import PermitGate

logger = logging.getLogger(__name__)


class WhisperRuntime:
    def __init__(
        self,
        cfg,
        gate: PermitGate,
        genai: GenAIService,
        batcher: LoreBatcher,
        chronicles: ChronicleStore,
        long_form: ChronicleChannel,
        short_form: ShortFormPublisher,
        worker: LoreWorker,
        marketing: MarketingPoster,
        round_results: RoundResultAgent,
        processor: RoundProcessor,
    ):
        self.cfg = cfg
        self.gate = gate
        self.genai = genai
        self.batcher = batcher
        self.chronicles = chronicles
        self.long_form = long_form
        self.short_form = short_form
        self.worker = worker
        self.marketing = marketing
        self.round_results = round_results
        self.processor = processor

    @classmethod
    def build(
        cls,
        cfg,
        genai: Optional[GenAIService] = None,
        long_form: Optional[ChronicleChannel] = None,
        short_form: Optional[ShortFormPublisher] = None,
    ) -> "WhisperRuntime":
        gate = PermitGate(1)
        genai = genai or GenAIService(
            api_key=cfg.gemini_api_key,
            model=cfg.generation_model,
            image_model=cfg.image_model,
            default_timeout=cfg.generation_timeout_s,
        )
        long_form = long_form or ChronicleChannel(
            project=cfg.google_cloud_project,
            collection=cfg.chronicles_collection,
            emulator_host=cfg.firestore_emulator_host,
            timeout=cfg.publish_timeout_s,
        )
        short_form = short_form or ShortFormPublisher(
            bridge_url=cfg.short_form_bridge_url,
            token=cfg.short_form_bridge_token,
            timeout=cfg.short_form_timeout_s,
            attempts=cfg.short_form_publish_attempts,
        )

        batcher = LoreBatcher(
            rounds_capacity=cfg.rounds_capacity,
            batch_size=cfg.batch_size,
            pending_capacity=cfg.pending_capacity,
        )
        chronicles = ChronicleStore(cfg.chronicle_capacity)

        marketing = MarketingPoster(cfg, genai, short_form, gate, chronicles)
        worker = LoreWorker(
            cfg,
            batcher=batcher,
            chronicles=chronicles,
            gate=gate,
            genai=genai,
            lore_writer=LoreWriter(genai, cfg.lore_writer_max_tokens, cfg.lore_writer_timeout_s),
            notification_writer=NotificationWriter(genai, cfg.notification_timeout_s),
            long_form=long_form,
            campaign=ShortFormCampaign(short_form, genai, cfg.short_form_images, cfg.image_timeout_s),
            owns_short_channel=marketing.owns_short_channel_at,
        )
        round_results = RoundResultAgent(
            genai,
            gate,
            backend_url=cfg.game_backend_url,
            backend_token=cfg.game_backend_token,
            timeout=cfg.round_result_timeout_s,
            max_tokens=cfg.round_result_max_tokens,
            temperature=cfg.round_result_temperature,
        )
        processor = RoundProcessor(DedupeWindow(cfg.dedupe_capacity), batcher, round_results)

        batcher.set_on_batch_ready(worker.schedule_run)

        return cls(
            cfg, gate, genai, batcher, chronicles, long_form, short_form,
            worker, marketing, round_results, processor,
        )

    async def startup_checks(self) -> None:
        """Log readiness of each collaborator. Never fatal."""
        cfg = self.cfg
        if self.genai.configured:
            if await self.genai.check_connection():
                logger.info("[startup] Gemini ready (model=%s)", self.genai.model)
            else:
                logger.warning("[startup] Gemini not ready (model=%s)", self.genai.model)
        else:
            logger.info("[startup] Gemini disabled: GEMINI_API_KEY not set")

        if cfg.publish_long_form:
            if self.long_form.configured and await self.long_form.check_connection():
                logger.info("[startup] Firestore ready (collection=%s)", self.long_form.collection)
            else:
                logger.warning("[startup] Firestore not ready; long-form publishes will fail")
        else:
            logger.info("[startup] Long-form publishing disabled")

        if cfg.publish_short_form:
            if await self.short_form.check_connection():
                logger.info("[startup] Short-form bridge ready")
            else:
                logger.warning("[startup] Short-form bridge not ready")
            logger.info("[startup] Short-form images %s", "enabled" if cfg.short_form_images else "disabled")
        else:
            logger.info("[startup] Short-form publishing disabled")

    async def start(self) -> None:
        await self.startup_checks()
        try:
            await self.marketing.start()
        except Exception:
            logger.error("[startup] Marketing scheduler failed to start", exc_info=True)

    async def stop(self) -> None:
        await self.marketing.stop()
