import asyncio
import logging

from agents.lore_worker import LoreWorker
from agents.lore_writer import LORE_WRITER_SYSTEM_PROMPT, LoreWriter
from agents.notification_writer import NOTIFICATION_SYSTEM_PROMPT, NotificationWriter
from agents.short_form_campaign import ShortFormCampaign
from conftest import FakeChannel, FakeGenAI, FakePublisher, make_record, make_settings
from services.chronicle_store import ChronicleStore
from services.lore_batcher import LoreBatcher
from utils.errors import UpstreamError
from utils.permit_gate import PermitGate

PLAYERS = [("alice.near", "LUCKY"), ("bob.near", "GREEDY")]
TEASER = "alice.near and bob.near just rattled the canopy 🔥"


def default_responder(system, prompt):
    if system == NOTIFICATION_SYSTEM_PROMPT:
        return TEASER
    return "Alice the lucky and bob the greedy met under the moss."


def build_worker(cfg=None, genai=None, channel=None, publisher=None, owns=lambda _w: False, batch_size=1):
    cfg = cfg or make_settings()
    genai = genai or FakeGenAI(responder=default_responder)
    channel = channel or FakeChannel()
    publisher = publisher or FakePublisher()
    batcher = LoreBatcher(rounds_capacity=100, batch_size=batch_size, pending_capacity=10)
    worker = LoreWorker(
        cfg,
        batcher=batcher,
        chronicles=ChronicleStore(10),
        gate=PermitGate(1),
        genai=genai,
        lore_writer=LoreWriter(genai),
        notification_writer=NotificationWriter(genai),
        long_form=channel,
        campaign=ShortFormCampaign(publisher, genai, images_enabled=cfg.short_form_images),
        owns_short_channel=owns,
    )
    return worker, batcher, genai, channel, publisher


def ingest(batcher, *round_numbers):
    for n in round_numbers:
        batcher.ingest(make_record(n, PLAYERS))


class TestLoreWorkerDrain:
    def test_run_once_drains_three_batches(self):
        worker, batcher, genai, channel, _ = build_worker(make_settings(publish_long_form=True))
        ingest(batcher, 1, 2, 3)

        asyncio.run(worker.run_once())

        status = worker.get_status()
        assert batcher.pending_count() == 0
        assert status.busy is False
        assert status.last_error is None
        assert len(worker.chronicles) == 3
        assert [k.split("_")[1:3] for _, k in channel.published] == [["1", "1"], ["2", "2"], ["3", "3"]]
        assert status.last_long_form.key == channel.published[-1][1]
        assert worker.chronicles.latest().external_ref == f"chronicles/{channel.published[-1][1]}"

    def test_chronicles_feed_back_as_memory(self):
        worker, batcher, genai, _, _ = build_worker()
        ingest(batcher, 1, 2)
        asyncio.run(worker.run_once())

        lore_prompts = [p for s, p in genai.calls if s == LORE_WRITER_SYSTEM_PROMPT]
        assert '"count": 0' in lore_prompts[0]
        assert '"count": 1' in lore_prompts[1]

    def test_failure_is_recorded_and_backlog_continues(self, caplog):
        def responder(system, prompt):
            if '"round": 1' in prompt:
                raise UpstreamError("model overloaded", service="gemini")
            return default_responder(system, prompt)

        worker, batcher, _, _, _ = build_worker(genai=FakeGenAI(responder=responder))
        ingest(batcher, 1, 2, 3)

        with caplog.at_level(logging.ERROR, logger="agents.lore_worker"):
            asyncio.run(worker.run_once())

        assert batcher.pending_count() == 0
        assert len(worker.chronicles) == 2
        assert [e.batch_id.split("_")[1] for e in worker.chronicles.list_oldest_first()] == ["2", "3"]
        assert "model overloaded" in caplog.text
        assert worker.get_status().busy is False

    def test_last_failure_stays_on_state(self):
        def responder(system, prompt):
            if '"round": 2' in prompt:
                raise UpstreamError("deadline exceeded")
            return default_responder(system, prompt)

        worker, batcher, _, _, _ = build_worker(genai=FakeGenAI(responder=responder))
        ingest(batcher, 1, 2)
        asyncio.run(worker.run_once())
        status = worker.get_status()
        assert status.last_error == "deadline exceeded"
        assert status.last_batch_id.startswith("batch_2_2_")

    def test_noop_when_generation_not_configured(self):
        worker, batcher, genai, _, _ = build_worker(genai=FakeGenAI(configured=False))
        ingest(batcher, 1)
        asyncio.run(worker.run_once())
        assert batcher.pending_count() == 1
        assert genai.calls == []
        assert worker.get_status().last_tick_at is not None

    def test_busy_worker_ignores_reentrant_tick(self):
        worker, batcher, genai, _, _ = build_worker()
        ingest(batcher, 1)
        worker.state.busy = True
        asyncio.run(worker.run_once())
        assert batcher.pending_count() == 1
        assert genai.calls == []

    def test_ready_callback_schedules_background_drain(self):
        async def run():
            worker, batcher, _, _, _ = build_worker()
            batcher.set_on_batch_ready(worker.schedule_run)
            ingest(batcher, 1, 2)
            for _ in range(50):
                await asyncio.sleep(0.01)
                if not worker.state.busy and batcher.pending_count() == 0:
                    break
            return worker, batcher

        worker, batcher = asyncio.run(run())
        assert batcher.pending_count() == 0
        assert len(worker.chronicles) == 2


class TestLoreWorkerShortForm:
    def test_marketing_window_skips_short_form(self, caplog):
        cfg = make_settings(publish_short_form=True)
        worker, batcher, genai, _, publisher = build_worker(cfg, owns=lambda _w: True)
        ingest(batcher, 1)

        with caplog.at_level(logging.INFO, logger="agents.lore_worker"):
            asyncio.run(worker.run_once())

        assert "reason=marketing_window" in caplog.text
        assert publisher.posts == []
        assert all(s != NOTIFICATION_SYSTEM_PROMPT for s, _ in genai.calls)
        assert len(worker.chronicles) == 1

    def test_outside_window_posts_teaser(self):
        cfg = make_settings(publish_short_form=True)
        worker, batcher, _, _, publisher = build_worker(cfg, owns=lambda _w: False)
        ingest(batcher, 1)
        asyncio.run(worker.run_once())

        assert publisher.posts == [(TEASER, None)]
        assert worker.get_status().last_short_form.post_id == "post-1"

    def test_rejected_teaser_is_regenerated(self):
        drafts = iter(["alice.near bob.near #hype", TEASER])

        def responder(system, prompt):
            if system == NOTIFICATION_SYSTEM_PROMPT:
                return next(drafts)
            return "lore"

        cfg = make_settings(publish_short_form=True)
        worker, batcher, genai, _, publisher = build_worker(cfg, genai=FakeGenAI(responder=responder))
        ingest(batcher, 1)
        asyncio.run(worker.run_once())

        assert publisher.posts == [(TEASER, None)]
        assert sum(1 for s, _ in genai.calls if s == NOTIFICATION_SYSTEM_PROMPT) == 2

    def test_exhausted_teaser_attempts_fail_the_batch(self):
        def responder(system, prompt):
            if system == NOTIFICATION_SYSTEM_PROMPT:
                return "nobody is named here"
            return "lore"

        cfg = make_settings(publish_short_form=True, notification_max_attempts=3)
        worker, batcher, genai, _, publisher = build_worker(cfg, genai=FakeGenAI(responder=responder))
        ingest(batcher, 1)
        asyncio.run(worker.run_once())

        assert publisher.posts == []
        assert worker.get_status().last_error.startswith("missing_ids")
        assert sum(1 for s, _ in genai.calls if s == NOTIFICATION_SYSTEM_PROMPT) == 3
        assert len(worker.chronicles) == 0

    def test_image_failure_falls_back_to_text(self):
        cfg = make_settings(publish_short_form=True, short_form_images=True)
        genai = FakeGenAI(responder=default_responder, image_error=UpstreamError("no image"))
        worker, batcher, _, _, publisher = build_worker(cfg, genai=genai)
        ingest(batcher, 1)
        asyncio.run(worker.run_once())

        assert publisher.posts == [(TEASER, None)]
        result = worker.get_status().last_short_form
        assert result.error == "no image"
        assert "PRIMARY=" in genai.image_prompts[0]

    def test_image_success_attaches_media(self):
        cfg = make_settings(publish_short_form=True, short_form_images=True)
        worker, batcher, _, _, publisher = build_worker(cfg)
        ingest(batcher, 1)
        asyncio.run(worker.run_once())

        assert publisher.posts == [(TEASER, ["media-1"])]
        assert worker.get_status().last_short_form.media_id == "media-1"
