import asyncio
import logging

import httpx

from agents.round_processor import RoundProcessor
from agents.round_result_agent import ROUND_RESULT_SYSTEM_PROMPT, WEBHOOK_PATH, RoundResultAgent
from conftest import FakeGenAI, make_record
from models.lore import RoundEvent, RoundPlayer, RoundSummary
from services.lore_batcher import LoreBatcher
from utils.dedupe import DedupeWindow
from utils.permit_gate import PermitGate


def _event(n, players=(("alice.near", "LUCKY"),)):
    return RoundEvent(
        round_number=n,
        created_at=1_700_000_000_000 + n,
        summary=RoundSummary(players=[RoundPlayer(account_id=a, behavior_tag=t) for a, t in players]),
    )


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestRoundProcessor:
    def test_duplicate_round_is_ignored(self):
        genai = FakeGenAI(responder=lambda s, p: "**alice** rides the luck tonight")
        batcher = LoreBatcher(batch_size=20)
        agent = RoundResultAgent(genai, PermitGate(1))
        processor = RoundProcessor(DedupeWindow(100), batcher, agent)

        async def run():
            first = processor.handle(_event(1))
            second = processor.handle(_event(1))
            third = processor.handle(_event(2))
            await _settle()
            return first, second, third

        assert asyncio.run(run()) == (True, False, True)
        assert batcher.status()["rounds_stored"] == 2
        assert batcher.status()["unbatched"] == 2
        assert agent.latest is not None

    def test_round_fills_batch(self):
        batcher = LoreBatcher(batch_size=2)
        agent = RoundResultAgent(FakeGenAI(configured=False), PermitGate(1))
        processor = RoundProcessor(DedupeWindow(100), batcher, agent)

        async def run():
            processor.handle(_event(1))
            processor.handle(_event(2))
            await _settle()

        asyncio.run(run())
        assert batcher.pending_count() == 1
        assert agent.latest is None


class TestRoundResultAgent:
    def test_comment_is_cached_and_flattened(self, caplog):
        genai = FakeGenAI(texts=["**alice** rides the luck\n**bob** bites off too much"])
        agent = RoundResultAgent(genai, PermitGate(1))
        record = make_record(7, [("alice.near", "LUCKY"), ("bob.near", "GREEDY"), ("carol.near", None)])

        async def run():
            await agent.produce(record)
            await _settle()

        with caplog.at_level(logging.INFO, logger="agents.round_result_agent"):
            asyncio.run(run())

        assert agent.latest.round_number == 7
        assert agent.latest.comment == "**alice** rides the luck **bob** bites off too much"
        system, prompt = genai.calls[0]
        assert system == ROUND_RESULT_SYSTEM_PROMPT
        assert '"handle": "alice"' in prompt
        assert "carol" not in prompt
        assert "Webhook skipped" in caplog.text

    def test_same_round_is_not_commented_twice(self):
        genai = FakeGenAI(responder=lambda s, p: "**alice** glows")
        agent = RoundResultAgent(genai, PermitGate(1))
        record = make_record(3, [("alice.near", "MASTER")])

        async def run():
            await agent.produce(record)
            await agent.produce(record)

        asyncio.run(run())
        assert len(genai.calls) == 1

    def test_no_players_or_all_indifferent_means_no_call(self):
        genai = FakeGenAI()
        agent = RoundResultAgent(genai, PermitGate(1))

        async def run():
            await agent.produce(make_record(1))
            await agent.produce(make_record(2, [("alice.near", "INDIFFERENT"), ("bob.near", None)]))

        asyncio.run(run())
        assert genai.calls == []
        assert agent.latest is None

    def test_generation_failure_is_logged_not_raised(self, caplog):
        from utils.errors import UpstreamError

        genai = FakeGenAI(texts=[UpstreamError("quota")])
        agent = RoundResultAgent(genai, PermitGate(1))
        with caplog.at_level(logging.WARNING, logger="agents.round_result_agent"):
            asyncio.run(agent.produce(make_record(4, [("alice.near", "LUCKY")])))
        assert agent.latest is None
        assert "Round 4 skipped: quota" in caplog.text
        assert agent._in_flight == set()

    def test_limits_are_clamped(self):
        agent = RoundResultAgent(FakeGenAI(), PermitGate(1), max_tokens=5000, temperature=2.0)
        assert agent.max_tokens == 256
        assert agent.temperature == 0.9
        agent = RoundResultAgent(FakeGenAI(), PermitGate(1), max_tokens=1, temperature=0.0)
        assert agent.max_tokens == 32
        assert agent.temperature == 0.2

    def test_webhook_posts_comment_with_bearer(self, monkeypatch):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        real_client = httpx.AsyncClient

        def client_factory(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(handler)
            return real_client(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", client_factory)
        agent = RoundResultAgent(FakeGenAI(), PermitGate(1), backend_url="http://game.local/", backend_token="s3cret")

        asyncio.run(agent.send_to_backend(9, "**alice** glows"))

        assert len(seen) == 1
        assert str(seen[0].url) == f"http://game.local{WEBHOOK_PATH}"
        assert seen[0].headers["Authorization"] == "Bearer s3cret"
        assert b'"round_number":9' in seen[0].content.replace(b" ", b"")
