"""
Round Result Agent: one short oracle comment per finished round.

Comments go through the same permit gate as the chronicles, are cached for
GET /lore/round-result/latest and pushed back to the game backend. Nothing here
raises to the caller; a missed comment is only logged.
"""
import asyncio
import json
import logging
import time
from typing import List, Optional, Set

import httpx

from models.lore import BehaviorTag, RoundRecord, RoundResultEntry
from services.genai_service import GenAIService
from utils.permit_gate import PermitGate

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/webhook/whisper/round-result"
WEBHOOK_TIMEOUT_S = 2.5

ROUND_RESULT_SYSTEM_PROMPT = """You are a dark forest oracle on a blackjack table, the smirking chronicler of the Dark Forest.
You observe warriors with amused superiority. You mock mistakes, praise boldness, and subtly provoke pride.

FORMAT:
- One sentence per player, no newlines.
- Start each sentence with **handle** (markdown bold). No other markdown.
- 6-10 words per sentence (hard max 12).
- No commas, no dashes, no semicolons, no parentheticals.

BEHAVIOR RULES (behavior_tag):
- MASTER: they are wizards of life
- LUCKY: love them, compliment them
- UNLUCKY: tease them to keep trying
- GREEDY: mock them
- INDIFFERENT: neutral and short

STYLE: sparse emojis (0-1 per sentence)."""


def _short(account_id: str) -> str:
    s = account_id or ""
    if s.endswith(".near"):
        s = s[: -len(".near")]
    if len(s) > 16 and "." not in s:
        return f"{s[:6]}…{s[-4:]}"
    return s


class RoundResultAgent:
    def __init__(
        self,
        genai: GenAIService,
        gate: PermitGate,
        backend_url: str = "",
        backend_token: str = "",
        timeout: float = 15.0,
        max_tokens: int = 80,
        temperature: float = 0.9,
    ):
        self.genai = genai
        self.gate = gate
        self.backend_url = backend_url.rstrip("/")
        self.backend_token = backend_token
        self.timeout = timeout
        self.max_tokens = max(32, min(256, max_tokens))
        self.temperature = max(0.2, min(0.9, temperature))
        self.latest: Optional[RoundResultEntry] = None
        self._in_flight: Set[int] = set()
        self._tasks: Set[asyncio.Task] = set()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def produce(self, record: RoundRecord) -> None:
        if not self.genai.configured:
            return
        players = record.players
        if not players:
            return

        round_number = record.round_number
        if self.latest is not None and self.latest.round_number == round_number:
            return
        if round_number in self._in_flight:
            return
        self._in_flight.add(round_number)

        try:
            context: List[dict] = [
                {
                    "handle": _short(p.account_id),
                    "behavior_tag": (p.behavior_tag or BehaviorTag.INDIFFERENT).value,
                }
                for p in players
            ]
            commented = [c for c in context if c["behavior_tag"] != BehaviorTag.INDIFFERENT.value]
            if not commented:
                logger.info("[round_result] Round %d: all players indifferent, no comment", round_number)
                return

            start = time.monotonic()
            async with self.gate.permit("round_result"):
                raw = await self.genai.generate_text(
                    system=ROUND_RESULT_SYSTEM_PROMPT,
                    prompt=(
                        f"{json.dumps({'players': commented}, indent=2)}\n\n"
                        "Write one sentence per player in the order given."
                    ),
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    timeout=self.timeout,
                )
            comment = " ".join(raw.split())
            logger.info(
                "[round_result] Round %d comment in %.2fs: %s",
                round_number, time.monotonic() - start, comment or "(empty)",
            )

            self.latest = RoundResultEntry(round_number=round_number, comment=comment)
            if comment:
                self._spawn(self.send_to_backend(round_number, comment))
        except Exception as exc:
            logger.warning("[round_result] Round %d skipped: %s", round_number, exc)
        finally:
            self._in_flight.discard(round_number)

    async def send_to_backend(self, round_number: int, comment: str) -> None:
        if not self.backend_url:
            logger.info("[round_result] Webhook skipped (game backend URL not set)")
            return

        headers = {"Content-Type": "application/json"}
        if self.backend_token:
            headers["Authorization"] = f"Bearer {self.backend_token}"
        try:
            async with httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_S) as client:
                response = await client.post(
                    f"{self.backend_url}{WEBHOOK_PATH}",
                    json={"round_number": round_number, "comment": comment},
                    headers=headers,
                )
            if response.status_code >= 400:
                logger.warning(
                    "[round_result] Webhook for round %d failed (%d): %s",
                    round_number, response.status_code, response.text[:200],
                )
            else:
                logger.info("[round_result] Webhook sent for round %d", round_number)
        except httpx.HTTPError as exc:
            logger.warning("[round_result] Webhook error for round %d: %s", round_number, exc)
