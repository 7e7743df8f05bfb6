"""
Marketing Poster: one short-form post per local day, independent of the lore
worker.

Planning happens on start and at every local midnight: pick a jittered minute
around the configured base time and arm one timer for it. The post itself is
generated under the shared permit gate, checked by the layered validator and
published to the short-form channel. While the marketing window is open the
poster owns that channel and the lore worker stays off it.

Memory is in RAM only; a restart forgets what was posted.
"""
import asyncio
import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from agents.marketing_content import MARKETING_THEMES, WORLD_DIGEST, MarketingTheme
from agents.marketing_policy import (
    get_marketing_policy,
    is_in_marketing_window_at,
    local_ymd,
    pick_jittered_publish_minute,
    publish_delay_seconds,
    seconds_until_next_midnight,
)
from agents.marketing_validator import normalize_marketing_text, validate_marketing_text
from models.lore import MarketingMemory
from services.chronicle_store import ChronicleStore
from services.genai_service import GenAIService
from services.short_form_publisher import ShortFormPublisher
from utils.errors import UpstreamError, ValidationRejection
from utils.permit_gate import PermitGate

logger = logging.getLogger(__name__)

RECENT_TEXTS_MAX = 10
HARD_CAP_CHARS = 25_000
LATE_BOOT_DELAY_S = 30.0

MARKETING_SYSTEM_PROMPT = """You are the masked voice of Wars of Cards: the Dark Forest WORLD, social-media-friendly.
Write a short update from the project (a mask, not an ad).
World-first: hint at rituals, factions, omens and chronicles; game mechanics are background texture.
Playful, a bit cheeky, meme-adjacent. No corporate buzzwords.
Do NOT invent features, guarantees or partnerships.

MARKETING FORMAT:
- Output 1-2 short lines.
- EACH line must start with "✦ " (the symbol begins a new paragraph).
- 0-3 emojis total.
- Hashtags: either none OR exactly one: {hashtag} (at the very end).
- No links/URLs (no "http", "https" or "www").
- No account, token or contract identifiers (nothing like ".near" or "ft.")."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MarketingPoster:
    def __init__(
        self,
        cfg,
        genai: GenAIService,
        publisher: ShortFormPublisher,
        gate: PermitGate,
        chronicles: ChronicleStore,
        clock: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
        late_boot_delay: float = LATE_BOOT_DELAY_S,
    ):
        self.cfg = cfg
        self.genai = genai
        self.publisher = publisher
        self.gate = gate
        self.chronicles = chronicles
        self.clock = clock
        self.rng = rng or random.Random()
        self.late_boot_delay = late_boot_delay

        self.memory = MarketingMemory()
        self.in_flight = False
        self.last_error: Optional[str] = None
        self.last_planned_ymd: Optional[str] = None
        self.last_planned_minute: Optional[int] = None

        self._theme_bag: List[MarketingTheme] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._midnight_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    # ── Window predicate (consumed by the lore worker) ───────────────────────

    def owns_short_channel_at(self, when: datetime) -> bool:
        policy = get_marketing_policy(self.cfg)
        return policy.enabled and is_in_marketing_window_at(when, policy)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        policy = get_marketing_policy(self.cfg)
        self.memory = MarketingMemory()
        self._theme_bag = []

        if not policy.enabled:
            logger.info("[marketing] Scheduler disabled")
            return

        self.plan_today()
        self._midnight_task = asyncio.create_task(self._midnight_loop())
        logger.info(
            "[marketing] Scheduler started (tz=%s, base=%s, window=%dmin, jitter=%dmin)",
            policy.timezone, policy.base_time_hhmm, policy.window_minutes, policy.jitter_minutes,
        )

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._midnight_task is not None:
            self._midnight_task.cancel()
            try:
                await self._midnight_task
            except asyncio.CancelledError:
                pass
            self._midnight_task = None
        for task in list(self._tasks):
            task.cancel()
        logger.info("[marketing] Scheduler stopped")

    async def _midnight_loop(self) -> None:
        while True:
            policy = get_marketing_policy(self.cfg)
            await asyncio.sleep(seconds_until_next_midnight(self.clock(), policy.timezone))
            try:
                self.plan_today()
            except Exception:
                logger.error("[marketing] Midnight re-plan failed", exc_info=True)

    def plan_today(self) -> None:
        """Arm today's timer unless today's post already went out."""
        policy = get_marketing_policy(self.cfg)
        now = self.clock()
        ymd = local_ymd(now, policy.timezone)

        if self.memory.last_posted_ymd == ymd:
            logger.info("[marketing] Already posted today (%s)", ymd)
            return

        minute = pick_jittered_publish_minute(policy.base_minutes, policy.jitter_minutes, self.rng)
        self.last_planned_ymd = ymd
        self.last_planned_minute = minute

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        loop = asyncio.get_running_loop()
        delay = publish_delay_seconds(now, minute, policy.timezone)
        if delay <= 0:
            logger.info(
                "[marketing] Planned minute %d already passed on %s; posting in %.0fs",
                minute, ymd, self.late_boot_delay,
            )
            self._timer = loop.call_later(self.late_boot_delay, self._fire, "late_boot")
            return

        logger.info("[marketing] Planned %s at minute %d (in %.0fs)", ymd, minute, delay)
        self._timer = loop.call_later(delay, self._fire, "scheduled")

    def _fire(self, reason: str) -> None:
        self._timer = None
        task = asyncio.create_task(self._scheduled_post(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _scheduled_post(self, reason: str) -> None:
        try:
            await self.generate_and_post(force=False, reason=reason)
        except Exception as exc:
            # Today's post stays unsent; the next attempt is tomorrow's plan.
            logger.warning("[marketing] Scheduled post (%s) left unsent: %s", reason, exc)

    # ── Posting ──────────────────────────────────────────────────────────────

    async def post_now(self, force: bool = False) -> Dict[str, Any]:
        """Manual trigger. Errors propagate to the caller."""
        return await self.generate_and_post(force=force, reason="manual")

    async def generate_and_post(self, force: bool, reason: str) -> Dict[str, Any]:
        policy = get_marketing_policy(self.cfg)
        if not policy.enabled:
            return {"skipped": "disabled"}

        ymd = local_ymd(self.clock(), policy.timezone)
        if not force and self.memory.last_posted_ymd == ymd:
            logger.info("[marketing] Skip: already posted %s (reason=%s)", ymd, reason)
            return {"skipped": "already_posted_today"}
        if self.in_flight:
            logger.info("[marketing] Skip: post already in flight (reason=%s)", reason)
            return {"skipped": "in_flight"}

        self.in_flight = True
        self.last_error = None
        try:
            logger.info("[marketing] Generating post for %s (reason=%s)", ymd, reason)
            async with self.gate.permit("marketing_post"):
                text, theme_id = await self._generate_with_retries(ymd)

            text = text.strip()[:HARD_CAP_CHARS]
            if not text:
                raise UpstreamError("Marketing generation returned empty text", service="gemini")

            logger.info("[marketing] Posting %d chars", len(text))
            result = await self.publisher.publish(text)
            logger.info("[marketing] Posted %s %s", result.post_id, result.url or "")

            self.memory = MarketingMemory(
                last_posted_ymd=ymd,
                last_posted_at=int(time.time() * 1000),
                last_post_id=result.post_id,
                last_url=result.url,
                recent_texts=[text] + self.memory.recent_texts[: RECENT_TEXTS_MAX - 1],
                recent_theme_ids=[theme_id] + self.memory.recent_theme_ids[: RECENT_TEXTS_MAX - 1],
            )
            return {"post_id": result.post_id, "url": result.url}
        except Exception as exc:
            self.last_error = str(exc)
            logger.warning("[marketing] Post for %s failed: %s", ymd, exc)
            raise
        finally:
            self.in_flight = False

    def _next_theme(self) -> MarketingTheme:
        if not self._theme_bag:
            self._theme_bag = list(MARKETING_THEMES)
            self.rng.shuffle(self._theme_bag)
        return self._theme_bag.pop()

    def _build_prompt(self, ymd: str, theme: MarketingTheme, attempt: int, max_attempts: int, hint: str) -> str:
        recent = self.memory.recent_texts[:RECENT_TEXTS_MAX]
        recent_block = "\n".join(f"{i + 1}. {t}" for i, t in enumerate(recent)) or "(none)"
        latest = self.chronicles.latest()
        latest_line = " ".join(latest.text.split())[:220] if latest else ""
        return (
            f"Today is {ymd} (local date).\n"
            f"ATTEMPT: {attempt}/{max_attempts}. If attempt > 1, change the opening words and hook style drastically.\n"
            f"REJECTION HINT (why earlier attempts were rejected): {hint or '(none)'}\n\n"
            "Write ONE unique post (text-only): what Wars of Cards is and what is happening now, "
            "without sounding like an ad.\n\n"
            f"RECENT POSTS (avoid repeating structure and phrases):\n{recent_block}\n\n"
            f"CONTENT MESSAGE: {theme.id}\nFOCUS: {theme.focus}\n\n"
            f"SOURCE (paraphrase, do not copy):\n{theme.source}\n\n"
            f"WORLD DIGEST (detail only; never include addresses):\n{WORLD_DIGEST}\n\n"
            f"LATEST CHRONICLE (optional canon seed):\n{latest_line or '(none)'}\n\n"
            "If RECENT POSTS is non-empty, include ONE subtle callback to the most recent post "
            "(3-8 words), never a copied clause.\n"
            "Nudge readers toward this profile for the latest chronicles, but never say "
            "\"check this profile\" or \"visit our profile\".\n"
            "Keep the Dark Forest vibe (forest, oracle, chronicle, embers, moss)."
        )

    async def _generate_with_retries(self, ymd: str):
        """Caller holds the permit. Returns (text, theme_id); the last draft wins if none passes."""
        theme = self._next_theme()
        max_attempts = max(1, int(self.cfg.marketing_max_attempts))
        hashtag = self.cfg.marketing_hashtag
        system = MARKETING_SYSTEM_PROMPT.format(hashtag=hashtag)
        reasons: List[str] = []
        last = ""

        for attempt in range(1, max_attempts + 1):
            raw = await self.genai.generate_text(
                system=system,
                prompt=self._build_prompt(ymd, theme, attempt, max_attempts, "; ".join(reasons)),
                temperature=1.05,
                max_tokens=220,
                timeout=self.cfg.generation_timeout_s,
            )
            text = normalize_marketing_text(raw, hashtag)
            last = text
            try:
                validate_marketing_text(text, self.memory.recent_texts, hashtag)
                return text, theme.id
            except ValidationRejection as rej:
                reasons.append(rej.reason)
                logger.info(
                    "[marketing] Draft %d/%d rejected: %s (%.120s)", attempt, max_attempts, rej.reason, text
                )

        logger.info("[marketing] No draft passed after %d attempts; publishing the last one", max_attempts)
        return last, theme.id

    def status(self) -> Dict[str, Any]:
        policy = get_marketing_policy(self.cfg)
        return {
            **policy.model_dump(),
            "in_window_now": is_in_marketing_window_at(self.clock(), policy),
            "in_flight": self.in_flight,
            "last_error": self.last_error,
            "last_planned_ymd": self.last_planned_ymd,
            "last_planned_minute": self.last_planned_minute,
            "timer_armed": self._timer is not None,
            "last_posted": self.memory.model_dump(),
        }
