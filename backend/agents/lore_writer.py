"""
Lore Writer: turns one batch of rounds into a chronicle episode.

build_lore_context() is pure: batch + continuity memory in, JSON payload for the
model plus an image prompt and the account ids the short-form post must name.
LoreWriter.write() is the generation call itself; the caller holds the permit.
"""
import json
import logging
import time
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from models.lore import BEHAVIOR_PRIORITY, BehaviorTag, ChronicleEntry, LoreBatch
from services.genai_service import GenAIService

logger = logging.getLogger(__name__)

MEMORY_SNIPPET_CHARS = 600
MAX_TABLE_PLAYERS = 3

LORE_WRITER_SYSTEM_PROMPT = """You are the smirking chronicler of the Dark Forest and devoted admirer of Blackjack.
You observe warriors with amused superiority. You mock mistakes, praise boldness, and subtly provoke pride.

INPUT: JSON with:
- chronicle_memory: last published chronicles (oldest -> newest, 0..capacity items).
- batch_summary: max_players_in_any_round, unique_players, behavior_summary and balance_summary for this batch.
- focus: must_mention_accounts, cameo_accounts, archetypes, top_gainer, top_loser and cast you MUST follow.
- rounds: the current batch of rounds (identity, behavior tag and balances when sent).

PLAYER RULES:
- Mention every account id in focus.must_mention_accounts verbatim at least once.
- Each focus.cameo_accounts entry gets a quick cameo clause.
- For each focus.archetypes entry, use its adjective near that player's account id.
- If focus.top_gainer is set, bless that player; if focus.top_loser is set, tease that player. Never quote raw balances.

MEMORY RULES:
- Empty memory: establish the vibe and start the saga.
- Partial memory: at most ONE subtle callback, never invent details.
- Full memory: echo motifs and grudges, do not repeat old lines.

STRUCTURE:
- Do NOT narrate round by round; compress the batch into one arc.
- Exactly 2 short paragraphs plus one closing sting sentence on its own line.

STYLE:
- Third person, plain simple English, no markdown, 0-2 emojis.
- Length: 70-130 words."""

_ADJECTIVE = {
    BehaviorTag.MASTER: "master",
    BehaviorTag.GREEDY: "greedy",
    BehaviorTag.UNLUCKY: "unlucky",
    BehaviorTag.LUCKY: "lucky",
    BehaviorTag.INDIFFERENT: "indifferent",
}

_VIBE_SCENE = {
    BehaviorTag.MASTER: "a calm warrior in command of the table, cards fanned with precision",
    BehaviorTag.GREEDY: "grasping hands and a pile of stakes pushed too far forward",
    BehaviorTag.UNLUCKY: "scattered cards, a warrior slumped under cold mist",
    BehaviorTag.LUCKY: "warm firelight, a grin, a perfect card turning over",
    BehaviorTag.INDIFFERENT: "a quiet table, a warrior shrugging beside the fire",
}


class LoreContext(BaseModel):
    payload: str
    image_prompt: str
    mention_ids: List[str]
    cast: List[str] = []


class BalanceSummary(BaseModel):
    """Per-player balance movement across one batch (only from rounds that carry balances)."""
    account_id: str
    handle: str
    rounds_played: int = 0
    first_round: int
    last_round: int
    first_balance_start: Optional[float] = None
    last_balance_end: Optional[float] = None
    min_balance: Optional[float] = None
    max_balance: Optional[float] = None
    biggest_round_swing: Optional[Dict[str, Any]] = None

    @property
    def delta(self) -> Optional[float]:
        if self.first_balance_start is None or self.last_balance_end is None:
            return None
        return self.last_balance_end - self.first_balance_start

    def track(self, round_number: int, start: Optional[float], end: Optional[float]) -> None:
        self.rounds_played += 1
        self.first_round = min(self.first_round, round_number)
        self.last_round = max(self.last_round, round_number)
        if start is not None and self.first_balance_start is None:
            self.first_balance_start = start
        if end is not None:
            self.last_balance_end = end
        for v in (start, end):
            if v is None:
                continue
            self.min_balance = v if self.min_balance is None else min(self.min_balance, v)
            self.max_balance = v if self.max_balance is None else max(self.max_balance, v)
        if start is not None and end is not None:
            swing = end - start
            current = self.biggest_round_swing
            if current is None or abs(swing) > abs(current["swing"]):
                self.biggest_round_swing = {"round_number": round_number, "swing": swing}

    def to_payload(self) -> Dict[str, Any]:
        out = self.model_dump(exclude_none=True)
        if self.delta is not None:
            out["delta"] = self.delta
        return out


def to_full_account_id(account_id: str) -> str:
    s = (account_id or "").strip()
    if not s or s.endswith(".near") or s.endswith(".testnet"):
        return s
    # Hex/implicit accounts stay as they are
    if s.startswith("0x") or (len(s) >= 40 and "." not in s):
        return s
    return f"{s}.near"


def to_handle(account_id: str) -> str:
    """Shorten long hex ids, keep readable names."""
    s = account_id or ""
    is_hex = s.startswith("0x") or (len(s) >= 40 and "." not in s)
    if is_hex and len(s) > 16:
        return f"{s[:6]}…{s[-6:]}"
    return s


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "…"


def dominant_tag(counts: Dict[BehaviorTag, int]) -> Optional[BehaviorTag]:
    for tag in BEHAVIOR_PRIORITY:
        if counts.get(tag, 0) > 0:
            return tag
    return None


def build_image_prompt(
    primary: BehaviorTag,
    secondary: BehaviorTag,
    table_players: int,
    cast_tags: Sequence[Optional[BehaviorTag]] = (),
    has_gainer: bool = False,
    has_loser: bool = False,
) -> str:
    """
    Scene prompt for the batch illustration. The cast is described by
    archetype only; the image must not carry names.
    """
    parts = [
        "Create a vivid, high-contrast cinematic illustration of Blackjack in the Dark Forest at night.",
        "Setting: a misty forest clearing; the table is a meadow of moss framed by old carved wood.",
        "Firelight and moonlight, volumetric fog, drifting leaves, embers.",
        "No casino, no neon, no modern interior.",
        "No text, no letters, no numbers, no watermarks, no logos.",
        f"Batch vibe: PRIMARY={primary.value} ({_VIBE_SCENE[primary]}).",
        f"SECONDARY={secondary.value} ({_VIBE_SCENE[secondary]}).",
        f"Composition: {max(1, min(MAX_TABLE_PLAYERS, table_players or 2))} warriors at the clearing,"
        " dramatic focus on cards on the moss.",
    ]
    if cast_tags:
        figures = [f"a {_ADJECTIVE[t]} warrior" if t is not None else "a hooded warrior" for t in cast_tags]
        parts.append(f"Cast in the foreground: {', '.join(figures)}.")
    if has_gainer:
        parts.append("Subtle blessing: one warrior has slightly warmer firelight and calmer posture.")
    if has_loser:
        parts.append("Subtle curse: one warrior has colder shadow and thicker mist near their hands.")
    return " ".join(parts)


def build_lore_context(batch: LoreBatch, memory: List[ChronicleEntry], memory_capacity: int) -> LoreContext:
    """
    Build the writer payload for one batch.

    ``memory`` must be oldest-first. Mention ids are the batch's unique players
    in order of first appearance.
    """
    first_seen: Dict[str, int] = {}
    rounds_played: Counter = Counter()
    tag_counts: Dict[str, Counter] = {}
    balances: Dict[str, BalanceSummary] = {}
    max_players = 0
    rounds_json = []

    for record in batch.rounds:
        players = record.players
        max_players = max(max_players, len(players))
        slim = []
        for p in players:
            full = to_full_account_id(p.account_id)
            if not full:
                continue
            first_seen.setdefault(full, record.round_number)
            rounds_played[full] += 1
            entry = {"account_id": full, "handle": to_handle(full), "seat_number": p.seat_number}
            if p.behavior_tag is not None:
                tag_counts.setdefault(full, Counter())[p.behavior_tag] += 1
                entry["behavior_tag"] = p.behavior_tag.value
            if p.balance_start is not None or p.balance_end is not None:
                if p.balance_start is not None:
                    entry["balance_start"] = p.balance_start
                if p.balance_end is not None:
                    entry["balance_end"] = p.balance_end
                summary = balances.get(full)
                if summary is None:
                    summary = balances[full] = BalanceSummary(
                        account_id=full,
                        handle=to_handle(full),
                        first_round=record.round_number,
                        last_round=record.round_number,
                    )
                summary.track(record.round_number, p.balance_start, p.balance_end)
            slim.append(entry)
        rounds_json.append({
            "round": record.round_number,
            "player_count": len(players),
            "players": slim,
        })

    unique_ids = list(first_seen.keys())
    archetypes = []
    for account_id in unique_ids:
        tag = dominant_tag(tag_counts.get(account_id, {}))
        if tag is not None:
            archetypes.append({
                "account_id": account_id,
                "handle": to_handle(account_id),
                "dominant_tag": tag.value,
                "adjective": _ADJECTIVE[tag],
            })

    totals: Counter = Counter()
    for counts in tag_counts.values():
        totals.update(counts)
    ranked = sorted(BEHAVIOR_PRIORITY, key=lambda t: (-totals.get(t, 0), BEHAVIOR_PRIORITY.index(t)))
    primary = ranked[0] if totals.get(ranked[0], 0) > 0 else BehaviorTag.INDIFFERENT
    secondary = ranked[1] if totals.get(ranked[1], 0) > 0 else primary

    balance_summary = sorted(balances.values(), key=lambda b: b.first_round)
    movers = [b for b in balance_summary if b.delta is not None]
    top_gainer = top_loser = None
    if movers:
        best = max(movers, key=lambda b: b.delta)
        worst = min(movers, key=lambda b: b.delta)
        top_gainer = {"account_id": best.account_id, "handle": best.handle, "delta": best.delta}
        top_loser = {"account_id": worst.account_id, "handle": worst.handle, "delta": worst.delta}

    cast_limit = max(1, min(MAX_TABLE_PLAYERS, len(unique_ids)))
    cast_ids: List[str] = []
    for pick in (top_gainer, top_loser):
        if pick is not None and pick["account_id"] not in cast_ids:
            cast_ids.append(pick["account_id"])
    for account_id in sorted(unique_ids, key=lambda a: -rounds_played[a]):
        if account_id not in cast_ids:
            cast_ids.append(account_id)
    cast_ids = cast_ids[:cast_limit] if unique_ids else []
    cast_tags = [dominant_tag(tag_counts.get(a, {})) for a in cast_ids]
    cast = [
        {
            "account_id": a,
            "handle": to_handle(a),
            "dominant_tag": tag.value if tag is not None else None,
        }
        for a, tag in zip(cast_ids, cast_tags)
    ]

    payload = json.dumps(
        {
            "chronicle_memory": {
                "count": len(memory),
                "capacity": memory_capacity,
                "items": [
                    {
                        "created_at": m.created_at,
                        "batch_id": m.batch_id,
                        "external_ref": m.external_ref,
                        "text": truncate(m.text, MEMORY_SNIPPET_CHARS),
                    }
                    for m in memory
                ],
            },
            "batch_summary": {
                "max_possible_players": MAX_TABLE_PLAYERS,
                "max_players_in_any_round": max_players,
                "unique_players": [{"account_id": a, "handle": to_handle(a)} for a in unique_ids],
                "behavior_summary": [
                    {
                        "account_id": a,
                        "handle": to_handle(a),
                        "rounds_tagged": sum(c.values()),
                        "counts": {t.value: n for t, n in c.items()},
                    }
                    for a, c in sorted(tag_counts.items(), key=lambda kv: to_handle(kv[0]))
                ],
                "balance_summary": [b.to_payload() for b in balance_summary],
            },
            "focus": {
                "must_mention_accounts": unique_ids,
                "cameo_accounts": [a for a in unique_ids if rounds_played[a] == 1],
                "archetypes": archetypes,
                "top_gainer": top_gainer,
                "top_loser": top_loser,
                "cast": cast,
            },
            "rounds": rounds_json,
        },
        indent=2,
        ensure_ascii=False,
    )

    logger.info(
        "[%s] Lore payload built (rounds=%d, memory=%d, players=%d, vibe=%s/%s, cast=%s)",
        batch.id, len(batch.rounds), len(memory), len(unique_ids), primary.value, secondary.value,
        ",".join(cast_ids) or "-",
    )
    return LoreContext(
        payload=payload,
        image_prompt=build_image_prompt(
            primary,
            secondary,
            max_players,
            cast_tags=cast_tags,
            has_gainer=top_gainer is not None,
            has_loser=top_loser is not None,
        ),
        mention_ids=unique_ids,
        cast=cast_ids,
    )


class LoreWriter:
    def __init__(self, genai: GenAIService, max_tokens: int = 800, timeout: float = 120.0):
        self.genai = genai
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def write(self, context: str, batch_id: str) -> str:
        """Generate one chronicle. Caller must hold the generation permit."""
        start = time.monotonic()
        text = await self.genai.generate_text(
            system=LORE_WRITER_SYSTEM_PROMPT,
            prompt=(
                f"\n{context}\n\n"
                "Write the next chronicle episode based on the JSON. Use no markdown. "
                "Do not copy full sentences from chronicle_memory; only subtle callbacks."
            ),
            temperature=0.8,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
        )
        logger.info(
            "[%s] Lore written in %.2fs (%d chars)", batch_id, time.monotonic() - start, len(text)
        )
        return text or "(No lore generated.)"
