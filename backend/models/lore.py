from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from enum import Enum
import time


def _now_ms() -> int:
    return int(time.time() * 1000)


class BehaviorTag(str, Enum):
    MASTER = "MASTER"
    GREEDY = "GREEDY"
    UNLUCKY = "UNLUCKY"
    LUCKY = "LUCKY"
    INDIFFERENT = "INDIFFERENT"


# Tie-break order when a player (or a batch) has mixed tags.
BEHAVIOR_PRIORITY: List[BehaviorTag] = [
    BehaviorTag.MASTER,
    BehaviorTag.GREEDY,
    BehaviorTag.UNLUCKY,
    BehaviorTag.LUCKY,
    BehaviorTag.INDIFFERENT,
]


# ── Round intake ──────────────────────────────────────────────────────────────

class RoundPlayer(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str
    seat_number: int = 0
    behavior_tag: Optional[BehaviorTag] = None
    # Sent by the game backend when available
    balance_start: Optional[float] = None
    balance_end: Optional[float] = None


class RoundSummary(BaseModel):
    """Derived, LLM-friendly summary of one round (computed upstream)."""
    model_config = ConfigDict(frozen=True)

    players: List[RoundPlayer] = []


class RoundEvent(BaseModel):
    """Body of POST /events/round-ended."""
    round_number: int
    created_at: int
    payload: Dict[str, Any] = {}
    summary: Optional[RoundSummary] = None


class RoundRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    round_number: int
    ts: int  # event timestamp (ms)
    received_at: int = Field(default_factory=_now_ms)
    payload: Dict[str, Any] = {}
    summary: Optional[RoundSummary] = None

    @property
    def players(self) -> List[RoundPlayer]:
        return list(self.summary.players) if self.summary else []


class LoreBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: int
    rounds: List[RoundRecord]

    @property
    def first_round(self) -> int:
        return self.rounds[0].round_number if self.rounds else 0

    @property
    def last_round(self) -> int:
        return self.rounds[-1].round_number if self.rounds else 0


class RoundResultEntry(BaseModel):
    round_number: int
    comment: str
    created_at: int = Field(default_factory=_now_ms)


# ── Continuity + publishing ──────────────────────────────────────────────────

class ChronicleEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_at: int = Field(default_factory=_now_ms)
    batch_id: str
    external_ref: Optional[str] = None
    text: str


class LongFormResult(BaseModel):
    key: str
    ref: Optional[str] = None


class ShortFormResult(BaseModel):
    post_id: Optional[str] = None
    url: Optional[str] = None
    text: Optional[str] = None
    media_id: Optional[str] = None
    error: Optional[str] = None


class GeneratedImage(BaseModel):
    data: bytes
    mime_type: str = "image/png"


# ── Runtime state snapshots ──────────────────────────────────────────────────

class LoreWorkerState(BaseModel):
    busy: bool = False
    last_tick_at: Optional[int] = None
    last_batch_id: Optional[str] = None
    last_error: Optional[str] = None
    last_long_form: Optional[LongFormResult] = None
    last_short_form: Optional[ShortFormResult] = None


class MarketingPolicy(BaseModel):
    enabled: bool
    timezone: str
    base_time_hhmm: str
    base_minutes: int
    window_minutes: int
    window_start_minutes: int
    window_end_minutes: int
    jitter_minutes: int


class MarketingMemory(BaseModel):
    last_posted_ymd: Optional[str] = None
    last_posted_at: Optional[int] = None
    last_post_id: Optional[str] = None
    last_url: Optional[str] = None
    recent_texts: List[str] = []  # newest first
    recent_theme_ids: List[str] = []
