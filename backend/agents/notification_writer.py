import logging
import re
import time
from typing import List, Sequence

from services.genai_service import GenAIService
from utils.errors import ValidationRejection

logger = logging.getLogger(__name__)

MAX_MENTIONS = 3

NOTIFICATION_SYSTEM_PROMPT = """You write short, punchy, positive social posts for a recreation & entertainment gaming account.

GOAL: Turn a long lore chronicle into ONE curiosity-driven post.

HARD RULES:
- Output EXACTLY one line of plain text (no newlines).
- Max length: 260 characters.
- No links/URLs. Do NOT include "http", "https", "www".
- No hashtags.
- Upbeat, playful, meme-adjacent. 0-2 emojis max.
- Do NOT mention blockchain or "AI".
- You MUST include the provided account IDs verbatim, all in the same line.

OUTPUT: Only the post text. Nothing else."""

_URL_RE = re.compile(r"(https?://|www\.)", re.IGNORECASE)
_HASHTAG_RE = re.compile(r"#\w+")


def ensure_valid_notification(text: str, must_include_ids: Sequence[str] = (), max_chars: int = 260) -> None:
    """Raise ValidationRejection unless ``text`` is postable as-is."""
    if not text:
        raise ValidationRejection("empty")
    if len(text) > max_chars:
        raise ValidationRejection(f"too_long:{len(text)}>{max_chars}")
    if _URL_RE.search(text):
        raise ValidationRejection("contains_url")
    if _HASHTAG_RE.search(text):
        raise ValidationRejection("contains_hashtag")
    missing = [i for i in must_include_ids if i and i not in text]
    if missing:
        raise ValidationRejection(f"missing_ids:{','.join(missing)}")


def is_valid_notification_text(text: str, must_include_ids: Sequence[str] = (), max_chars: int = 260) -> bool:
    try:
        ensure_valid_notification(text, must_include_ids, max_chars)
    except ValidationRejection:
        return False
    return True


def pick_mention_ids(ids: Sequence[str]) -> List[str]:
    return [i for i in ids if i][:MAX_MENTIONS]


class NotificationWriter:
    """One-line short-form teaser written from a finished chronicle."""

    def __init__(self, genai: GenAIService, timeout: float = 25.0):
        self.genai = genai
        self.timeout = timeout

    async def write(self, narrative: str, batch_id: str, attempt: int, must_include_ids: Sequence[str]) -> str:
        ids = pick_mention_ids(must_include_ids)
        ids_line = ", ".join(ids) if ids else "(none)"
        start = time.monotonic()
        raw = await self.genai.generate_text(
            system=NOTIFICATION_SYSTEM_PROMPT,
            prompt=(
                f"ACCOUNT_IDS (must include verbatim): {ids_line}\n\n"
                f"LORE (source, may be long):\n{(narrative or '').strip()}\n\n"
                "Write the post now. Remember: 1 line, <= 260 chars, include ALL account IDs "
                "verbatim, no links, no hashtags."
            ),
            temperature=1.05,
            max_tokens=120,
            timeout=self.timeout,
        )
        text = re.sub(r"\s*\n+\s*", " ", raw).strip()
        logger.info(
            "[%s] Notification draft %d in %.2fs (%d chars)",
            batch_id, attempt, time.monotonic() - start, len(text),
        )
        return text
