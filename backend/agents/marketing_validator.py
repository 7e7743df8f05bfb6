"""
Layered validator for daily marketing drafts.

Layers run in order and the first failure wins:
  1. structure   line count and the "✦ " marker on every line
  2. content     links, raw account/contract ids, hashtags, world anchor, CTA phrasing
  3. repetition  against the last accepted posts (opening words, token overlap)
"""
import re
from collections import Counter
from typing import Iterable, List, Optional, Sequence, Set

from utils.errors import ValidationRejection

LINE_MARKER = "✦ "
MIN_LINES = 1
MAX_LINES = 2
JACCARD_THRESHOLD = 0.62
DYNAMIC_STOPWORDS = 14
MIN_WORD_LEN = 4

_URL_RE = re.compile(r"(https?://|www\.)", re.IGNORECASE)
_URL_STRIP_RE = re.compile(r"(https?://\S+|www\.\S+)", re.IGNORECASE)
_CONTRACT_RES = [
    re.compile(r"\b[a-z0-9_-]+\.(near|testnet)\b", re.IGNORECASE),
    re.compile(r"\bblackjack-v\d+\b", re.IGNORECASE),
    re.compile(r"\bft\.[a-z0-9_-]+\b", re.IGNORECASE),
]
_HASHTAG_RE = re.compile(r"#[A-Za-z0-9_]+")
_ANCHOR_RE = re.compile(r"\b(dark forest|forest|oracle|chronicles?|lore|canopy|embers|moss)\b")
_CTA_RES = [
    re.compile(r"check\s+(this|the)\s+profile", re.IGNORECASE),
    re.compile(r"visit\s+(this|our)\s+profile", re.IGNORECASE),
]
_CATCHPHRASE_RE = re.compile(r"spitting\s+verses", re.IGNORECASE)


def normalize_text(text: str) -> str:
    t = _URL_STRIP_RE.sub("", (text or "").lower())
    t = re.sub(r"[^\w\s]+|_", " ", t)
    return re.sub(r"\s+", " ", t).strip()


def long_words(text: str) -> List[str]:
    return [w for w in normalize_text(text).split(" ") if len(w) >= MIN_WORD_LEN]


def first_long_words(text: str, n: int) -> str:
    return " ".join(long_words(text)[:n])


def build_dynamic_stopwords(texts: Iterable[str], max_words: int = DYNAMIC_STOPWORDS) -> Set[str]:
    """Most frequent long words across recent posts; only words seen more than once qualify."""
    counts: Counter = Counter()
    for t in texts:
        counts.update(long_words(t))
    return {w for w, n in counts.most_common(max_words) if n > 1}


def token_set(text: str, stop: Optional[Set[str]] = None) -> Set[str]:
    stop = stop or set()
    return {w for w in long_words(text) if w not in stop}


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    inter = len(a & b)
    return inter / len(a | b)


def lines(text: str) -> List[str]:
    return [ln.strip() for ln in (text or "").replace("\r\n", "\n").split("\n") if ln.strip()]


def check_structure(text: str) -> None:
    ls = lines(text)
    if not (MIN_LINES <= len(ls) <= MAX_LINES):
        raise ValidationRejection(f"line_count_{len(ls)}")
    if not all(ln.startswith(LINE_MARKER) for ln in ls):
        raise ValidationRejection("bad_separator_lines")


def check_content(text: str, hashtag: str) -> None:
    if _URL_RE.search(text):
        raise ValidationRejection("contains_url")
    if any(r.search(text) for r in _CONTRACT_RES):
        raise ValidationRejection("contains_contract_identifier")

    tags = _HASHTAG_RE.findall(text)
    if tags and (len(tags) > 1 or tags[0] != hashtag):
        raise ValidationRejection("invalid_hashtag")
    if tags and not text.rstrip().endswith(hashtag):
        raise ValidationRejection("hashtag_not_at_end")

    for r in _CTA_RES:
        if r.search(text):
            raise ValidationRejection("explicit_profile_cta")
    if not _ANCHOR_RE.search(normalize_text(text)):
        raise ValidationRejection("missing_dark_forest_anchor")


def check_repetition(text: str, recent_texts: Sequence[str]) -> None:
    recent = [r for r in recent_texts if r]
    c1, c2, c4 = (first_long_words(text, n) for n in (1, 2, 4))

    for r in recent:
        if c1 and c1 == first_long_words(r, 1):
            raise ValidationRejection(f"same_first_word:{c1}")
        if c2 and c2 == first_long_words(r, 2):
            raise ValidationRejection(f"same_first_two_words:{c2}")
        if c4 and c4 == first_long_words(r, 4):
            raise ValidationRejection(f"same_first_four_words:{c4}")

    stop = build_dynamic_stopwords(recent)
    candidate = token_set(text, stop)
    for r in recent:
        sim = jaccard(candidate, token_set(r, stop))
        if sim >= JACCARD_THRESHOLD:
            raise ValidationRejection(f"jaccard_{sim:.2f}")

    if _CATCHPHRASE_RE.search(text):
        raise ValidationRejection("catchphrase_spitting_verses")


def validate_marketing_text(text: str, recent_texts: Sequence[str] = (), hashtag: str = "#NEARCON26") -> None:
    """Raise ValidationRejection with the first failing reason."""
    t = (text or "").strip()
    if not t:
        raise ValidationRejection("empty")
    check_structure(t)
    check_content(t, hashtag)
    check_repetition(t, recent_texts)


def normalize_marketing_text(raw: str, hashtag: str = "#NEARCON26") -> str:
    """Tidy whitespace (keeping line breaks) and move the whitelisted hashtag to the end."""
    t = (raw or "").strip().replace("\r\n", "\n")
    if not t:
        return ""
    had_tag = re.search(re.escape(hashtag) + r"\b", t) is not None
    t = _HASHTAG_RE.sub("", t)
    t = re.sub(r"[ \t]+\n", "\n", t)
    t = re.sub(r"[ \t]{2,}", " ", t)
    t = re.sub(r"\n{3,}", "\n\n", t).strip()
    if had_tag:
        t = f"{t} {hashtag}".strip()
    return t
