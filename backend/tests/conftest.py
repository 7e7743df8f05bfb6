"""Shared fakes for the chronicler tests."""
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from config import Settings
from models.lore import (
    GeneratedImage,
    LongFormResult,
    RoundPlayer,
    RoundRecord,
    RoundSummary,
    ShortFormResult,
)


def make_settings(**overrides) -> Settings:
    values = dict(
        gemini_api_key="test-key",
        marketing_enabled=False,
        publish_long_form=False,
        publish_short_form=False,
        short_form_images=False,
        game_backend_url="",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_record(round_number: int, players: Sequence[Tuple[str, Optional[str]]] = ()) -> RoundRecord:
    return RoundRecord(
        round_number=round_number,
        ts=1_700_000_000_000 + round_number,
        received_at=1_700_000_000_000 + round_number,
        summary=RoundSummary(
            players=[
                RoundPlayer(account_id=acc, seat_number=i + 1, behavior_tag=tag)
                for i, (acc, tag) in enumerate(players)
            ]
        ),
    )


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeGenAI:
    """
    Stand-in for GenAIService. ``responder(system, prompt)`` decides each text
    reply; it may raise to simulate an upstream failure.
    """

    def __init__(
        self,
        responder: Optional[Callable[[str, str], str]] = None,
        texts: Optional[List] = None,
        configured: bool = True,
        image_error: Optional[Exception] = None,
    ):
        self.configured = configured
        self.model = "fake-model"
        self.responder = responder
        self.texts = list(texts or [])
        self.image_error = image_error
        self.calls: List[Tuple[str, str]] = []
        self.image_prompts: List[str] = []

    async def generate_text(self, system, prompt, temperature=0.8, max_tokens=400, timeout=None):
        self.calls.append((system, prompt))
        if self.texts:
            item = self.texts.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if self.responder is not None:
            return self.responder(system, prompt)
        return "The forest remembers."

    async def generate_image(self, prompt, timeout=None):
        self.image_prompts.append(prompt)
        if self.image_error is not None:
            raise self.image_error
        return GeneratedImage(data=b"\x89PNG-fake", mime_type="image/png")

    async def check_connection(self, timeout=10.0):
        return self.configured


class FakeChannel:
    configured = True
    collection = "chronicles"

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.published: List[Tuple[str, str]] = []

    async def publish(self, text, key):
        if self.error is not None:
            raise self.error
        self.published.append((text, key))
        return LongFormResult(key=key, ref=f"chronicles/{key}")

    async def check_connection(self):
        return True


class FakePublisher:
    configured = True

    def __init__(self, error: Optional[Exception] = None, upload_error: Optional[Exception] = None):
        self.error = error
        self.upload_error = upload_error
        self.posts: List[Tuple[str, Optional[List[str]]]] = []
        self.uploads: List[GeneratedImage] = []

    async def upload_media(self, image):
        if self.upload_error is not None:
            raise self.upload_error
        self.uploads.append(image)
        return f"media-{len(self.uploads)}"

    async def publish(self, text, media_ids=None):
        if self.error is not None:
            raise self.error
        self.posts.append((text, media_ids))
        n = len(self.posts)
        return ShortFormResult(post_id=f"post-{n}", url=f"https://x.com/i/web/status/post-{n}", text=text)

    async def check_connection(self):
        return True

