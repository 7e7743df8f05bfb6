"""
Thin async wrapper around the google-genai client.

Every call goes through the SDK async surface (`client.aio`) under its own
deadline; a timeout cancels the request instead of leaving it running.
Callers are responsible for holding the generation permit; this module never
touches the gate.
"""
import asyncio
import base64
import logging
import re
import time
from typing import Optional

from models.lore import GeneratedImage
from utils.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?|\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Drop a leading/trailing markdown fence if the model wrapped its answer."""
    if not text:
        return ""
    return _FENCE_RE.sub("", text.strip()).strip()


class GenAIService:
    def __init__(self, api_key: str, model: str, image_model: str, default_timeout: float = 60.0):
        self.api_key = api_key
        self.model = model
        self.image_model = image_model
        self.default_timeout = default_timeout
        self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set")
        if self._client is None:
            # Lazy import so the app boots without the SDK configured
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _call(self, coro, timeout: Optional[float], what: str):
        deadline = timeout or self.default_timeout
        try:
            return await asyncio.wait_for(coro, timeout=deadline)
        except asyncio.TimeoutError as exc:
            raise UpstreamError(f"{what} timed out after {deadline:.1f}s", service="gemini") from exc
        except (ConfigurationError, UpstreamError):
            raise
        except Exception as exc:
            raise UpstreamError(f"{what} failed: {exc}", service="gemini") from exc

    async def generate_text(
        self,
        system: str,
        prompt: str,
        temperature: float = 0.8,
        max_tokens: int = 400,
        timeout: Optional[float] = None,
    ) -> str:
        """One-shot text completion. Returns the stripped text (may be empty)."""
        client = self._get_client()
        from google.genai import types as gtypes

        start = time.monotonic()
        response = await self._call(
            client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=gtypes.GenerateContentConfig(
                    system_instruction=system,
                    temperature=temperature,
                    max_output_tokens=max_tokens,
                ),
            ),
            timeout,
            "Text generation",
        )
        text = strip_code_fences(response.text or "")
        logger.debug(
            "[genai] %s → %d chars in %.2fs", self.model, len(text), time.monotonic() - start
        )
        return text

    async def generate_image(self, prompt: str, timeout: Optional[float] = None) -> GeneratedImage:
        if not prompt or not prompt.strip():
            raise UpstreamError("Image prompt is empty", service="gemini")

        client = self._get_client()
        from google.genai import types as gtypes

        response = await self._call(
            client.aio.models.generate_content(
                model=self.image_model,
                contents=prompt.strip(),
                config=gtypes.GenerateContentConfig(
                    response_modalities=["IMAGE"],
                ),
            ),
            timeout,
            "Image generation",
        )

        candidates = response.candidates or []
        parts = candidates[0].content.parts if candidates and candidates[0].content else []
        for part in parts or []:
            if part.inline_data and part.inline_data.data:
                data = part.inline_data.data
                if isinstance(data, str):
                    data = base64.b64decode(data)
                return GeneratedImage(
                    data=data,
                    mime_type=part.inline_data.mime_type or "image/png",
                )
        raise UpstreamError("Image generation returned no image data", service="gemini")

    async def check_connection(self, timeout: float = 10.0) -> bool:
        """Startup readiness check: can we see the configured model?"""
        if not self.configured:
            return False
        try:
            client = self._get_client()
            await self._call(client.aio.models.get(model=self.model), timeout, "Model lookup")
            return True
        except Exception:
            logger.warning("[genai] Readiness check failed for %s", self.model, exc_info=True)
            return False
