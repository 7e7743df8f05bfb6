"""
Short-form campaign: post the teaser, with an illustration when images are on.

Any failure on the image path (prompt missing, generation, upload, post with
media) falls back to a text-only post so the batch is never wasted.
"""
import logging
from typing import Optional

from models.lore import ShortFormResult
from services.genai_service import GenAIService
from services.short_form_publisher import ShortFormPublisher
from utils.errors import UpstreamError

logger = logging.getLogger(__name__)


class ShortFormCampaign:
    def __init__(
        self,
        publisher: ShortFormPublisher,
        genai: GenAIService,
        images_enabled: bool = False,
        image_timeout: float = 60.0,
    ):
        self.publisher = publisher
        self.genai = genai
        self.images_enabled = images_enabled
        self.image_timeout = image_timeout

    async def publish(self, text: str, batch_id: str, image_prompt: Optional[str] = None) -> ShortFormResult:
        logger.info("[%s] Short-form text (%d chars): %s", batch_id, len(text), text)

        if not self.images_enabled:
            logger.info("[%s] Posting text-only (images disabled)", batch_id)
            return await self.publisher.publish(text)

        try:
            if not image_prompt or not image_prompt.strip():
                raise UpstreamError("Image prompt missing", service="gemini")
            logger.info("[%s] Generating image", batch_id)
            image = await self.genai.generate_image(image_prompt, timeout=self.image_timeout)

            logger.info("[%s] Uploading image (%d bytes)", batch_id, len(image.data))
            media_id = await self.publisher.upload_media(image)

            result = await self.publisher.publish(text, [media_id])
            return result.model_copy(update={"media_id": media_id})
        except Exception as exc:
            error = str(exc)
            logger.warning("[%s] Media path failed, falling back to text-only: %s", batch_id, error)
            result = await self.publisher.publish(text)
            return result.model_copy(update={"error": error})
