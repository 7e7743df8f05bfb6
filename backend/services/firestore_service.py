import asyncio
import logging
import os
import re
from typing import Optional

from models.lore import LongFormResult
from utils.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

# "crans.near dominated" -> "@crans.near dominated"; already-prefixed ids untouched
_MENTION_RE = re.compile(r"(?<![@\w.-])([a-z0-9][a-z0-9._-]*\.(?:near|testnet))\b", re.IGNORECASE)


def prefix_mentions(text: str) -> str:
    """Prefix account ids with '@' so the long-form channel notifies tagged players."""
    return _MENTION_RE.sub(r"@\1", text or "")


def build_long_form_key(first_round: int, last_round: int, created_at: int) -> str:
    return f"lore_{first_round}_{last_round}_{created_at}"


class ChronicleChannel:
    """
    Long-form channel: one Firestore document per published chronicle.

    Async-friendly wrapper using run_in_executor to avoid blocking the event
    loop. The client is created on first use so the app can boot before GCP
    credentials exist.
    """

    def __init__(
        self,
        project: str = "",
        collection: str = "chronicles",
        emulator_host: Optional[str] = None,
        timeout: float = 20.0,
    ):
        self.project = project
        self.collection = collection
        self.emulator_host = emulator_host
        self.timeout = timeout
        self._db = None

    @property
    def configured(self) -> bool:
        return bool(self.project or self.emulator_host)

    def _client(self):
        if self._db is None:
            if not self.configured:
                raise ConfigurationError("GOOGLE_CLOUD_PROJECT is not set (long-form channel)")
            if self.emulator_host:
                os.environ["FIRESTORE_EMULATOR_HOST"] = self.emulator_host
            from google.cloud import firestore
            self._db = firestore.Client(project=self.project or None)
        return self._db

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    def _doc_ref(self, key: str):
        return self._client().collection(self.collection).document(key)

    async def publish(self, text: str, key: str) -> LongFormResult:
        from google.cloud import firestore

        body = prefix_mentions(text)
        data = {
            "key": key,
            "text": body,
            "created_at": firestore.SERVER_TIMESTAMP,
        }
        ref = self._doc_ref(key)
        logger.info("[chronicles] Publishing %s (%d chars)", key, len(body))
        try:
            await asyncio.wait_for(self._run(lambda: ref.set(data)), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamError(
                f"Firestore publish timed out after {self.timeout:.1f}s", service="firestore"
            ) from exc
        except Exception as exc:
            raise UpstreamError(f"Firestore publish failed: {exc}", service="firestore") from exc

        logger.info("[chronicles] Published %s", ref.path)
        return LongFormResult(key=key, ref=ref.path)

    async def check_connection(self) -> bool:
        """Startup readiness check: list one document from the collection."""
        try:
            await asyncio.wait_for(
                self._run(lambda: list(self._client().collection(self.collection).limit(1).stream())),
                timeout=self.timeout,
            )
            return True
        except Exception:
            logger.warning("[chronicles] Firestore not ready", exc_info=True)
            return False
