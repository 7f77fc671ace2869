import hashlib
import logging
from typing import Optional

import redis
from google.cloud import translate_v2 as translate

from dubbing.core.config import settings
from dubbing.core.exceptions import ErrorCode, TransientStageError
from dubbing.engines.base import Translator

logger = logging.getLogger(__name__)


class GoogleTranslator(Translator):
    """Google Cloud Translation with a Redis read-through cache.

    Cache failures are logged and never fail a translation.
    """

    def __init__(
        self,
        client: Optional[translate.Client] = None,
        redis_client: Optional[redis.Redis] = None,
        ttl: int = None,
    ):
        self._client = client
        self.redis_client = redis_client if redis_client is not None else redis.from_url(settings.REDIS_URL)
        self.ttl = ttl or settings.TRANSLATION_CACHE_TTL

    @property
    def client(self) -> translate.Client:
        if self._client is None:
            self._client = translate.Client()
        return self._client

    @staticmethod
    def cache_key(text: str, source_lang: str, target_lang: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return f"translation:{source_lang}:{target_lang}:{digest}"

    def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        if not text.strip():
            return ""

        key = self.cache_key(text, source_lang, target_lang)
        try:
            cached = self.redis_client.get(key)
            if cached is not None:
                logger.debug(f"Translation cache hit: {key}")
                return cached.decode("utf-8") if isinstance(cached, bytes) else cached
        except redis.RedisError as e:
            logger.warning(f"Translation cache read failed: {e}")

        try:
            result = self.client.translate(
                text,
                target_language=target_lang,
                source_language=source_lang,
                format_="text",
            )
        except Exception as e:
            raise TransientStageError(f"Translation failed: {e}", error_code=ErrorCode.TRANSLATION_FAILED)
        translated = result["translatedText"]

        try:
            self.redis_client.setex(key, self.ttl, translated)
        except redis.RedisError as e:
            logger.warning(f"Translation cache write failed: {e}")

        return translated
