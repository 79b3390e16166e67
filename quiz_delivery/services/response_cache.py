"""
Short-lived cache of computed question selections and the ETag protocol around them.
"""
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ValidationError

from quiz_delivery.core.cache import CacheBackend
from quiz_delivery.core.config import settings
from quiz_delivery.models.orm import DifficultyLevel
from quiz_delivery.models.schemas import QuestionSelectionResult

logger = logging.getLogger(__name__)

KEY_PREFIX = "quiz:selection"


def difficulty_label(difficulty: Optional[DifficultyLevel]) -> str:
    return difficulty.value if difficulty is not None else "mixed"


def cache_key(user_id: str, category_id: str, difficulty: Optional[DifficultyLevel], count: int) -> str:
    raw = f"{user_id}:{category_id}:{difficulty_label(difficulty)}:{count}"
    return f"{KEY_PREFIX}:{hashlib.sha256(raw.encode()).hexdigest()}"


def compute_etag(category_id: str, difficulty: Optional[DifficultyLevel], count: int, result_length: int) -> str:
    raw = f"{category_id}:{difficulty_label(difficulty)}:{count}:{result_length}"
    return '"' + hashlib.sha1(raw.encode()).hexdigest()[:20] + '"'


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """If-None-Match comparison (weak), accepting lists and '*'."""
    if not if_none_match:
        return False
    candidates = [tag.strip() for tag in if_none_match.split(",")]
    if "*" in candidates:
        return True
    opaque = etag.removeprefix("W/")
    return any(tag.removeprefix("W/") == opaque for tag in candidates)


class CacheEntry(BaseModel):
    key: str
    count: int
    value: QuestionSelectionResult
    created_at: datetime
    expires_at: datetime

    @property
    def etag(self) -> str:
        return compute_etag(self.value.category_id, self.value.requested_difficulty, self.count, len(self.value.questions))


class ResponseCache:
    def __init__(self, backend: CacheBackend, ttl: Optional[int] = None):
        self.backend = backend
        self.ttl = ttl or settings.QUESTION_CACHE_TTL

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.backend.get(key)
        if raw is None:
            logger.debug("Selection cache miss key=%s", key)
            return None
        try:
            entry = CacheEntry.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding unreadable selection cache entry key=%s", key)
            return None
        if entry.expires_at <= datetime.now(timezone.utc):
            return None
        logger.debug("Selection cache hit key=%s", key)
        return entry

    async def put(self, key: str, result: QuestionSelectionResult, count: int, ttl: Optional[int] = None) -> CacheEntry:
        ttl = ttl or self.ttl
        now = datetime.now(timezone.utc)
        entry = CacheEntry(key=key, count=count, value=result, created_at=now, expires_at=now + timedelta(seconds=ttl))
        await self.backend.set(key, entry.model_dump(mode="json"), expire=ttl)
        return entry
