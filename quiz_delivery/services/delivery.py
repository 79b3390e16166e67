"""
Orchestrates question delivery: option handling, cache lookup, adaptive
selection under a timeout, and conversion of dependency faults into
DependencyFailure so the endpoint can degrade gracefully.
"""
import asyncio
import enum
import logging
import random
from dataclasses import dataclass
from typing import Mapping, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from quiz_delivery.core.cache import CacheBackend
from quiz_delivery.core.config import settings
from quiz_delivery.core.errors import DependencyFailure, InvalidArgument, QuizServiceError, Unauthorized
from quiz_delivery.models.orm import Category, DifficultyLevel
from quiz_delivery.models.schemas import QuestionSelectionResult
from quiz_delivery.services.adaptive import AdaptiveSelector, validate_count
from quiz_delivery.services.categories import CategoryStore
from quiz_delivery.services.response_cache import ResponseCache, cache_key, compute_etag

logger = logging.getLogger(__name__)


class ConnectionType(str, enum.Enum):
    SLOW_2G = "slow-2g"
    TWO_G = "2g"
    THREE_G = "3g"
    FOUR_G = "4g"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class DeliveryOptions(BaseModel):
    """Per-request delivery flags taken from the query string and client hints."""
    optimized: bool = False
    save_data: bool = False
    connection_type: ConnectionType = ConnectionType.UNKNOWN

    @classmethod
    def from_request(cls, optimized: bool, headers: Mapping[str, str]) -> "DeliveryOptions":
        raw_type = (headers.get("connection-type") or "unknown").lower()
        try:
            connection_type = ConnectionType(raw_type)
        except ValueError:
            connection_type = ConnectionType.UNKNOWN
        return cls(
            optimized=optimized,
            save_data=(headers.get("save-data") or "").lower() == "on",
            connection_type=connection_type,
        )


@dataclass
class Delivery:
    result: QuestionSelectionResult
    etag: str
    cached: bool


class QuestionDelivery:
    def __init__(
        self,
        db: AsyncSession,
        cache: CacheBackend,
        rng: Optional[random.Random] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.selector = AdaptiveSelector(db, rng=rng)
        self.responses = ResponseCache(cache)
        self.timeout = timeout if timeout is not None else settings.DEPENDENCY_TIMEOUT_SECONDS

    async def cached(self, user_id: str, category_id: str, count: int, difficulty: Optional[DifficultyLevel]) -> Optional[Delivery]:
        entry = await self.responses.get(cache_key(user_id, category_id, difficulty, count))
        if entry is None:
            return None
        return Delivery(result=entry.value, etag=entry.etag, cached=True)

    async def deliver(
        self,
        user_id: Optional[str],
        category_id: Optional[str],
        count: int,
        difficulty: Optional[DifficultyLevel],
        options: DeliveryOptions,
    ) -> Delivery:
        if not user_id:
            raise Unauthorized()
        if not category_id:
            raise InvalidArgument("Category ID is required")
        validate_count(count)

        try:
            # cache lookup, selection and cache write share one deadline
            return await asyncio.wait_for(self._load(user_id, category_id, count, difficulty, options), self.timeout)
        except QuizServiceError:
            raise
        except asyncio.TimeoutError as e:
            logger.error(
                "Question delivery timed out category=%s user=%s count=%d", category_id, user_id, count
            )
            raise DependencyFailure("Timed out loading questions") from e
        except Exception as e:
            logger.error(
                "Question selection failed category=%s user=%s count=%d: %s",
                category_id, user_id, count, type(e).__name__,
            )
            raise DependencyFailure("Question store unavailable") from e

    async def _load(
        self, user_id: str, category_id: str, count: int, difficulty: Optional[DifficultyLevel], options: DeliveryOptions
    ) -> Delivery:
        if options.optimized:
            hit = await self.cached(user_id, category_id, count, difficulty)
            if hit is not None:
                return hit

        result = await self.selector.select_questions(user_id, category_id, count, difficulty)

        if options.optimized:
            await self.responses.put(cache_key(user_id, category_id, difficulty, count), result, count)
        etag = compute_etag(result.category_id, difficulty, count, len(result.questions))
        return Delivery(result=result, etag=etag, cached=False)

    async def check_category(self, category_id: Optional[str]) -> Category:
        """Existence check that never materializes questions."""
        if not category_id:
            raise InvalidArgument("Category ID is required")
        try:
            return await asyncio.wait_for(CategoryStore(self.db).get_category(category_id), self.timeout)
        except QuizServiceError:
            raise
        except Exception as e:
            logger.error("Category check failed category=%s: %s", category_id, type(e).__name__)
            raise DependencyFailure("Category store unavailable") from e
