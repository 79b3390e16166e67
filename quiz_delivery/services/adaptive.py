"""
Adaptive question selection.

A user's average score in a category picks a difficulty mix, the mix is turned
into per-tier question counts, each tier is sampled from the active pool, any
shortfall is backfilled from the tiers with the most questions left, and the
combined set is shuffled so tiers are interleaved. Questions the user answered
recently are skipped while the pool allows it.

The same recent attempts also feed a difficulty recommendation and the
baseline tier for newcomers.
"""
import hashlib
import logging
import random
from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from quiz_delivery.core.config import settings
from quiz_delivery.core.errors import InvalidArgument, NotFound, Unauthorized
from quiz_delivery.models.orm import DifficultyLevel, Question, UserProgress
from quiz_delivery.models.schemas import (
    BaselineResult, PerformanceMetrics, QuestionOut, QuestionSelectionResult, Recommendation,
)
from quiz_delivery.services.categories import CategoryStore
from quiz_delivery.services.progress import PerformanceTracker
from quiz_delivery.services.questions import QuestionRepository

logger = logging.getLogger(__name__)

TIERS = (DifficultyLevel.BEGINNER, DifficultyLevel.INTERMEDIATE, DifficultyLevel.ADVANCED)

# integer percentages per tier; the first entry of each is the dominant tier
ADVANCED_MIX = {DifficultyLevel.ADVANCED: 50, DifficultyLevel.INTERMEDIATE: 35, DifficultyLevel.BEGINNER: 15}
INTERMEDIATE_MIX = {DifficultyLevel.INTERMEDIATE: 50, DifficultyLevel.ADVANCED: 25, DifficultyLevel.BEGINNER: 25}
BEGINNER_MIX = {DifficultyLevel.BEGINNER: 50, DifficultyLevel.INTERMEDIATE: 35, DifficultyLevel.ADVANCED: 15}

ADVANCED_THRESHOLD = 80.0
INTERMEDIATE_THRESHOLD = 60.0


def parse_difficulty(value: Optional[str]) -> Optional[DifficultyLevel]:
    if value is None or value == "" or value == "mixed":
        return None
    try:
        return DifficultyLevel(value.lower())
    except ValueError:
        raise InvalidArgument(f"Unknown difficulty: {value}")


def validate_count(count: int) -> int:
    if not settings.MIN_QUESTION_COUNT <= count <= settings.MAX_QUESTION_COUNT:
        raise InvalidArgument(
            f"Count must be between {settings.MIN_QUESTION_COUNT} and {settings.MAX_QUESTION_COUNT}"
        )
    return count


def difficulty_mix(progress: Optional[UserProgress], requested: Optional[DifficultyLevel] = None) -> Dict[DifficultyLevel, int]:
    """Percentage of questions per tier for this user."""
    if requested is not None:
        return {requested: 100}
    if progress is None or not progress.total_questions_attempted:
        return dict(BEGINNER_MIX)
    if progress.average_score >= ADVANCED_THRESHOLD:
        return dict(ADVANCED_MIX)
    if progress.average_score >= INTERMEDIATE_THRESHOLD:
        return dict(INTERMEDIATE_MIX)
    return dict(BEGINNER_MIX)


def allocate(mix: Dict[DifficultyLevel, int], count: int) -> Dict[DifficultyLevel, int]:
    """Split `count` over the mix, flooring minor tiers; the dominant tier takes the remainder."""
    dominant = max(mix, key=lambda tier: (mix[tier], -TIERS.index(tier)))
    targets = {tier: count * pct // 100 for tier, pct in mix.items() if tier != dominant}
    targets[dominant] = count - sum(targets.values())
    return {tier: targets.get(tier, 0) for tier in TIERS}


def achieved_mix(questions: Iterable[Question]) -> Dict[DifficultyLevel, int]:
    mix = {tier: 0 for tier in TIERS}
    for q in questions:
        mix[q.difficulty_level] += 1
    return mix


def selection_fingerprint(question_ids: Iterable[str], category_id: str, tier_counts: Dict[DifficultyLevel, int]) -> str:
    h = hashlib.sha256()
    for qid in sorted(question_ids):
        h.update(qid.encode())
        h.update(b"\x00")
    h.update(category_id.encode())
    for tier in TIERS:
        h.update(f"|{tier.value}={tier_counts.get(tier, 0)}".encode())
    return h.hexdigest()


BASELINE_ATTEMPTS = 5
ADJUSTMENT_MIN_SAMPLES = 3
CONFIDENCE_THRESHOLD = 0.7


def _mean(values: List[int]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def difficulty_score(metrics: PerformanceMetrics) -> float:
    """Weighted blend in [0, 1]: accuracy 40%, streak 20%, recent trend 25%, pace 15%."""
    trend = _mean(metrics.recent_performance)
    score = (
        metrics.accuracy / 100 * 0.4
        + min(metrics.current_streak / 10, 1) * 0.2
        + (trend if trend is not None else 0.5) * 0.25
        + max(0.0, min(1.0, (60 - metrics.average_time) / 60)) * 0.15
    )
    return max(0.0, min(1.0, score))


def score_to_difficulty(score: float) -> DifficultyLevel:
    if score >= 0.8:
        return DifficultyLevel.ADVANCED
    if score >= 0.6:
        return DifficultyLevel.INTERMEDIATE
    return DifficultyLevel.BEGINNER


def recommendation_confidence(metrics: PerformanceMetrics) -> float:
    """Half sample size (saturating at 10 answers), half consistency of recent results."""
    recent = metrics.recent_performance
    mean = _mean(recent)
    variance = sum((x - mean) ** 2 for x in recent) / len(recent) if recent else 0.0
    return (min(len(recent) / 10, 1) + max(0.0, 1 - variance)) / 2


def should_adjust(
    metrics: PerformanceMetrics, current: Optional[DifficultyLevel], recommended: DifficultyLevel
) -> bool:
    if current is None:
        return True
    if current == recommended:
        return False
    return (
        len(metrics.recent_performance) >= ADJUSTMENT_MIN_SAMPLES
        and recommendation_confidence(metrics) >= CONFIDENCE_THRESHOLD
    )


def explain(metrics: PerformanceMetrics) -> str:
    reasons = []
    if metrics.accuracy >= 85:
        reasons.append("High accuracy indicates strong understanding")
    elif metrics.accuracy <= 60:
        reasons.append("Lower accuracy suggests need for easier questions")
    if metrics.current_streak >= 5:
        reasons.append("Good streak shows consistent performance")
    trend = _mean(metrics.recent_performance)
    if trend is not None and trend > 0.8:
        reasons.append("Recent performance is strong")
    elif trend is not None and trend < 0.5:
        reasons.append("Recent struggles suggest easier questions")
    return ", ".join(reasons) if reasons else "Based on overall performance analysis"


class AdaptiveSelector:
    """Picks a non-repeating, difficulty-balanced question set for one user."""

    def __init__(
        self,
        db: AsyncSession,
        rng: Optional[random.Random] = None,
        questions: Optional[QuestionRepository] = None,
        tracker: Optional[PerformanceTracker] = None,
        categories: Optional[CategoryStore] = None,
    ):
        self.rng = rng or random.Random()
        self.questions = questions or QuestionRepository(db)
        self.tracker = tracker or PerformanceTracker(db)
        self.categories = categories or CategoryStore(db)

    async def resolve_category(self, category_id: str) -> str:
        try:
            category = await self.categories.get_category(category_id)
        except NotFound:
            raise InvalidArgument(f"Unknown category: {category_id}")
        return category.id

    async def select_questions(
        self,
        user_id: Optional[str],
        category_id: str,
        count: int,
        requested_difficulty: Optional[DifficultyLevel] = None,
    ) -> QuestionSelectionResult:
        if not user_id:
            raise Unauthorized()
        validate_count(count)
        if not category_id:
            raise InvalidArgument("Category ID is required")
        category_id = await self.resolve_category(category_id)

        progress = await self.tracker.get_progress(user_id, category_id)
        targets = allocate(difficulty_mix(progress, requested_difficulty), count)
        excluded = await self._recently_seen(user_id, category_id, count, requested_difficulty)

        # one AsyncSession per request, so tiers are sampled one after another
        selected: List[Question] = []
        for tier in TIERS:
            if targets[tier] > 0:
                selected.extend(await self.questions.get_random_questions(
                    category_id, targets[tier], tier, exclude_ids=excluded + [q.id for q in selected], rng=self.rng
                ))

        if len(selected) < count and requested_difficulty is None:
            selected.extend(await self._backfill(category_id, count - len(selected), selected, excluded))

        selected.sort(key=lambda q: (TIERS.index(q.difficulty_level), q.id))
        self.rng.shuffle(selected)

        mix = achieved_mix(selected)
        if len(selected) < count:
            logger.debug(
                "Under-supplied selection category=%s requested=%d returned=%d", category_id, count, len(selected)
            )
        return QuestionSelectionResult(
            category_id=category_id,
            requested_difficulty=requested_difficulty,
            questions=[QuestionOut.model_validate(q) for q in selected],
            difficulty_mix=mix,
            fingerprint=selection_fingerprint((q.id for q in selected), category_id, mix),
        )

    async def _recently_seen(
        self, user_id: str, category_id: str, count: int, difficulty: Optional[DifficultyLevel]
    ) -> List[str]:
        """Recently attempted ids to skip, or none when skipping them would leave too few questions."""
        recent = await self.tracker.recent_question_ids(user_id, category_id)
        if not recent:
            return []
        if await self.questions.count_questions(category_id, difficulty, recent) < count:
            return []
        return recent

    async def _backfill(
        self, category_id: str, shortfall: int, selected: List[Question], excluded: List[str]
    ) -> List[Question]:
        """Top up from the tiers with the most unselected questions left."""
        taken = excluded + [q.id for q in selected]
        remaining = {tier: await self.questions.count_questions(category_id, tier, taken) for tier in TIERS}
        extra: List[Question] = []
        for tier in sorted(TIERS, key=lambda t: (-remaining[t], TIERS.index(t))):
            if shortfall <= 0 or remaining[tier] == 0:
                continue
            batch = await self.questions.get_random_questions(
                category_id, min(shortfall, remaining[tier]), tier, exclude_ids=taken, rng=self.rng
            )
            extra.extend(batch)
            taken.extend(q.id for q in batch)
            shortfall -= len(batch)
        return extra

    async def recommend(
        self, user_id: str, category_id: str, current_difficulty: Optional[DifficultyLevel] = None
    ) -> Recommendation:
        """Difficulty the user should practise next, from their latest attempts."""
        if not user_id:
            raise Unauthorized()
        category_id = await self.resolve_category(category_id)
        metrics = await self.tracker.analyze_performance(user_id, category_id)
        recommended = score_to_difficulty(difficulty_score(metrics))
        return Recommendation(
            recommended_difficulty=recommended,
            confidence_score=recommendation_confidence(metrics),
            reasoning=explain(metrics),
            should_adjust=should_adjust(metrics, current_difficulty, recommended),
        )

    async def baseline(self, user_id: str, category_id: str) -> BaselineResult:
        """Beginner until the user has answered enough questions to judge."""
        if not user_id:
            raise Unauthorized()
        category_id = await self.resolve_category(category_id)
        attempts = await self.tracker.count_attempts(user_id, category_id)
        if attempts < BASELINE_ATTEMPTS:
            return BaselineResult(baseline_difficulty=DifficultyLevel.BEGINNER, attempts=attempts)
        recommendation = await self.recommend(user_id, category_id)
        return BaselineResult(baseline_difficulty=recommendation.recommended_difficulty, attempts=attempts)
