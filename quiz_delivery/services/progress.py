"""
Per-user, per-category performance: the read side used to steer difficulty,
and the attempt write path that keeps it up to date.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from quiz_delivery.core.errors import InvalidArgument, NotFound, dependency_guard
from quiz_delivery.models.orm import Category, DifficultyLevel, Question, QuestionType, QuizAttempt, UserProgress
from quiz_delivery.models.schemas import PerformanceMetrics, TierTally, UserStats
from quiz_delivery.services.questions import QuestionRepository

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

TIME_BONUS_WINDOW_SECONDS = 60
RECENT_ATTEMPT_WINDOW = 20
RECENT_TREND_WINDOW = 10


def time_bonus(time_taken_seconds: int) -> int:
    """Two points for every full 10 seconds left of a one-minute window."""
    return max(0, (TIME_BONUS_WINDOW_SECONDS - time_taken_seconds) // 10) * 2


def is_answer_correct(question: Question, answer_id: Optional[str], answer_text: Optional[str]) -> bool:
    if question.question_type in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        if not answer_id:
            return False
        correct = next((a for a in question.answers if a.is_correct), None)
        return correct is not None and correct.id == answer_id
    if question.question_type == QuestionType.FILL_BLANK and answer_text:
        given = answer_text.strip().lower()
        if not given:
            return False
        accepted = [a.answer_text.strip().lower() for a in question.answers if a.is_correct]
        return any(given == c or given in c or c in given for c in accepted)
    return False


@dataclass
class AttemptOutcome:
    is_correct: bool
    points_earned: int
    explanation: Optional[str]


class PerformanceTracker:
    def __init__(self, db: AsyncSession, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    @dependency_guard("Progress store")
    async def get_progress(self, user_id: str, category_id: str) -> Optional[UserProgress]:
        """None means the user has no attempts in this category yet."""
        stmt = select(UserProgress).where(UserProgress.user_id == user_id, UserProgress.category_id == category_id)
        return await self.db.scalar(stmt)

    async def _completion(self, user_id: str, category_id: str) -> float:
        total = await self.db.scalar(
            select(func.count(Question.id)).where(Question.category_id == category_id, Question.is_active.is_(True))
        )
        if not total:
            return 0.0
        answered = await self.db.scalar(
            select(func.count(distinct(QuizAttempt.question_id)))
            .join(Question, Question.id == QuizAttempt.question_id)
            .where(QuizAttempt.user_id == user_id, Question.category_id == category_id, Question.is_active.is_(True))
        )
        return min(100.0, (answered or 0) / total * 100.0)

    @dependency_guard("Progress store")
    async def record_attempt(
        self,
        user_id: str,
        category_id: str,
        question_id: str,
        correct: bool,
        response_time_ms: int = 0,
        points_earned: int = 0,
        selected_answer_id: Optional[str] = None,
        answer_text: Optional[str] = None,
    ) -> UserProgress:
        if response_time_ms < 0:
            raise InvalidArgument("response time must be >= 0")
        self.db.add(QuizAttempt(
            user_id=user_id,
            question_id=question_id,
            selected_answer_id=selected_answer_id,
            user_answer_text=answer_text,
            is_correct=correct,
            points_earned=points_earned,
            time_taken_seconds=response_time_ms // 1000,
        ))
        await self.db.flush()

        progress = await self.get_progress(user_id, category_id)
        if progress is None:
            progress = UserProgress(
                user_id=user_id, category_id=category_id,
                total_questions_attempted=0, correct_answers=0, total_points_earned=0,
                average_score=0.0, current_streak=0, longest_streak=0, completion_percentage=0.0,
            )
            self.db.add(progress)

        progress.total_questions_attempted += 1
        if correct:
            progress.correct_answers += 1
            progress.current_streak += 1
        else:
            progress.current_streak = 0
        progress.total_points_earned += points_earned
        progress.longest_streak = max(progress.longest_streak, progress.current_streak)
        progress.average_score = progress.correct_answers / progress.total_questions_attempted * 100.0
        progress.completion_percentage = await self._completion(user_id, category_id)
        progress.last_activity = self.clock()
        await self.db.flush()
        return progress

    @dependency_guard("Progress store")
    async def submit_attempt(
        self,
        user_id: str,
        question_id: str,
        answer_id: Optional[str] = None,
        answer_text: Optional[str] = None,
        time_taken_seconds: int = 0,
    ) -> AttemptOutcome:
        question = await QuestionRepository(self.db).get_question(question_id)
        if question is None or not question.is_active:
            raise NotFound("Question not found")

        correct = is_answer_correct(question, answer_id, answer_text)
        points = question.points + time_bonus(time_taken_seconds) if correct else 0
        await self.record_attempt(
            user_id, question.category_id, question.id, correct,
            response_time_ms=time_taken_seconds * 1000,
            points_earned=points,
            selected_answer_id=answer_id,
            answer_text=answer_text,
        )
        logger.debug("Recorded attempt user=%s question=%s correct=%s", user_id, question.id, correct)
        return AttemptOutcome(is_correct=correct, points_earned=points, explanation=question.explanation)

    @dependency_guard("Progress store")
    async def get_user_stats(self, user_id: str, category_id: Optional[str] = None) -> UserStats:
        totals_stmt = select(
            func.coalesce(func.sum(UserProgress.total_questions_attempted), 0),
            func.coalesce(func.sum(UserProgress.correct_answers), 0),
            func.coalesce(func.sum(UserProgress.total_points_earned), 0),
            func.coalesce(func.max(UserProgress.current_streak), 0),
            func.coalesce(func.max(UserProgress.longest_streak), 0),
            func.max(UserProgress.last_activity),
        ).where(UserProgress.user_id == user_id)
        questions_stmt = (
            select(func.count(Question.id))
            .join(Category, Category.id == Question.category_id)
            .where(Question.is_active.is_(True), Category.is_active.is_(True))
        )
        if category_id:
            totals_stmt = totals_stmt.where(UserProgress.category_id == category_id)
            questions_stmt = questions_stmt.where(Question.category_id == category_id)

        attempted, correct, points, streak, longest, last_activity = (await self.db.execute(totals_stmt)).one()
        total_questions = await self.db.scalar(questions_stmt)
        return UserStats(
            total_questions=int(total_questions or 0),
            total_attempted=int(attempted),
            correct_answers=int(correct),
            total_points=int(points),
            current_streak=int(streak),
            longest_streak=int(longest),
            average_score=(correct / attempted * 100.0) if attempted else 0.0,
            last_activity=last_activity,
        )

    @dependency_guard("Progress store")
    async def recent_question_ids(self, user_id: str, category_id: str, limit: int = RECENT_ATTEMPT_WINDOW) -> List[str]:
        """Distinct active questions among the user's latest `limit` attempts in a category."""
        stmt = (
            select(QuizAttempt.question_id)
            .join(Question, Question.id == QuizAttempt.question_id)
            .where(QuizAttempt.user_id == user_id, Question.category_id == category_id, Question.is_active.is_(True))
            .order_by(QuizAttempt.created_at.desc(), QuizAttempt.id.desc())
            .limit(limit)
        )
        return list(dict.fromkeys((await self.db.scalars(stmt)).all()))

    @dependency_guard("Progress store")
    async def count_attempts(self, user_id: str, category_id: str) -> int:
        stmt = (
            select(func.count(QuizAttempt.id))
            .join(Question, Question.id == QuizAttempt.question_id)
            .where(QuizAttempt.user_id == user_id, Question.category_id == category_id, Question.is_active.is_(True))
        )
        return int(await self.db.scalar(stmt) or 0)

    @dependency_guard("Progress store")
    async def analyze_performance(self, user_id: str, category_id: Optional[str] = None) -> PerformanceMetrics:
        """Accuracy, pace, streak and per-tier results over the latest attempts."""
        stmt = (
            select(QuizAttempt.is_correct, QuizAttempt.time_taken_seconds, Question.difficulty_level)
            .join(Question, Question.id == QuizAttempt.question_id)
            .where(QuizAttempt.user_id == user_id, Question.is_active.is_(True))
            .order_by(QuizAttempt.created_at.desc(), QuizAttempt.id.desc())
            .limit(RECENT_ATTEMPT_WINDOW)
        )
        streak_stmt = select(func.coalesce(func.max(UserProgress.current_streak), 0)).where(UserProgress.user_id == user_id)
        if category_id:
            stmt = stmt.where(Question.category_id == category_id)
            streak_stmt = streak_stmt.where(UserProgress.category_id == category_id)

        rows = (await self.db.execute(stmt)).all()
        if not rows:
            return PerformanceMetrics()

        times = [t for _, t, _ in rows if t > 0]
        distribution = {tier: TierTally() for tier in DifficultyLevel}
        for correct, _, tier in rows:
            distribution[tier].total += 1
            if correct:
                distribution[tier].correct += 1
        return PerformanceMetrics(
            accuracy=sum(1 for c, _, _ in rows if c) / len(rows) * 100.0,
            average_time=sum(times) / len(times) if times else 30.0,
            current_streak=int(await self.db.scalar(streak_stmt) or 0),
            recent_performance=[1 if c else 0 for c, _, _ in rows[:RECENT_TREND_WINDOW]],
            difficulty_distribution=distribution,
        )
