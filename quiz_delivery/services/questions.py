"""
Question repository: ordered and randomly sampled reads over the active question pool.
"""
import logging
import random
from typing import Collection, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from quiz_delivery.models.orm import DifficultyLevel, Question

logger = logging.getLogger(__name__)


class QuestionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _active(self, category_id: str, difficulty: Optional[DifficultyLevel], exclude_ids: Collection[str] = ()):
        conditions = [Question.category_id == category_id, Question.is_active.is_(True)]
        if difficulty is not None:
            conditions.append(Question.difficulty_level == difficulty)
        if exclude_ids:
            conditions.append(Question.id.not_in(list(exclude_ids)))
        return conditions

    async def get_questions_by_category(
        self,
        category_id: str,
        difficulty: Optional[DifficultyLevel] = None,
        limit: Optional[int] = None,
        page: int = 1,
    ) -> List[Question]:
        """Active questions in creation order, for deterministic and admin views."""
        stmt = (
            select(Question)
            .options(selectinload(Question.answers))
            .where(*self._active(category_id, difficulty))
            .order_by(Question.created_at.asc(), Question.id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit).offset((max(page, 1) - 1) * limit)
        return list((await self.db.scalars(stmt)).all())

    async def count_questions(
        self,
        category_id: str,
        difficulty: Optional[DifficultyLevel] = None,
        exclude_ids: Collection[str] = (),
    ) -> int:
        stmt = select(func.count(Question.id)).where(*self._active(category_id, difficulty, exclude_ids))
        return int(await self.db.scalar(stmt) or 0)

    async def get_random_questions(
        self,
        category_id: str,
        count: int,
        difficulty: Optional[DifficultyLevel] = None,
        exclude_ids: Collection[str] = (),
        rng: Optional[random.Random] = None,
    ) -> List[Question]:
        """
        Uniform sample without replacement of up to `count` active questions.

        Only the id column of the matching pool is read; full rows are loaded for
        the chosen ids. Returns fewer than `count` when the pool is smaller.
        """
        if count <= 0:
            return []
        pool_size = await self.count_questions(category_id, difficulty, exclude_ids)
        if pool_size == 0:
            return []

        rng = rng or random.Random()
        ids_stmt = (
            select(Question.id)
            .where(*self._active(category_id, difficulty, exclude_ids))
            .order_by(Question.id)
        )
        pool_ids = list((await self.db.scalars(ids_stmt)).all())
        chosen = rng.sample(pool_ids, min(count, len(pool_ids)))

        rows_stmt = (
            select(Question)
            .options(selectinload(Question.answers))
            .where(Question.id.in_(chosen), Question.is_active.is_(True))
        )
        by_id = {q.id: q for q in (await self.db.scalars(rows_stmt)).all()}
        # keep the sampled order; a row deactivated in between is simply dropped
        return [by_id[qid] for qid in chosen if qid in by_id]

    async def get_question(self, question_id: str) -> Optional[Question]:
        stmt = select(Question).options(selectinload(Question.answers)).where(Question.id == question_id)
        return await self.db.scalar(stmt)
