import logging
import math
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from quiz_delivery.core.config import settings
from quiz_delivery.core.errors import InvalidArgument, NotFound, Unauthorized, dependency_guard
from quiz_delivery.models.orm import Category, Question, UserProgress
from quiz_delivery.models.schemas import CategoryOut, PaginationMeta, ProgressOut

logger = logging.getLogger(__name__)


def clamp_page_size(page_size: Optional[int]) -> int:
    if page_size is None:
        return settings.DEFAULT_PAGE_SIZE
    return max(1, min(page_size, settings.MAX_PAGE_SIZE))


class CategoryStore:
    """Read-only access to active categories."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @dependency_guard("Category store")
    async def get_category(self, identifier: str) -> Category:
        """Look up an active category by id or slug."""
        stmt = select(Category).where(
            or_(Category.id == identifier, Category.slug == identifier),
            Category.is_active.is_(True),
        )
        category = await self.db.scalar(stmt)
        if category is None:
            raise NotFound(f"Category not found: {identifier}")
        return category

    async def _question_counts(self, category_ids: List[str]) -> Dict[str, int]:
        if not category_ids:
            return {}
        stmt = (
            select(Question.category_id, func.count(Question.id))
            .where(Question.category_id.in_(category_ids), Question.is_active.is_(True))
            .group_by(Question.category_id)
        )
        return {cid: int(n) for cid, n in (await self.db.execute(stmt)).all()}

    async def _page(self, page: int, page_size: Optional[int]) -> Tuple[List[Category], PaginationMeta]:
        if page < 1:
            raise InvalidArgument("page must be >= 1")
        size = clamp_page_size(page_size)
        total = int(await self.db.scalar(select(func.count(Category.id)).where(Category.is_active.is_(True))) or 0)
        stmt = (
            select(Category)
            .where(Category.is_active.is_(True))
            .order_by(Category.sort_order.asc(), Category.name.asc())
            .limit(size)
            .offset((page - 1) * size)
        )
        rows = list((await self.db.scalars(stmt)).all())
        meta = PaginationMeta(page=page, page_size=size, total=total, total_pages=math.ceil(total / size))
        return rows, meta

    @dependency_guard("Category store")
    async def list_categories(self, page: int = 1, page_size: Optional[int] = None) -> Tuple[List[CategoryOut], PaginationMeta]:
        rows, meta = await self._page(page, page_size)
        counts = await self._question_counts([c.id for c in rows])
        categories = [
            CategoryOut.model_validate(c).model_copy(update={"total_questions": counts.get(c.id, 0)})
            for c in rows
        ]
        return categories, meta

    @dependency_guard("Category store")
    async def list_categories_with_stats(
        self, user_id: Optional[str], page: int = 1, page_size: Optional[int] = None
    ) -> Tuple[List[CategoryOut], PaginationMeta]:
        """Category page joined with the caller's own progress rows."""
        if not user_id:
            raise Unauthorized()
        categories, meta = await self.list_categories(page, page_size)
        if not categories:
            return categories, meta
        stmt = select(UserProgress).where(
            UserProgress.user_id == user_id,
            UserProgress.category_id.in_([c.id for c in categories]),
        )
        progress = {p.category_id: p for p in (await self.db.scalars(stmt)).all()}
        with_stats = [
            c.model_copy(update={"progress": ProgressOut.model_validate(progress[c.id]) if c.id in progress else None})
            for c in categories
        ]
        return with_stats, meta
