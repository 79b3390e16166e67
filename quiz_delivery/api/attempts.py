from fastapi import APIRouter, Depends, Query
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from quiz_delivery.core.auth import TokenData, get_current_user
from quiz_delivery.core.database import get_db
from quiz_delivery.core.rate_limit import rate_limit
from quiz_delivery.models.schemas import AttemptIn, AttemptResult, UserStats
from quiz_delivery.services.progress import PerformanceTracker

router = APIRouter()

@router.post("/attempts", response_model=AttemptResult, dependencies=[Depends(rate_limit("attempts"))])
async def submit_attempt(payload: AttemptIn, user: TokenData = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    outcome = await PerformanceTracker(db).submit_attempt(
        user.sub, payload.question_id, payload.answer_id, payload.answer_text, payload.time_taken
    )
    await db.commit()
    return AttemptResult(is_correct=outcome.is_correct, points_earned=outcome.points_earned, explanation=outcome.explanation)

@router.get("/stats", response_model=UserStats)
async def user_stats(category_id: Optional[str] = Query(None, alias="categoryId"), user: TokenData = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await PerformanceTracker(db).get_user_stats(user.sub, category_id)
