from fastapi import APIRouter, Depends, Query
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from quiz_delivery.core.auth import TokenData, get_current_user
from quiz_delivery.core.database import get_db
from quiz_delivery.core.errors import InvalidArgument
from quiz_delivery.core.rate_limit import rate_limit
from quiz_delivery.models.schemas import BaselineResult, PerformanceMetrics, Recommendation
from quiz_delivery.services.adaptive import AdaptiveSelector, parse_difficulty

router = APIRouter(prefix="/adaptive", dependencies=[Depends(rate_limit("adaptive"))])

def _required(category_id: Optional[str]) -> str:
    if not category_id:
        raise InvalidArgument("Category ID is required")
    return category_id

@router.get("/recommendation", response_model=Recommendation)
async def recommendation(category_id: Optional[str] = Query(None, alias="categoryId"), current_difficulty: Optional[str] = Query(None, alias="currentDifficulty"), user: TokenData = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await AdaptiveSelector(db).recommend(user.sub, _required(category_id), parse_difficulty(current_difficulty))

@router.get("/baseline", response_model=BaselineResult)
async def baseline(category_id: Optional[str] = Query(None, alias="categoryId"), user: TokenData = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await AdaptiveSelector(db).baseline(user.sub, _required(category_id))

@router.get("/performance", response_model=PerformanceMetrics)
async def performance(category_id: Optional[str] = Query(None, alias="categoryId"), user: TokenData = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    selector = AdaptiveSelector(db)
    if category_id:
        category_id = await selector.resolve_category(category_id)
    return await selector.tracker.analyze_performance(user.sub, category_id)
