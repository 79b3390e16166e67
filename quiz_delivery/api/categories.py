from fastapi import APIRouter, Depends, Query
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from quiz_delivery.core.auth import TokenData, get_optional_user
from quiz_delivery.core.database import get_db
from quiz_delivery.core.rate_limit import rate_limit
from quiz_delivery.models.schemas import CategoryList, CategoryListMeta
from quiz_delivery.services.categories import CategoryStore

router = APIRouter()

@router.get("/categories", response_model=CategoryList, dependencies=[Depends(rate_limit("categories"))])
async def list_categories(
    include_stats: bool = Query(False, alias="includeStats"),
    page: int = Query(1),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    user: Optional[TokenData] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    store = CategoryStore(db)
    if include_stats:
        categories, pagination = await store.list_categories_with_stats(user.sub if user else None, page, page_size)
    else:
        categories, pagination = await store.list_categories(page, page_size)
    return CategoryList(categories=categories, meta=CategoryListMeta(pagination=pagination))
