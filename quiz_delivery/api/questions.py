from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import datetime
import random
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from quiz_delivery.core.auth import TokenData, get_current_user, get_optional_user
from quiz_delivery.core.cache import CacheBackend, get_cache
from quiz_delivery.core.config import settings
from quiz_delivery.core.database import get_db
from quiz_delivery.core.errors import DependencyFailure, QuizServiceError
from quiz_delivery.core.rate_limit import rate_limit, rate_limit_headers
from quiz_delivery.models.schemas import CamelModel, QuestionOut
from quiz_delivery.services.adaptive import parse_difficulty
from quiz_delivery.services.delivery import ConnectionType, DeliveryOptions, QuestionDelivery
from quiz_delivery.services.progress import utc_now
from quiz_delivery.services.response_cache import difficulty_label, etag_matches

logger = logging.getLogger(__name__)

router = APIRouter()

NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}

class DeliveryMetadata(CamelModel):
  count: int
  category_id: str
  difficulty: str
  optimized: bool
  cached: bool
  server_time: datetime
  difficulty_mix: Dict[str, int]
  fingerprint: str
  connection_type: ConnectionType
  save_data: bool

class QuestionsResponse(CamelModel):
  questions: List[QuestionOut]
  metadata: DeliveryMetadata

class FallbackError(BaseModel):
  error: str
  message: str
  fallback: bool = True

def get_rng() -> Optional[random.Random]:
  return None

def get_delivery(db: AsyncSession = Depends(get_db), cache: CacheBackend = Depends(get_cache), rng: Optional[random.Random] = Depends(get_rng)) -> QuestionDelivery:
  return QuestionDelivery(db, cache, rng=rng)

def _cache_headers(etag: str, request: Request) -> Dict[str, str]:
  return {
    "Cache-Control": f"public, max-age={settings.QUESTION_CACHE_TTL}, stale-while-revalidate={settings.STALE_WHILE_REVALIDATE}",
    "ETag": etag,
    "Vary": "Accept-Encoding, Save-Data, Connection-Type",
    "Link": f"<{settings.API_V1_PREFIX}/quiz/categories>; rel=prefetch",
    **rate_limit_headers(request),
  }

@router.get("/questions", response_model=QuestionsResponse, responses={304: {"description": "Not modified"}, 500: {"model": FallbackError}},
            dependencies=[Depends(rate_limit("questions"))])
async def get_questions(
  request: Request,
  category_id: Optional[str] = Query(None, alias="categoryId"),
  count: int = Query(settings.DEFAULT_QUESTION_COUNT),
  difficulty: Optional[str] = Query(None),
  optimized: bool = Query(False),
  if_none_match: Optional[str] = Header(None),
  user: TokenData = Depends(get_current_user),
  delivery: QuestionDelivery = Depends(get_delivery),
):
  requested = parse_difficulty(difficulty)
  options = DeliveryOptions.from_request(optimized, request.headers)
  try:
    result = await delivery.deliver(user.sub, category_id, count, requested, options)
  except DependencyFailure as e:
    body = FallbackError(error="Failed to load questions", message=e.message)
    return JSONResponse(status_code=e.status_code, content=body.model_dump(), headers=NO_CACHE)

  headers = _cache_headers(result.etag, request)
  if etag_matches(if_none_match, result.etag):
    return Response(status_code=304, headers=headers)

  payload = QuestionsResponse(
    questions=result.result.questions,
    metadata=DeliveryMetadata(
      count=len(result.result.questions),
      category_id=result.result.category_id,
      difficulty=difficulty_label(requested),
      optimized=options.optimized,
      cached=result.cached,
      server_time=utc_now(),
      difficulty_mix={tier.value: n for tier, n in result.result.difficulty_mix.items()},
      fingerprint=result.result.fingerprint,
      connection_type=options.connection_type,
      save_data=options.save_data,
    ),
  )
  return JSONResponse(content=payload.model_dump(by_alias=True, mode="json"), headers=headers)

@router.head("/questions")
async def check_questions(
  category_id: Optional[str] = Query(None, alias="categoryId"),
  user: Optional[TokenData] = Depends(get_optional_user),
  delivery: QuestionDelivery = Depends(get_delivery),
):
  if user is None:
    return Response(status_code=401)
  try:
    await delivery.check_category(category_id)
  except QuizServiceError as e:
    return Response(status_code=e.status_code)
  return Response(status_code=200, headers={
    "Cache-Control": f"public, max-age={settings.CATEGORY_PREFLIGHT_TTL}",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
  })
