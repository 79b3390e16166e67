from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from quiz_delivery.core.cache import cache, rate_limit_store
from quiz_delivery.core.config import settings
from quiz_delivery.core.database import init_db, close_db
from quiz_delivery.core.errors import DependencyFailure, QuizServiceError, RateLimited
from quiz_delivery.api.questions import NO_CACHE, FallbackError, router as questions_router
from quiz_delivery.api.categories import router as categories_router
from quiz_delivery.api.attempts import router as attempts_router
from quiz_delivery.api.adaptive import router as adaptive_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[FastApiIntegration(transaction_style="endpoint"), SqlalchemyIntegration()],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s...", settings.APP_NAME)
    await init_db()
    await cache.connect()
    if rate_limit_store is not cache:
        await rate_limit_store.connect()
    logger.info("Cache initialized (%s)", settings.CACHE_BACKEND)
    yield
    logger.info("Shutting down %s...", settings.APP_NAME)
    if rate_limit_store is not cache:
        await rate_limit_store.disconnect()
    await cache.disconnect()
    await close_db()
    logger.info("Shutdown complete")

app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.include_router(questions_router, prefix=f"{settings.API_V1_PREFIX}/quiz", tags=["questions"])
app.include_router(categories_router, prefix=f"{settings.API_V1_PREFIX}/quiz", tags=["categories"])
app.include_router(attempts_router, prefix=f"{settings.API_V1_PREFIX}/quiz", tags=["attempts"])
app.include_router(adaptive_router, prefix=f"{settings.API_V1_PREFIX}/quiz", tags=["adaptive"])

def _error(status_code: int, message: str, error_type: str, **extra) -> dict:
    return {"error": {"message": message, "type": error_type, "status_code": status_code, **extra}}

def _fallback(exc: DependencyFailure) -> JSONResponse:
    body = FallbackError(error=exc.summary, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=NO_CACHE)

@app.exception_handler(DependencyFailure)
async def dependency_failure_handler(request: Request, exc: DependencyFailure):
    return _fallback(exc)

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    # driver messages can carry connection strings; log the type only
    logger.error("Database error on %s: %s", request.url.path, type(exc).__name__)
    return _fallback(DependencyFailure("Database unavailable"))

@app.exception_handler(QuizServiceError)
async def quiz_error_handler(request: Request, exc: QuizServiceError):
    headers = dict(NO_CACHE)
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=_error(exc.status_code, exc.message, exc.error_type), headers=headers)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=_error(exc.status_code, exc.detail, "http_error"))

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=_error(422, "Validation error", "validation_error", details=jsonable_encoder(exc.errors())),
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s: %s", request.url.path, type(exc).__name__, exc_info=settings.DEBUG)
    message = str(exc) if settings.DEBUG else "An internal error occurred"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error(500, message, "internal_error"), headers=NO_CACHE
    )

@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.APP_VERSION, "cache": await cache.ping()}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("quiz_delivery.main:app", host="0.0.0.0", port=8000, log_level=settings.LOG_LEVEL.lower())
