"""
Shared fixtures: an in-memory SQLite database seeded with a small catalogue,
a process-local cache, and an HTTP client wired to the app through
dependency overrides.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-quiz-delivery-suite")

import random
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from quiz_delivery.api.questions import get_rng
from quiz_delivery.core.auth import create_token
from quiz_delivery.core.cache import MemoryCache, get_cache, get_rate_limit_store
from quiz_delivery.core.database import Base, get_db
from quiz_delivery.main import app
from quiz_delivery.models.orm import Answer, Category, DifficultyLevel, Question, QuestionType

MATH = "cat-math"
SCIENCE = "cat-science"
HISTORY = "cat-history"
PER_TIER = 6

T0 = datetime(2024, 1, 1, 12, 0, 0)


def _mc(qid, category_id, tier, created_at, active=True):
    return Question(
        id=qid,
        category_id=category_id,
        question_text=f"Question {qid}",
        question_type=QuestionType.MULTIPLE_CHOICE,
        difficulty_level=tier,
        points=10,
        explanation=f"Explanation for {qid}",
        is_active=active,
        created_at=created_at,
        answers=[
            Answer(id=f"{qid}-a{n}", answer_text=f"Option {n}", is_correct=(n == 1), sort_order=n)
            for n in range(1, 5)
        ],
    )


def build_catalogue():
    rows = [
        Category(id=MATH, name="Mathematics", slug="math", sort_order=1, is_active=True),
        Category(id=SCIENCE, name="Science", slug="science", sort_order=2, is_active=True),
        Category(id=HISTORY, name="History", slug="history", sort_order=3, is_active=False),
    ]
    n = 0
    for tier in (DifficultyLevel.BEGINNER, DifficultyLevel.INTERMEDIATE, DifficultyLevel.ADVANCED):
        for i in range(1, PER_TIER + 1):
            rows.append(_mc(f"math-{tier.value[0]}-{i:02d}", MATH, tier, T0 + timedelta(minutes=n)))
            n += 1
    rows.append(_mc("math-b-99", MATH, DifficultyLevel.BEGINNER, T0 + timedelta(minutes=n), active=False))

    rows.append(_mc("sci-b-01", SCIENCE, DifficultyLevel.BEGINNER, T0))
    rows.append(Question(
        id="sci-b-02", category_id=SCIENCE, question_text="Plants make food by ____.",
        question_type=QuestionType.FILL_BLANK, difficulty_level=DifficultyLevel.BEGINNER,
        points=10, created_at=T0 + timedelta(minutes=1),
        answers=[Answer(id="sci-b-02-a1", answer_text="photosynthesis", is_correct=True, sort_order=1)],
    ))
    rows.append(Question(
        id="sci-i-01", category_id=SCIENCE, question_text="Water boils at 100C at sea level.",
        question_type=QuestionType.TRUE_FALSE, difficulty_level=DifficultyLevel.INTERMEDIATE,
        points=15, created_at=T0 + timedelta(minutes=2),
        answers=[
            Answer(id="sci-i-01-t", answer_text="True", is_correct=True, sort_order=1),
            Answer(id="sci-i-01-f", answer_text="False", is_correct=False, sort_order=2),
        ],
    ))
    rows.append(_mc("hist-b-01", HISTORY, DifficultyLevel.BEGINNER, T0))
    return rows


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        session.add_all(build_catalogue())
        await session.commit()
    return factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def memory_cache():
    return MemoryCache(maxsize=1000, default_ttl=300)


@pytest.fixture
def limiter_store():
    return MemoryCache(maxsize=1000, default_ttl=60)


@pytest.fixture
def token():
    return create_token("user-1", ["student"])


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session_factory, memory_cache, limiter_store):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: memory_cache
    app.dependency_overrides[get_rate_limit_store] = lambda: limiter_store
    app.dependency_overrides[get_rng] = lambda: random.Random(1234)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
