from datetime import datetime, timedelta, timezone

from quiz_delivery.core.cache import MemoryCache
from quiz_delivery.models.orm import DifficultyLevel
from quiz_delivery.models.schemas import AnswerOut, QuestionOut, QuestionSelectionResult
from quiz_delivery.services.response_cache import (
    KEY_PREFIX, ResponseCache, cache_key, compute_etag, etag_matches,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _result():
    question = QuestionOut(
        id="q1", category_id="cat-math", text="1 + 1?", question_type="multiple_choice",
        difficulty=DifficultyLevel.BEGINNER, points=10,
        answers=[AnswerOut(id="a1", text="2", sort_order=1), AnswerOut(id="a2", text="3", sort_order=2)],
    )
    return QuestionSelectionResult(
        category_id="cat-math",
        questions=[question],
        difficulty_mix={DifficultyLevel.BEGINNER: 1, DifficultyLevel.INTERMEDIATE: 0, DifficultyLevel.ADVANCED: 0},
        fingerprint="abc",
    )


async def test_memory_cache_expires_entries():
    clock = FakeClock()
    cache = MemoryCache(timer=clock)
    await cache.set("k", {"v": 1}, expire=10)
    clock.now = 9.0
    assert await cache.get("k") == {"v": 1}
    clock.now = 10.5
    assert await cache.get("k") is None
    assert await cache.get("k", "fallback") == "fallback"


async def test_memory_cache_returns_copies():
    cache = MemoryCache()
    await cache.set("k", {"items": [1]})
    value = await cache.get("k")
    value["items"].append(2)
    assert await cache.get("k") == {"items": [1]}


async def test_memory_cache_delete():
    cache = MemoryCache()
    await cache.set("a", 1)
    await cache.set("b", 2)
    assert await cache.delete("a", "b", "c") == 2
    assert len(cache) == 0


async def test_incr_keeps_a_fixed_window():
    clock = FakeClock()
    cache = MemoryCache(timer=clock)
    assert await cache.incr("rl", 60) == 1
    clock.now = 30.0
    assert await cache.incr("rl", 60) == 2
    clock.now = 59.0
    assert await cache.incr("rl", 60) == 3
    clock.now = 61.0
    assert await cache.incr("rl", 60) == 1


def test_etag_format_and_stability():
    etag = compute_etag("cat-math", None, 10, 10)
    assert etag.startswith('"') and etag.endswith('"')
    assert len(etag) == 22
    assert etag == compute_etag("cat-math", None, 10, 10)
    assert etag != compute_etag("cat-math", None, 10, 9)
    assert etag != compute_etag("cat-math", DifficultyLevel.ADVANCED, 10, 10)


def test_etag_matching():
    etag = '"abc"'
    assert etag_matches('"abc"', etag)
    assert etag_matches('W/"abc"', etag)
    assert etag_matches('"zzz", "abc"', etag)
    assert etag_matches("*", etag)
    assert not etag_matches('"zzz"', etag)
    assert not etag_matches(None, etag)
    assert not etag_matches("", etag)


def test_cache_key_is_scoped_per_user():
    key = cache_key("user-1", "cat-math", None, 10)
    assert key.startswith(f"{KEY_PREFIX}:")
    assert key != cache_key("user-2", "cat-math", None, 10)
    assert key != cache_key("user-1", "cat-math", DifficultyLevel.BEGINNER, 10)


async def test_response_cache_hit_keeps_etag():
    responses = ResponseCache(MemoryCache(), ttl=60)
    key = cache_key("user-1", "cat-math", None, 10)
    stored = await responses.put(key, _result(), 10)
    entry = await responses.get(key)
    assert entry is not None
    assert entry.value == stored.value
    assert entry.etag == compute_etag("cat-math", None, 10, 1)
    assert entry.expires_at - entry.created_at == timedelta(seconds=60)


async def test_response_cache_drops_unreadable_and_expired_entries():
    backend = MemoryCache()
    responses = ResponseCache(backend)
    await backend.set("garbage", {"unexpected": True})
    assert await responses.get("garbage") is None

    past = datetime.now(timezone.utc) - timedelta(minutes=10)
    stale = {
        "key": "stale", "count": 1, "value": _result().model_dump(mode="json"),
        "created_at": (past - timedelta(minutes=5)).isoformat(), "expires_at": past.isoformat(),
    }
    await backend.set("stale", stale)
    assert await responses.get("stale") is None
    assert await responses.get("missing") is None
