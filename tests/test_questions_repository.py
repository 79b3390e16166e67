import random

from quiz_delivery.models.orm import DifficultyLevel
from quiz_delivery.services.questions import QuestionRepository

MATH = "cat-math"


async def test_questions_by_category_in_creation_order(db):
    questions = await QuestionRepository(db).get_questions_by_category(MATH)
    ids = [q.id for q in questions]
    assert len(ids) == 18
    assert ids[0] == "math-b-01"
    assert ids[-1] == "math-a-06"
    assert "math-b-99" not in ids


async def test_questions_by_category_filters_and_pages(db):
    repo = QuestionRepository(db)
    first = await repo.get_questions_by_category(MATH, DifficultyLevel.INTERMEDIATE, limit=4)
    second = await repo.get_questions_by_category(MATH, DifficultyLevel.INTERMEDIATE, limit=4, page=2)
    assert [q.id for q in first] == ["math-i-01", "math-i-02", "math-i-03", "math-i-04"]
    assert [q.id for q in second] == ["math-i-05", "math-i-06"]


async def test_count_questions(db):
    repo = QuestionRepository(db)
    assert await repo.count_questions(MATH) == 18
    assert await repo.count_questions(MATH, DifficultyLevel.BEGINNER) == 6
    assert await repo.count_questions(MATH, DifficultyLevel.BEGINNER, ["math-b-01", "math-b-02"]) == 4
    assert await repo.count_questions("missing") == 0


async def test_random_questions_respect_tier_and_exclusions(db):
    excluded = ["math-a-01", "math-a-02"]
    picked = await QuestionRepository(db).get_random_questions(
        MATH, 3, DifficultyLevel.ADVANCED, exclude_ids=excluded, rng=random.Random(3)
    )
    assert len(picked) == 3
    assert len({q.id for q in picked}) == 3
    assert all(q.difficulty_level is DifficultyLevel.ADVANCED for q in picked)
    assert not {q.id for q in picked} & set(excluded)


async def test_random_questions_return_whole_pool_when_short(db):
    picked = await QuestionRepository(db).get_random_questions(MATH, 50, DifficultyLevel.BEGINNER, rng=random.Random(3))
    assert sorted(q.id for q in picked) == [f"math-b-{i:02d}" for i in range(1, 7)]


async def test_random_questions_edge_cases(db):
    repo = QuestionRepository(db)
    assert await repo.get_random_questions(MATH, 0) == []
    assert await repo.get_random_questions("missing", 5) == []


async def test_random_questions_load_answers(db):
    picked = await QuestionRepository(db).get_random_questions(MATH, 1, rng=random.Random(3))
    assert [a.sort_order for a in picked[0].answers] == [1, 2, 3, 4]


async def test_random_questions_are_reproducible_with_seed(db):
    repo = QuestionRepository(db)
    first = await repo.get_random_questions(MATH, 5, rng=random.Random(11))
    second = await repo.get_random_questions(MATH, 5, rng=random.Random(11))
    assert [q.id for q in first] == [q.id for q in second]
