ADAPTIVE = "/v1/quiz/adaptive"
ATTEMPTS = "/v1/quiz/attempts"


async def _answer_correctly(client, headers, *question_ids):
    for qid in question_ids:
        r = await client.post(ATTEMPTS, json={"questionId": qid, "answerId": f"{qid}-a1", "timeTaken": 5}, headers=headers)
        assert r.status_code == 200


async def test_adaptive_routes_require_token(client):
    for path in ("/recommendation", "/baseline", "/performance"):
        r = await client.get(ADAPTIVE + path, params={"categoryId": "math"})
        assert r.status_code == 401


async def test_recommendation_for_new_user(client, auth_headers):
    r = await client.get(f"{ADAPTIVE}/recommendation", params={"categoryId": "math"}, headers=auth_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["recommendedDifficulty"] == "beginner"
    assert body["shouldAdjust"] is True
    assert body["confidenceScore"] == 0.5


async def test_recommendation_after_strong_run(client, auth_headers):
    await _answer_correctly(client, auth_headers, *[f"math-b-0{i}" for i in range(1, 6)])
    r = await client.get(
        f"{ADAPTIVE}/recommendation", params={"categoryId": "math", "currentDifficulty": "advanced"}, headers=auth_headers
    )
    body = r.json()
    assert body["recommendedDifficulty"] == "advanced"
    assert body["shouldAdjust"] is False


async def test_baseline(client, auth_headers):
    r = await client.get(f"{ADAPTIVE}/baseline", params={"categoryId": "math"}, headers=auth_headers)
    assert r.json() == {"baselineDifficulty": "beginner", "attempts": 0, "message": "Baseline assessment completed"}


async def test_performance(client, auth_headers):
    await _answer_correctly(client, auth_headers, "math-b-01", "math-i-01")
    r = await client.get(f"{ADAPTIVE}/performance", params={"categoryId": "math"}, headers=auth_headers)
    body = r.json()
    assert body["accuracy"] == 100.0
    assert body["averageTime"] == 5.0
    assert body["recentPerformance"] == [1, 1]
    assert body["difficultyDistribution"]["beginner"] == {"correct": 1, "total": 1}
    assert body["difficultyDistribution"]["advanced"] == {"correct": 0, "total": 0}


async def test_adaptive_argument_errors(client, auth_headers):
    missing = await client.get(f"{ADAPTIVE}/recommendation", headers=auth_headers)
    assert missing.status_code == 400
    unknown = await client.get(f"{ADAPTIVE}/baseline", params={"categoryId": "nope"}, headers=auth_headers)
    assert unknown.status_code == 400
    bad_tier = await client.get(
        f"{ADAPTIVE}/recommendation", params={"categoryId": "math", "currentDifficulty": "expert"}, headers=auth_headers
    )
    assert bad_tier.status_code == 400
