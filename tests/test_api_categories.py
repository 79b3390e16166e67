URL = "/v1/quiz/categories"


async def test_anonymous_listing(client):
    r = await client.get(URL)
    assert r.status_code == 200
    body = r.json()
    assert [c["slug"] for c in body["categories"]] == ["math", "science"]
    assert [c["totalQuestions"] for c in body["categories"]] == [18, 3]
    assert all(c["progress"] is None for c in body["categories"])
    assert body["meta"]["pagination"] == {"page": 1, "pageSize": 25, "total": 2, "totalPages": 1}


async def test_pagination(client):
    r = await client.get(URL, params={"page": 2, "pageSize": 1})
    body = r.json()
    assert [c["slug"] for c in body["categories"]] == ["science"]
    assert body["meta"]["pagination"]["totalPages"] == 2

    past_end = await client.get(URL, params={"page": 5, "pageSize": 1})
    assert past_end.json()["categories"] == []


async def test_page_size_is_clamped(client):
    r = await client.get(URL, params={"pageSize": 1000})
    assert r.json()["meta"]["pagination"]["pageSize"] == 100


async def test_page_must_be_positive(client):
    r = await client.get(URL, params={"page": 0})
    assert r.status_code == 400


async def test_stats_require_identity(client):
    r = await client.get(URL, params={"includeStats": "true"})
    assert r.status_code == 401
    assert "categories" not in r.json()


async def test_stats_attach_callers_progress(client, auth_headers):
    await client.post(
        "/v1/quiz/attempts", json={"questionId": "math-b-01", "answerId": "math-b-01-a1"}, headers=auth_headers
    )
    r = await client.get(URL, params={"includeStats": "true"}, headers=auth_headers)
    assert r.status_code == 200
    math, science = r.json()["categories"]
    assert math["progress"]["totalQuestionsAttempted"] == 1
    assert math["progress"]["averageScore"] == 100.0
    assert science["progress"] is None
