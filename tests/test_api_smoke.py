import pytest


@pytest.fixture
def author(headers):
    return headers("author-1", "author")


@pytest.fixture
def student(headers):
    return headers("student-1", "student")


def seed(client, author, difficulty, n, topic="Cardiology", tags=()):
    ids = []
    for i in range(n):
        payload = {"topic_name": topic, "content": f"{difficulty} stem {i}", "correct_label": "a", "explanation": "Because",
                   "difficulty": difficulty, "tags": list(tags),
                   "options": [{"label": "A", "text": "Alpha"}, {"label": "B", "text": "Bravo"}, {"label": "C", "text": "Charlie"}]}
        r = client.post("/v1/questions", headers=author, json=payload); assert r.status_code == 201
        ids.append(r.json()["question_id"])
    return ids


def test_health(client):
    r = client.get("/health"); assert r.status_code == 200 and r.json()["status"] == "ok"


def test_question_validation(client, author):
    bad = {"topic_name": "Cardiology", "content": "Stem", "correct_label": "C",
           "options": [{"label": "A", "text": "Alpha"}, {"label": "B", "text": "Bravo"}]}
    r = client.post("/v1/questions", headers=author, json=bad); assert r.status_code == 422
    bad["options"] = [{"label": "A", "text": "Alpha"}, {"label": "a", "text": "Again"}]; bad["correct_label"] = "A"
    r = client.post("/v1/questions", headers=author, json=bad); assert r.status_code == 422


def test_roles_are_enforced(client, student):
    r = client.post("/v1/question-sets/generate", headers=student, json={"question_count": 1}); assert r.status_code == 403
    r = client.get("/v1/attempts"); assert r.status_code in (401, 403)


def test_generate_publish_and_take_a_quiz(client, author, student):
    easy = seed(client, author, "easy", 2); medium = seed(client, author, "medium", 1)
    r = client.post("/v1/question-sets/generate", headers=author, json={
        "question_count": 3, "distribution": {"easy": 50, "medium": 25, "hard": 25},
        "points_policy": "byDifficulty", "time_limit_minutes": 30})
    assert r.status_code == 201, r.text
    gen = r.json()
    assert gen["tier_counts"] == {"easy": 2, "medium": 1, "hard": 0}
    assert sorted(gen["question_ids"]) == sorted(easy + medium)
    assert gen["total_points"] == 4
    set_id = gen["question_set_id"]

    r = client.post("/v1/attempts", headers=student, json={"question_set_id": set_id, "kind": "quiz"})
    assert r.status_code == 409 and r.json()["error"]["type"] == "question_set_unavailable"
    r = client.get(f"/v1/question-sets/{set_id}", headers=student); assert r.status_code == 404
    r = client.post(f"/v1/question-sets/{set_id}/publish", headers=author, json={"published": True}); assert r.status_code == 200

    r = client.get(f"/v1/question-sets/{set_id}", headers=student); assert r.status_code == 200
    assert all("correct_label" not in q for q in r.json()["questions"])

    r = client.post("/v1/attempts", headers=student, json={"question_set_id": set_id, "kind": "quiz"})
    assert r.status_code == 201, r.text
    attempt = r.json(); attempt_id = attempt["attempt_id"]
    assert attempt["time_limit_minutes"] == 30 and attempt["status"] == "in_progress"

    r = client.post("/v1/attempts", headers=student, json={"question_set_id": set_id, "kind": "quiz"})
    assert r.status_code == 409
    err = r.json()["error"]
    assert err["type"] == "duplicate_active_attempt" and err["category"] == "state_conflict"
    assert err["details"]["attempt_id"] == attempt_id

    first = attempt["questions"][0]["question_id"]
    r = client.post(f"/v1/attempts/{attempt_id}/answers", headers=student, json={"question_id": first, "selected_label": "A"})
    assert r.status_code == 200 and r.json()["correct"] is None
    r = client.post(f"/v1/attempts/{attempt_id}/answers", headers=student, json={"question_id": 999999, "selected_label": "A"})
    assert r.status_code == 422 and r.json()["error"]["type"] == "invalid_answer"

    r = client.get(f"/v1/attempts/{attempt_id}/result", headers=student); assert r.status_code == 409
    r = client.post(f"/v1/attempts/{attempt_id}/complete", headers=student); assert r.status_code == 200
    done = r.json()
    assert done["status"] == "completed" and done["correct_count"] == 1 and done["score"] == 33
    assert done["passed"] is False
    r = client.post(f"/v1/attempts/{attempt_id}/complete", headers=student); assert r.json() == done

    r = client.get(f"/v1/attempts/{attempt_id}/result", headers=student); assert r.status_code == 200
    assert r.json()["details_hidden"] is True

    r = client.get(f"/v1/questions/{first}/stats", headers=author)
    assert r.json()["times_used"] == 1 and r.json()["times_correct"] == 1

    r = client.get("/v1/attempts?status=completed", headers=student)
    assert r.json()["total"] == 1


def test_insufficient_pool_is_reported(client, author):
    seed(client, author, "easy", 1)
    r = client.post("/v1/question-sets/generate", headers=author, json={
        "question_count": 1, "distribution": {"easy": 0, "medium": 0, "hard": 100}})
    assert r.status_code == 422
    err = r.json()["error"]
    assert err["type"] == "insufficient_pool" and err["category"] == "resource" and err["details"]["tier"] == "hard"
    r = client.post("/v1/question-sets/generate", headers=author, json={
        "question_count": 1, "difficulty": "easy", "distribution": {"easy": 100}})
    assert r.status_code == 422 and r.json()["error"]["category"] == "configuration"


def test_authored_set_and_practice(client, author, student, headers):
    ids = seed(client, author, "medium", 3, tags=["renal"])
    r = client.post("/v1/question-sets", headers=author, json={"title": "Renal", "question_ids": ids, "points": [1, 2, 3], "publish": True})
    assert r.status_code == 201 and r.json()["total_points"] == 6

    r = client.post("/v1/practice", headers=student, json={"question_count": 2, "difficulty": "medium"})
    assert r.status_code == 201, r.text
    practice = r.json()
    assert practice["kind"] == "practice" and len(practice["questions"]) == 2
    qid = practice["questions"][0]["question_id"]
    r = client.post(f"/v1/attempts/{practice['attempt_id']}/answers", headers=student, json={"question_id": qid, "selected_label": "b"})
    assert r.json()["correct"] is False and r.json()["selected_label"] == "B"

    r = client.get(f"/v1/attempts/{practice['attempt_id']}", headers=headers("someone-else", "student"))
    assert r.status_code == 404 and r.json()["error"]["type"] == "not_found"
    # a practice set stays private to the student who generated it
    r = client.get(f"/v1/question-sets/{practice['question_set_id']}", headers=headers("someone-else", "student"))
    assert r.status_code == 404
    r = client.post("/v1/attempts", headers=headers("someone-else", "student"), json={"question_set_id": practice["question_set_id"]})
    assert r.status_code == 409, r.text

    r = client.post(f"/v1/attempts/{practice['attempt_id']}/abandon", headers=student)
    assert r.status_code == 200 and r.json()["status"] == "abandoned" and r.json()["end_reason"] == "user"
    r = client.post(f"/v1/attempts/{practice['attempt_id']}/complete", headers=student)
    assert r.status_code == 409 and r.json()["error"]["type"] == "attempt_not_active"

    r = client.post(f"/v1/questions/{ids[0]}/retire", headers=author); assert r.json()["is_active"] is False
    r = client.post("/v1/practice", headers=student, json={"question_count": 3, "difficulty": "medium"})
    assert r.status_code == 422 and r.json()["error"]["details"]["available"] == 2
