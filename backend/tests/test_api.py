from fastapi.testclient import TestClient

from qiaosuan.app import SESSION_STORE, app
from qiaosuan.core import problem_source
from qiaosuan.core.schemas import Problem

client = TestClient(app)

TEN = [
    Problem(
        question=f"{i} × 99 + {i}",
        answer=i * 100,
        explanation=f"提取公因数{i}，变成 {i} × (99 + 1)",
        category="乘法分配律",
    )
    for i in range(11, 21)
]


def _generated(monkeypatch, problems=TEN):
    async def fake_request(n=problem_source.PROBLEMS_PER_SESSION):
        return list(problems)

    monkeypatch.setattr(problem_source, "request_problems", fake_request)


def _failing(monkeypatch):
    async def fake_request(n=problem_source.PROBLEMS_PER_SESSION):
        raise ConnectionError("offline")

    monkeypatch.setattr(problem_source, "request_problems", fake_request)


def _new_session():
    r = client.post("/sessions")
    assert r.status_code == 200
    return r.json()["session_id"]


def test_healthz():
    r = client.get("/healthz")
    assert r.status_code == 200 and r.json() == {"ok": True}


def test_create_session_is_intro():
    sid = _new_session()
    body = client.get(f"/sessions/{sid}").json()
    assert body["screen"] == "intro"
    assert body["total"] == 0 and body["score"] == 0


def test_unknown_session_404():
    assert client.get("/sessions/missing").status_code == 404
    assert client.post("/sessions/missing/answer", json={"answer": "1"}).status_code == 404


def test_start_with_generated_problems(monkeypatch):
    _generated(monkeypatch)
    sid = _new_session()
    r = client.post(f"/sessions/{sid}/start")
    assert r.status_code == 200
    body = r.json()
    assert body["screen"] == "playing"
    assert body["total"] == 10
    assert body["from_fallback"] is False
    assert body["current_problem"] == {"question": "11 × 99 + 11", "category": "乘法分配律"}
    # no answer leaks before submitting
    assert "answer" not in body["current_problem"]


def test_start_falls_back_on_failure(monkeypatch):
    _failing(monkeypatch)
    sid = _new_session()
    body = client.post(f"/sessions/{sid}/start").json()
    assert body["screen"] == "playing"
    assert body["total"] == 3
    assert body["from_fallback"] is True
    assert body["current_problem"]["question"] == "25 × 44"


def test_example_answer_flow(monkeypatch):
    _failing(monkeypatch)
    sid = _new_session()
    client.post(f"/sessions/{sid}/start")
    client.post(f"/sessions/{sid}/answer", json={"answer": "1100"})
    client.post(f"/sessions/{sid}/next")
    client.post(f"/sessions/{sid}/answer", json={"answer": "400"})
    client.post(f"/sessions/{sid}/next")

    r = client.post(f"/sessions/{sid}/answer", json={"answer": "4700"})
    body = r.json()
    assert body["answer_revealed"] is True
    assert body["score"] == 2
    assert body["is_last"] is True
    assert body["last_result"]["correct"] is True
    assert body["last_result"]["explanation"].startswith("提取公因数47")


def test_empty_answer_is_ignored(monkeypatch):
    _generated(monkeypatch)
    sid = _new_session()
    client.post(f"/sessions/{sid}/start")
    r = client.post(f"/sessions/{sid}/answer", json={"answer": ""})
    assert r.status_code == 200
    body = r.json()
    assert body["screen"] == "playing"
    assert body["answer_revealed"] is False
    assert body["history"] == []


def test_invalid_transitions_conflict(monkeypatch):
    _generated(monkeypatch)
    sid = _new_session()
    assert client.post(f"/sessions/{sid}/answer", json={"answer": "1"}).status_code == 409
    client.post(f"/sessions/{sid}/start")
    assert client.post(f"/sessions/{sid}/start").status_code == 409
    r = client.post(f"/sessions/{sid}/next")
    assert r.status_code == 409
    assert r.json()["status"] == "error"


def test_full_session_and_restart(monkeypatch):
    _generated(monkeypatch)
    sid = _new_session()
    client.post(f"/sessions/{sid}/start")

    for i, problem in enumerate(TEN):
        answer = str(int(problem.answer)) if i < 8 else "abc"
        client.post(f"/sessions/{sid}/answer", json={"answer": answer})
        body = client.post(f"/sessions/{sid}/next").json()

    assert body["screen"] == "summary"
    assert body["score"] == 8
    assert len(body["history"]) == 10
    assert body["history"][9]["user_answer"] == "abc"
    assert body["history"][9]["answer"] == 2000
    assert body["message"] == "非常优秀！继续保持！🌟"

    _failing(monkeypatch)
    body = client.post(f"/sessions/{sid}/start").json()
    assert body["screen"] == "playing"
    assert body["score"] == 0
    assert body["current_index"] == 0
    assert body["history"] == []
    assert body["total"] == 3


def test_end_session(monkeypatch):
    _generated(monkeypatch)
    sid = _new_session()
    client.post(f"/sessions/{sid}/start")
    client.post(f"/sessions/{sid}/answer", json={"answer": "1100"})

    r = client.delete(f"/sessions/{sid}")
    assert r.status_code == 200
    assert r.json()["score"] == 1 and r.json()["total"] == 10
    assert sid not in SESSION_STORE
    assert client.get(f"/sessions/{sid}").status_code == 404


def test_numeric_json_answer_is_graded(monkeypatch):
    _generated(monkeypatch)
    sid = _new_session()
    client.post(f"/sessions/{sid}/start")
    r = client.post(f"/sessions/{sid}/answer", json={"answer": 1100})
    assert r.status_code == 200
    body = r.json()
    assert body["last_result"]["correct"] is True
    assert body["last_result"]["user_answer"] == "1100"


def test_malformed_answer_body_422(monkeypatch):
    _generated(monkeypatch)
    sid = _new_session()
    client.post(f"/sessions/{sid}/start")
    r = client.post(f"/sessions/{sid}/answer", json={"answer": ["1100"]})
    assert r.status_code == 422
    assert r.json()["status"] == "error"


def test_store_evicts_oldest_session(monkeypatch):
    import qiaosuan.app as app_module

    monkeypatch.setattr(app_module, "MAX_SESSIONS", 2)
    SESSION_STORE.clear()
    first = _new_session()
    second = _new_session()
    third = _new_session()

    assert len(SESSION_STORE) == 2
    assert client.get(f"/sessions/{first}").status_code == 404
    assert client.get(f"/sessions/{second}").status_code == 200
    assert client.get(f"/sessions/{third}").status_code == 200
