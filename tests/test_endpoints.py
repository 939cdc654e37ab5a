import asyncio
import json
import sys
from datetime import timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import app
import db
from engines.maths_generator import CHALLENGE_KINDS
from env_validation import Settings


def _request(method: str, path: str, payload=None, query: str = "") -> tuple[int, dict]:
    async def _call():
        body = b"" if payload is None else json.dumps(payload).encode("utf-8")
        received_once = False

        async def receive():
            nonlocal received_once
            if not received_once:
                received_once = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        messages = []

        async def send(message):
            messages.append(message)

        headers = [(b"host", b"testserver")]
        if payload is not None:
            headers.extend(
                [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode()),
                ]
            )
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "scheme": "http",
            "query_string": query.encode(),
            "headers": headers,
            "client": ("testclient", 12345),
            "server": ("testserver", 80),
            "state": {},
        }

        await app.app(scope, receive, send)
        return messages

    messages = asyncio.run(_call())
    status = 500
    body_bytes = b""

    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")

    data = json.loads(body_bytes.decode("utf-8") or "{}")
    return status, data


def _error_code(response):
    status, payload = response
    assert payload["success"] is False
    return status, payload["error"]["code"]


@pytest.fixture
def services(curriculum, clock, temp_db):
    # direct ASGI calls skip the lifespan, so services are wired here
    settings = Settings(
        db_path=temp_db,
        redis_url=None,
        cache_namespace="test",
        cache_default_ttl=60,
        cache_timeout_seconds=0.1,
        recommendation_max_limit=20,
        seed_catalog=False,
    )
    built = app.build_services(settings, clock=clock)
    app.app.state.services = built
    yield built
    app.app.state.services = None


def _attempt(student_id, exercise_id, **attempt):
    body = {"success": True, "elapsed_seconds": 30}
    body.update(attempt)
    return _request(
        "POST", f"/students/{student_id}/attempts", {"exercise_id": exercise_id, "attempt": body}
    )


def test_health(services):
    status, payload = _request("GET", "/health")
    assert status == 200
    assert payload == {"success": True, "data": {"status": "ok", "cache_connected": False}}


def test_services_missing_returns_503(temp_db):
    app.app.state.services = None
    assert _error_code(_request("GET", "/health")) == (503, "HTTP_503")


def test_unknown_route_uses_envelope(services):
    assert _error_code(_request("GET", "/nowhere")) == (404, "HTTP_404")


def test_lifespan_opens_configured_database(temp_db, tmp_path, monkeypatch):
    served = tmp_path / "served" / "reved.db"
    monkeypatch.setenv("DB_PATH", str(served))
    monkeypatch.setenv("CACHE_NAMESPACE", "test")
    monkeypatch.setenv("SEED_CATALOG", "false")
    monkeypatch.delenv("REDIS_URL", raising=False)

    async def run():
        async with app._lifespan(app.app):
            return db.DB_PATH

    try:
        active_path = asyncio.run(run())
    finally:
        app.app.state.services = None
    assert active_path == str(served)
    assert served.exists()


def test_phonics_catalog(services):
    status, payload = _request("GET", "/defis/massifs")
    assert status == 200
    assert payload["data"]["total"] == 159

    status, payload = _request("GET", "/defis/periode/2")
    assert status == 200
    assert payload["data"]["total"] == 37
    assert all(c["period"] == 2 for c in payload["data"]["challenges"])

    assert _error_code(_request("GET", "/defis/periode/6")) == (400, "INVALID_PERIOD")
    assert _request("GET", "/defis/difficulte/bronze")[0] == 200
    assert _error_code(_request("GET", "/defis/difficulte/plastique")) == (400, "INVALID_DIFFICULTY")


def test_maths_catalog(services):
    status, payload = _request("GET", "/maths/stats")
    assert status == 200
    assert payload["data"]["total"] == 103

    status, payload = _request("GET", "/maths/defis/niveau/2")
    assert payload["data"]["total"] == 29

    status, payload = _request("GET", f"/maths/defis/type/{CHALLENGE_KINDS[0]}")
    assert status == 200
    assert all(c["kind"] == CHALLENGE_KINDS[0] for c in payload["data"]["challenges"])

    status, first = _request("GET", "/maths/defis/aleatoire", query="niveau=3&seed=7")
    _, second = _request("GET", "/maths/defis/aleatoire", query="niveau=3&seed=7")
    assert status == 200
    assert first["data"]["level"] == 3
    assert first == second

    challenge_id = first["data"]["id"]
    status, payload = _request("GET", f"/maths/defis/{challenge_id}")
    assert payload["data"]["id"] == challenge_id

    assert _error_code(_request("GET", "/maths/defis/niveau/9")) == (400, "INVALID_LEVEL")
    assert _error_code(_request("GET", "/maths/defis/aleatoire", query="niveau=0")) == (400, "INVALID_LEVEL")
    assert _error_code(_request("GET", "/maths/defis/type/division")) == (400, "INVALID_TYPE")
    assert _error_code(_request("GET", "/maths/defis/nope")) == (404, "CHALLENGE_NOT_FOUND")


def test_maths_for_student_level(services):
    status, payload = _request("GET", "/maths/defis/progression/1")
    assert status == 200
    assert {c["level"] for c in payload["data"]["challenges"]} == {1}


def test_maths_by_difficulty(services):
    _, stats = _request("GET", "/maths/stats")
    status, payload = _request("GET", "/maths/defis/difficulte/moyen")
    assert status == 200
    assert payload["data"]["difficulty"] == "moyen"
    assert payload["data"]["total"] == stats["data"]["per_difficulty"]["moyen"]
    assert payload["data"]["total"] > 0
    assert {c["difficulty"] for c in payload["data"]["challenges"]} == {"moyen"}
    assert _error_code(_request("GET", "/maths/defis/difficulte/extreme")) == (400, "INVALID_DIFFICULTY")


def test_curriculum_lists_active_content(services, curriculum):
    status, payload = _request("GET", "/curriculum/CP")
    assert status == 200
    modules = payload["data"]
    assert [module["title"] for module in modules] == ["Maths CP"]
    assert [e["id"] for e in modules[0]["exercises"]] == [
        curriculum["cp"]["cp-1"],
        curriculum["cp"]["cp-2"],
        curriculum["cp"]["cp-3"],
    ]
    assert _error_code(_request("GET", "/curriculum/CM3")) == (400, "INVALID_LEVEL")


def test_create_and_fetch_student(services):
    status, payload = _request(
        "POST", "/students", {"first_name": "Noé", "last_name": "Petit", "age": 7, "level": "CE1"}
    )
    assert status == 201
    student = payload["data"]
    assert student["level"] == "CE1"

    status, payload = _request("GET", f"/students/{student['id']}")
    assert status == 200
    assert payload["data"]["first_name"] == "Noé"

    assert _error_code(_request("GET", "/students/9999")) == (404, "STUDENT_NOT_FOUND")
    assert _error_code(
        _request("POST", "/students", {"first_name": "Noé", "last_name": "Petit", "age": 15, "level": "CE1"})
    ) == (400, "INVALID_REQUEST")


def test_attempt_updates_recommendations_and_progress(services, curriculum):
    student_id = curriculum["student_id"]
    cp = curriculum["cp"]

    status, payload = _request("GET", f"/students/{student_id}/recommendations", query="limit=2")
    assert status == 200
    assert [e["id"] for e in payload["data"]["exercises"]] == [cp["cp-1"], cp["cp-2"]]

    status, payload = _attempt(student_id, cp["cp-1"], hints_used=1)
    assert status == 200
    record = payload["data"]
    assert record["status"] == "COMPLETED"
    assert record["points"] == 15
    assert record["success_rate"] == 100.0

    status, payload = _request("GET", f"/students/{student_id}/recommendations")
    assert [e["id"] for e in payload["data"]["exercises"]] == [cp["cp-2"], cp["cp-3"]]

    status, payload = _request("GET", f"/students/{student_id}/progress")
    assert status == 200
    assert payload["data"]["pagination"] == {"page": 1, "limit": 50, "total": 1, "pages": 1}
    assert payload["data"]["items"][0]["exercise_title"] == "Question cp-1"

    status, payload = _request("GET", f"/students/{student_id}")
    assert payload["data"]["total_points"] == 15
    assert payload["data"]["streak_days"] == 1


def test_attempt_validation_errors(services, curriculum):
    student_id = curriculum["student_id"]
    path = f"/students/{student_id}/attempts"
    assert _error_code(_request("POST", path, [1, 2])) == (400, "INVALID_ATTEMPT_DATA")
    assert _error_code(_request("POST", path, {"exercise_id": "cp-1", "attempt": {}})) == (
        400,
        "INVALID_EXERCISE_ID",
    )
    assert _error_code(_attempt(student_id, curriculum["cp"]["cp-1"], elapsed_seconds=0)) == (400, "INVALID_TIME")
    assert _error_code(_attempt(student_id, curriculum["cp"]["cp-1"], success="yes")) == (
        400,
        "MISSING_SUCCESS_STATUS",
    )
    assert _error_code(_attempt(student_id, 9999)) == (404, "EXERCISE_NOT_FOUND")
    assert _error_code(_attempt(9999, curriculum["cp"]["cp-1"])) == (404, "STUDENT_NOT_FOUND")

    status, payload = _request("GET", f"/students/{student_id}/progress")
    assert payload["data"]["pagination"]["total"] == 0


def test_progress_and_session_parameters(services, curriculum):
    student_id = curriculum["student_id"]
    _attempt(student_id, curriculum["cp"]["cp-2"], success=False, elapsed_seconds=90)

    assert _error_code(_request("GET", f"/students/{student_id}/progress", query="status=DONE")) == (
        400,
        "INVALID_STATUS",
    )
    assert _error_code(_request("GET", f"/students/{student_id}/progress", query="limit=500")) == (
        400,
        "INVALID_PAGINATION",
    )
    status, payload = _request("GET", f"/students/{student_id}/progress", query="status=IN_PROGRESS")
    assert status == 200
    assert payload["data"]["pagination"]["total"] == 1

    status, payload = _request("GET", f"/students/{student_id}/progress", query="subject=MATHEMATIQUES")
    assert status == 200
    assert payload["data"]["pagination"]["total"] == 1
    _, payload = _request("GET", f"/students/{student_id}/progress", query="subject=FRANCAIS")
    assert payload["data"]["pagination"]["total"] == 0
    assert _error_code(_request("GET", f"/students/{student_id}/progress", query="subject=MUSIQUE")) == (
        400,
        "INVALID_SUBJECT",
    )

    assert _error_code(_request("GET", f"/students/{student_id}/sessions", query="days=0")) == (
        400,
        "INVALID_DAYS",
    )
    status, payload = _request("GET", f"/students/{student_id}/sessions", query="days=7")
    assert status == 200
    totals = payload["data"]["totals"]
    assert totals["exercises_attempted"] == 1
    assert totals["exercises_succeeded"] == 0
    assert totals["minutes"] == 2
    assert totals["success_rate"] == 0.0


def test_revisions_become_due(services, curriculum, clock):
    student_id = curriculum["student_id"]
    exercise_id = curriculum["cp"]["cp-3"]
    _attempt(student_id, exercise_id)

    status, payload = _request("GET", f"/students/{student_id}/revisions")
    assert status == 200
    assert payload["data"]["revisions"] == []
    assert payload["data"]["load"]["2024-03-05"] == 1

    status, payload = _request("GET", f"/students/{student_id}/revisions", query="due_only=false")
    assert [r["exercise_id"] for r in payload["data"]["revisions"]] == [exercise_id]

    clock.now += timedelta(days=2)
    status, payload = _request("GET", f"/students/{student_id}/revisions")
    assert [r["exercise_id"] for r in payload["data"]["revisions"]] == [exercise_id]


def test_update_preferences_merges(services, curriculum):
    student_id = curriculum["student_id"]
    path = f"/students/{student_id}/preferences"
    _request("PATCH", path, {"preferences": {"theme": "espace", "son": True}})
    status, payload = _request("PATCH", path, {"preferences": {"son": False}, "adaptations": {"police": "large"}})
    assert status == 200
    assert payload["data"]["preferences"] == {"theme": "espace", "son": False}
    assert payload["data"]["adaptations"] == {"police": "large"}
    assert _error_code(_request("PATCH", "/students/9999/preferences", {"preferences": {}})) == (
        404,
        "STUDENT_NOT_FOUND",
    )


def test_check_answer(services, curriculum):
    exercise_id = curriculum["cp"]["cp-1"]
    status, payload = _request("POST", f"/exercises/{exercise_id}/check", {"answer": 1})
    assert status == 200
    assert payload["data"] == {"exercise_id": exercise_id, "correct": True}
    _, payload = _request("POST", f"/exercises/{exercise_id}/check", {"answer": 2})
    assert payload["data"]["correct"] is False
    assert _error_code(_request("POST", "/exercises/9999/check", {"answer": 1})) == (404, "EXERCISE_NOT_FOUND")


def test_monitoring_reports_cache_and_requests(services, curriculum):
    student_id = curriculum["student_id"]
    _request("GET", f"/students/{student_id}/recommendations")
    _request("GET", f"/students/{student_id}/recommendations")

    status, payload = _request("GET", "/monitoring/cache")
    assert status == 200
    data = payload["data"]
    assert data["cache"]["connected"] is False
    assert data["cache"]["fallback_size"] >= 1
    assert data["metrics"]["cache"]["hits"] >= 1
    assert data["metrics"]["requests"]["count"] >= 2
