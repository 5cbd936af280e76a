import pytest
from fastapi.testclient import TestClient

from app import config, main
from app.db import get_session
from app.deps import get_mailer, get_storage
from app.main import app
from app.models import Role

from conftest import build_zip, case_files, make_user, problem_params, task


@pytest.fixture
def client(session, storage, mailer):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_mailer] = lambda: mailer
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def login(client, username, password="password"):
    rv = client.post("/auth/login", json={"username": username, "password": password})
    assert rv.status_code == 200, rv.json()
    # authenticate explicitly per request
    client.cookies.clear()
    return {"Authorization": f"Bearer {rv.json()['data']['token']}"}


def test_register_verify_login(client, session, mailer):
    rv = client.post(
        "/auth/register",
        json={"email": "dave@example.com", "username": "dave", "password": "pw"},
    )
    assert rv.status_code == 200
    assert mailer.welcome == ["dave@example.com"]

    # a second registration with the same email looks identical
    rv = client.post(
        "/auth/register",
        json={"email": "dave@example.com", "username": "dave2", "password": "pw"},
    )
    assert rv.status_code == 200

    rv = client.post("/auth/login", json={"username": "dave", "password": "pw"})
    assert rv.json()["data"]["is_verified"] is False
    assert "access_token" in rv.cookies

    rv = client.post("/auth/login", json={"username": "dave", "password": "bad"})
    assert rv.status_code == 401
    assert rv.json()["msg"] == "login failed"


def test_bad_registration_lists_fields(client):
    rv = client.post(
        "/auth/register", json={"email": "nope", "username": "d", "password": ""}
    )
    assert rv.status_code == 422
    assert set(rv.json()["data"]) == {"email", "username", "password"}


def test_me_requires_login(client, session):
    assert client.get("/auth/me").status_code == 401

    make_user(session, "erin")
    rv = client.get("/auth/me", headers=login(client, "erin"))
    assert rv.json()["data"]["username"] == "erin"


def test_problem_flow(client, session):
    make_user(session, "teach", role=Role.TEACHER)
    make_user(session, "stud")
    teacher_auth = login(client, "teach")
    student_auth = login(client, "stud")

    rv = client.post("/problems/", json=problem_params(tasks=[task(1)]), headers=student_auth)
    assert rv.status_code == 403

    rv = client.post("/problems/", json=problem_params(tasks=[task(1)]), headers=teacher_auth)
    assert rv.status_code == 201
    problem_id = rv.json()["data"]["id"]

    rv = client.put(
        f"/problems/{problem_id}/test-case",
        files={"case": ("case.zip", build_zip(case_files(2)), "application/zip")},
        headers=teacher_auth,
    )
    assert rv.status_code == 400
    assert rv.json()["data"]["reason"].startswith("duplicated or extra file found")

    archive = build_zip(case_files(1))
    rv = client.put(
        f"/problems/{problem_id}/test-case",
        files={"case": ("case.zip", archive, "application/zip")},
        headers=teacher_auth,
    )
    assert rv.status_code == 200

    rv = client.get(f"/problems/{problem_id}/test-case", headers=teacher_auth)
    assert rv.content == archive
    assert client.get(f"/problems/{problem_id}/test-case", headers=student_auth).status_code == 403

    detail = client.get(f"/problems/{problem_id}").json()["data"]
    assert detail["owner"] == "teach"
    assert detail["has_test_case"] is True
    assert len(detail["tasks"]) == 1

    rv = client.post(
        "/submissions/",
        json={"problem_id": problem_id, "language": 2, "code": "print(input())"},
        headers=student_auth,
    )
    assert rv.status_code == 201
    submission_id = rv.json()["data"]["id"]
    assert rv.json()["data"]["status"] == -1

    result = {"status": 0, "score": 100, "exec_time": 12, "memory_usage": 1024}
    assert client.put(f"/submissions/{submission_id}", json=result).status_code == 401
    rv = client.put(
        f"/submissions/{submission_id}",
        json=result,
        headers={"X-Sandbox-Token": config.SANDBOX_TOKEN},
    )
    assert rv.status_code == 200

    rv = client.get("/submissions/", params={"problem": problem_id})
    [item] = rv.json()["data"]
    assert item["status"] == 0
    assert item["score"] == 100
    assert item["user"]["username"] == "stud"


def test_hidden_problem_looks_missing(client, session):
    make_user(session, "teach", role=Role.TEACHER)
    make_user(session, "stud")
    teacher_auth = login(client, "teach")

    rv = client.post(
        "/problems/", json=problem_params(name="secret", status=1), headers=teacher_auth
    )
    problem_id = rv.json()["data"]["id"]

    assert client.get(f"/problems/{problem_id}").status_code == 404
    assert client.get(f"/problems/{problem_id}", headers=login(client, "stud")).status_code == 404
    assert client.get(f"/problems/{problem_id}", headers=teacher_auth).status_code == 200
    assert client.get("/problems/").json()["data"] == []


def test_edit_user_needs_admin(client, session):
    make_user(session, "boss", role=Role.ADMIN)
    make_user(session, "stud")

    rv = client.patch("/user/stud", json={"role": 1}, headers=login(client, "stud"))
    assert rv.status_code == 403
    rv = client.patch("/user/ghost", json={"role": 1}, headers=login(client, "stud"))
    assert rv.status_code == 403

    rv = client.patch("/user/stud", json={"role": 1}, headers=login(client, "boss"))
    assert rv.json()["data"]["role"] == 1


def test_hidden_problem_submissions_stay_hidden(client, session):
    make_user(session, "teach", role=Role.TEACHER)
    make_user(session, "stud")
    teacher_auth = login(client, "teach")
    student_auth = login(client, "stud")

    rv = client.post(
        "/problems/", json=problem_params(name="secret", status=1), headers=teacher_auth
    )
    problem_id = rv.json()["data"]["id"]
    rv = client.post(
        "/submissions/",
        json={"problem_id": problem_id, "language": 2, "code": "SECRET SOLUTION"},
        headers=teacher_auth,
    )
    submission_id = rv.json()["data"]["id"]

    for headers in ({}, student_auth):
        rv = client.get("/submissions/", params={"problem": problem_id}, headers=headers)
        assert rv.status_code == 200
        assert rv.json()["data"] == []
        assert client.get(f"/submissions/{submission_id}", headers=headers).status_code == 404

    rv = client.get("/submissions/", params={"problem": problem_id}, headers=teacher_auth)
    assert [s["code"] for s in rv.json()["data"]] == ["SECRET SOLUTION"]
    assert client.get(f"/submissions/{submission_id}", headers=teacher_auth).status_code == 200


@pytest.mark.parametrize("item, taken, free", [
    ("username", "erin", "frank"),
    ("email", "erin@example.com", "frank@example.com"),
])
def test_check_availability(client, session, item, taken, free):
    make_user(session, "erin")

    taken_rv = client.post(f"/auth/check/{item}", json={item: taken})
    free_rv = client.post(f"/auth/check/{item}", json={item: free})

    assert taken_rv.status_code == free_rv.status_code == 200
    assert taken_rv.json() == {"data": {"valid": 0}, "message": ""}
    assert free_rv.json() == {"data": {"valid": 1}, "message": ""}


def test_check_availability_bad_requests(client):
    assert client.post("/auth/check/username", json={}).status_code == 422
    assert client.post("/auth/check/api_key", json={"username": "x"}).status_code == 422


def test_scheduler_routes(client, session):
    make_user(session, "teach", role=Role.TEACHER)
    teacher_auth = login(client, "teach")
    problem_id = client.post(
        "/problems/", json=problem_params(), headers=teacher_auth
    ).json()["data"]["id"]
    created = client.post(
        "/submissions/",
        json={"problem_id": problem_id, "language": 0, "timestamp": 1700000000},
        headers=teacher_auth,
    ).json()["data"]
    assert created["timestamp"] == 1700000000

    sandbox = {"X-Sandbox-Token": config.SANDBOX_TOKEN}
    assert client.get("/submissions/pending").status_code == 401
    rv = client.get("/submissions/pending", params={"limit": 5}, headers=sandbox)
    assert [s["id"] for s in rv.json()["data"]] == [created["id"]]

    assert client.put(f"/submissions/{created['id']}/sent").status_code == 401
    rv = client.put(f"/submissions/{created['id']}/sent", headers=sandbox)
    assert rv.status_code == 200
    assert rv.json()["data"]["last_send"] >= created["last_send"]


def test_run_serves_app_with_configured_address(monkeypatch):
    calls = []
    monkeypatch.setattr(main.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))

    main.run()

    assert calls == [(app, {
        "host": config.HOST,
        "port": config.PORT,
        "log_level": config.LOG_LEVEL.lower(),
    })]
