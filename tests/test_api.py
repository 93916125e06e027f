"""
HTTP tests: state gating, session gating, student flow and teacher endpoints
"""
import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from exam_tether.main import create_app
from exam_tether.models import QuizSubmission, StudentSession
from exam_tether.services.download_service import run_download, DownloadError
from exam_tether.services.upload_service import run_upload
from exam_tether.utils.rate_limiter import RateLimiter

from conftest import count_rows

NIP = "198501012010"


def wait_for_state(client, *states, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        body = client.get("/api/server/state").json()
        if body["state"] in states:
            return body
        time.sleep(0.02)
    pytest.fail(f"server never reached {states}")


def login(client, nis="1234"):
    response = client.post("/api/login", json={"nis": nis})
    assert response.status_code == 200
    return {"X-Session-Token": response.json()["token"]}


@pytest.fixture
def client(seeded):
    with TestClient(create_app()) as client:
        yield client


@pytest.fixture
def setup_client(db_engine):
    with TestClient(create_app()) as client:
        yield client


class TestStateGate:

    def test_fresh_server_is_in_setup(self, setup_client):
        body = setup_client.get("/api/server/state").json()

        assert body["state"] == "setup"
        assert body["teacher_name"] is None

    @pytest.mark.parametrize("method, path", [
        ("post", "/api/login"),
        ("get", "/api/quizzes"),
        ("get", "/api/quizzes/Q1"),
        ("post", "/api/quizzes/Q1/submit"),
        ("get", "/api/assignments"),
        ("post", "/api/assignments/A1/submit"),
    ])
    def test_student_routes_answer_503_until_ready(self, setup_client, method, path):
        response = getattr(setup_client, method)(path)

        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "server_not_ready"
        assert body["state"] == "setup"

    def test_previous_download_resumes_ready(self, client):
        body = client.get("/api/server/state").json()

        assert body["state"] == "ready"
        assert body["teacher_name"] == "Ibu Rina"

    def test_health(self, setup_client):
        body = setup_client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["state"] == "setup"


class TestSessionGate:

    def test_missing_token(self, client):
        response = client.get("/api/quizzes")

        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/api/quizzes", headers={"X-Session-Token": "forged"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid session. Please log in again."

    def test_relogin_invalidates_old_token(self, client):
        old = login(client)
        new = login(client)

        assert client.get("/api/quizzes", headers=old).status_code == 401
        assert client.get("/api/quizzes", headers=new).status_code == 200


class TestLogin:

    def test_login(self, client):
        response = client.post("/api/login", json={"nis": " 1234 "})

        assert response.status_code == 200
        body = response.json()
        assert body["student"] == {"id": "S1", "nis": "1234", "nama": "Budi Santoso", "kelas": "X IPA 1"}

    def test_unknown_nis(self, client):
        response = client.post("/api/login", json={"nis": "0000"})

        assert response.status_code == 404
        assert "NIS not found" in response.json()["message"]
        assert count_rows(StudentSession) == 0

    def test_blank_nis(self, client):
        assert client.post("/api/login", json={"nis": "  "}).status_code == 400

    def test_malformed_body(self, client):
        response = client.post("/api/login", content=b"{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"


class TestQuizFlow:

    def test_list_then_take_then_submit(self, client):
        headers = login(client)

        listing = client.get("/api/quizzes", headers=headers).json()
        assert {q["id"] for q in listing} == {"Q1", "Q2"}
        assert all(q["submitted"] is False for q in listing)

        detail = client.get("/api/quizzes/Q1", headers=headers).json()
        assert detail["quiz"]["title"] == "Algebra"
        assert [q["id"] for q in detail["questions"]] == ["Q1-1", "Q1-2", "Q1-3"]
        assert all("correct_answer" not in q for q in detail["questions"])

        response = client.post(
            "/api/quizzes/Q1/submit",
            json={"answers": {"Q1-1": "b", "Q1-2": "A", "Q1-3": "Factor the terms"}},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json() == {
            "message": "Answers saved!",
            "total_score": 30,
            "max_score": 40,
            "percentage": 75,
        }

        listing = {q["id"]: q for q in client.get("/api/quizzes", headers=headers).json()}
        assert listing["Q1"]["submitted"] is True
        assert listing["Q1"]["score"] == {"total_score": 30, "max_score": 40}

    def test_double_submit_rejected(self, client):
        headers = login(client)
        client.post("/api/quizzes/Q1/submit", json={"answers": {"Q1-1": "B"}}, headers=headers)

        again = client.post("/api/quizzes/Q1/submit", json={"answers": {"Q1-1": "C"}}, headers=headers)

        assert again.status_code == 400
        assert again.json()["message"] == "You have already submitted this quiz."
        assert count_rows(QuizSubmission) == 1

    def test_submitted_quiz_cannot_be_reopened(self, client):
        headers = login(client)
        client.post("/api/quizzes/Q1/submit", json={"answers": {}}, headers=headers)

        response = client.get("/api/quizzes/Q1", headers=headers)

        assert response.status_code == 400

    def test_unknown_quiz(self, client):
        headers = login(client)

        assert client.get("/api/quizzes/nope", headers=headers).status_code == 404
        assert client.post("/api/quizzes/nope/submit", json={"answers": {}}, headers=headers).status_code == 404

    @pytest.mark.parametrize("body", [{}, {"answers": None}, {"answers": ["B"]}, {"answers": "B"}])
    def test_invalid_answers(self, client, body):
        headers = login(client)

        response = client.post("/api/quizzes/Q1/submit", json=body, headers=headers)

        assert response.status_code == 400
        assert count_rows(QuizSubmission) == 0


class TestAssignments:

    def test_submit_assignment(self, client):
        headers = login(client)

        response = client.post("/api/assignments/A1/submit", json={"answer_text": "Mitosis"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Assignment submitted!"

        listing = client.get("/api/assignments", headers=headers).json()
        assert listing[0]["submitted"] is True

        again = client.post("/api/assignments/A1/submit", json={"answer_text": "Again"}, headers=headers)
        assert again.status_code == 400

    def test_empty_answer(self, client):
        headers = login(client)

        response = client.post("/api/assignments/A1/submit", json={"answer_text": "   "}, headers=headers)

        assert response.status_code == 400

    def test_unknown_assignment(self, client):
        headers = login(client)

        response = client.post("/api/assignments/A9/submit", json={"answer_text": "text"}, headers=headers)

        assert response.status_code == 404


class TestTeacherSetup:

    def test_download_then_students_can_log_in(self, db_engine, classroom_remote):
        async def downloader(nip, progress):
            return await run_download(nip, progress, transport=classroom_remote.transport)

        with TestClient(create_app(downloader=downloader)) as client:
            response = client.post("/api/teacher/setup", json={"nip": NIP})
            assert response.status_code == 202

            body = wait_for_state(client, "ready", "setup")
            assert body["state"] == "ready"
            assert body["teacher_name"] == "Ibu Rina"
            assert body["error"] is None

            assert client.post("/api/login", json={"nis": "9012"}).status_code == 200
            image = client.get("/images/QQ1.png")
            assert image.status_code == 200
            assert image.content == b"\x89PNG-qq1"

            status = client.get("/api/teacher/status").json()
            assert status["students"] == 3
            assert status["quizzes"] == 2
            assert status["assignments"] == 2

    def test_failed_download_reports_error(self, db_engine, classroom_remote):
        async def downloader(nip, progress):
            return await run_download(nip, progress, transport=classroom_remote.transport)

        with TestClient(create_app(downloader=downloader)) as client:
            client.post("/api/teacher/setup", json={"nip": "000"})

            body = wait_for_state(client, "setup")
            assert 'NIP "000" is not registered' in (body["error"] or "")
            assert client.post("/api/login", json={"nis": "1234"}).status_code == 503

    def test_blank_nip(self, setup_client):
        response = setup_client.post("/api/teacher/setup", json={"nip": " "})

        assert response.status_code == 400

    def test_second_setup_while_downloading(self, db_engine):
        gate = {"open": False}

        async def downloader(nip, progress):
            while not gate["open"]:
                await asyncio.sleep(0.01)
            raise DownloadError("cancelled by test")

        with TestClient(create_app(downloader=downloader)) as client:
            assert client.post("/api/teacher/setup", json={"nip": NIP}).status_code == 202
            assert client.get("/api/server/state").json()["state"] == "downloading"

            response = client.post("/api/teacher/setup", json={"nip": NIP})
            assert response.status_code == 409

            gate["open"] = True
            wait_for_state(client, "setup")


class TestTeacherUpload:

    def _app(self, remote):
        async def uploader():
            return await run_upload(transport=remote.transport)

        return create_app(uploader=uploader)

    def test_upload_after_exam(self, seeded, remote):
        with TestClient(self._app(remote)) as client:
            headers = login(client)
            client.post("/api/quizzes/Q1/submit", json={"answers": {"Q1-1": "B"}}, headers=headers)
            client.post("/api/assignments/A1/submit", json={"answer_text": "Mitosis"}, headers=headers)
            assert client.get("/api/teacher/status").json()["pending_upload"] == 2

            body = client.post("/api/teacher/upload").json()

            assert body["total_uploaded"] == 2
            assert body["total_pending"] == 2
            assert client.get("/api/teacher/status").json()["pending_upload"] == 0

            results = client.get("/api/teacher/results").json()
            assert results["quiz_results"][0]["nama"] == "Budi Santoso"
            assert results["quiz_results"][0]["uploaded"] is True
            assert results["assignment_results"][0]["assignment_title"] == "Essay on cells"

    def test_upload_offline(self, seeded, remote):
        remote.offline = True

        with TestClient(self._app(remote)) as client:
            response = client.post("/api/teacher/upload")

        assert response.status_code == 503
        assert "No internet connection" in response.json()["message"]

    def test_upload_access_denied(self, seeded, remote):
        remote.denied_tables.add("teachers")

        with TestClient(self._app(remote)) as client:
            response = client.post("/api/teacher/upload")

        assert response.status_code == 502
        assert "Access denied" in response.json()["message"]


def test_rate_limit(client):
    client.app.state.rate_limiter = RateLimiter(requests_per_minute=2, requests_per_hour=100)

    statuses = [client.post("/api/login", json={"nis": "0000"}).status_code for _ in range(3)]

    assert statuses == [404, 404, 429]
    # polling the state is never limited
    assert client.get("/api/server/state").status_code == 200


def test_unexpected_error_is_a_500(seeded, monkeypatch):
    from exam_tether.services import dashboard_service as module

    def explode(db):
        raise RuntimeError("boom")

    monkeypatch.setattr(module.dashboard_service, "get_status", explode)

    with TestClient(create_app(), raise_server_exceptions=False) as client:
        response = client.get("/api/teacher/status")

    assert response.status_code == 500
    assert response.json()["error"] == "internal_server_error"
