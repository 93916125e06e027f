"""
Shared fixtures: temporary local store, seeded classroom data and a fake
remote backend served through httpx.MockTransport
"""
import os

os.environ.setdefault("REMOTE_URL", "https://remote.test")
os.environ.setdefault("REMOTE_API_KEY", "test-anon-key")
os.environ.setdefault("AUTO_UPLOAD_INTERVAL_SECONDS", "0")

import json
import re
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from exam_tether.config import settings
from exam_tether.database import SessionLocal, create_store_engine, init_db, dispose_db
from exam_tether.models import Student, Quiz, Question, Assignment
from exam_tether.models.meta import (
    set_meta,
    META_TEACHER_NAME,
    META_DOWNLOAD_TIME,
    META_DOWNLOAD_STATUS,
    DOWNLOAD_STATUS_COMPLETE,
)


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture
def db_engine(data_dir):
    engine = init_db(create_store_engine(settings.database_path))
    yield engine
    dispose_db()


@pytest.fixture
def db(db_engine):
    session = SessionLocal()
    yield session
    session.close()


def count_rows(model, *criteria) -> int:
    """Row count through a fresh session (never a stale snapshot)"""
    with SessionLocal() as session:
        query = session.query(model)
        if criteria:
            query = query.filter(*criteria)
        return query.count()


@pytest.fixture
def seeded(db):
    """
    Two students, a fixed-order quiz Q1 (MC 10 + MC 20 + essay 10 points),
    a randomized quiz Q2 with six questions, one assignment, completed download
    """
    db.add_all([
        Student(id="S1", nis="1234", nama="Budi Santoso", kelas="X IPA 1"),
        Student(id="S2", nis="5678", nama="Siti Aminah", kelas="X IPA 1"),
        Quiz(id="Q1", title="Algebra", description="Chapter 1", subject="Math",
             class_name="X IPA 1", duration_minutes=30, is_randomized=False),
        Quiz(id="Q2", title="Biology", description="Cells", subject="Biology",
             class_name="X IPA 1", duration_minutes=45, is_randomized=True),
        Assignment(id="A1", title="Essay on cells", description="500 words", type="TUGAS",
                   due_date="2026-11-01", subject="Biology", class_name="X IPA 1"),
    ])
    db.flush()
    db.add_all([
        Question(id="Q1-1", quiz_id="Q1", question_text="2 + 2 = ?", question_type="MULTIPLE_CHOICE",
                 options=["A. 3", "B. 4", "C. 5"], correct_answer="B", points=10, order_index=1),
        Question(id="Q1-2", quiz_id="Q1", question_text="x - 1 = 0, x = ?", question_type="MULTIPLE_CHOICE",
                 options=["a. 1", "b. 0"], correct_answer="a", points=20, order_index=2),
        Question(id="Q1-3", quiz_id="Q1", question_text="Explain factoring", question_type="ESSAY",
                 points=10, order_index=3),
    ])
    db.add_all([
        Question(id=f"Q2-{i}", quiz_id="Q2", question_text=f"Cell question {i}",
                 question_type="MULTIPLE_CHOICE", options=["A", "B", "C", "D"],
                 correct_answer="C", points=5, order_index=i)
        for i in range(1, 7)
    ])
    set_meta(db, META_TEACHER_NAME, "Ibu Rina")
    set_meta(db, META_DOWNLOAD_TIME, "2026-10-17T07:00:00+00:00")
    set_meta(db, META_DOWNLOAD_STATUS, DOWNLOAD_STATUS_COMPLETE)
    db.commit()
    return db


class FakeRemote:
    """
    In-memory stand-in for the remote data API and its storage host

    - tables: rows returned by GET /rest/v1/<table>, filtered on eq./in.
    - failing_tables: GETs answer 500
    - denied_tables: GETs answer 401 with PGRST301
    - fk_violations: predicates on upsert payloads that answer 23503
    - images: {url: (status, bytes)} for any host
    - offline: every request raises ConnectError
    """

    def __init__(self):
        self.tables = {}
        self.failing_tables = set()
        self.denied_tables = set()
        self.fk_violations = []
        self.failing_upserts = []
        self.images = {}
        self.offline = False
        self.requests = []
        self.upserts = []
        self.remote_rows = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("network is unreachable", request=request)

        match = re.match(r"^/rest/v1/(\w+)$", request.url.path)
        if match and request.url.host == "remote.test":
            table = match.group(1)
            if request.method == "GET":
                return self._select(table, request)
            if request.method == "POST":
                return self._upsert(table, request)

        url = str(request.url)
        if url in self.images:
            status, content = self.images[url]
            return httpx.Response(status, content=content)
        return httpx.Response(404, json={"message": "not found"})

    def _select(self, table, request):
        if table in self.denied_tables:
            return httpx.Response(401, json={"code": "PGRST301", "message": "JWT expired"})
        if table in self.failing_tables:
            return httpx.Response(500, json={"code": "XX000", "message": f"{table} is broken"})

        params = parse_qs(urlsplit(str(request.url)).query)
        rows = list(self.tables.get(table, []))
        for column, values in params.items():
            if column in ("select", "limit", "on_conflict"):
                continue
            rows = [row for row in rows if _matches(row.get(column), values[0])]
        if "limit" in params:
            rows = rows[: int(params["limit"][0])]
        return httpx.Response(200, json=rows)

    def _upsert(self, table, request):
        payload = json.loads(request.content)
        for predicate in self.fk_violations:
            if predicate(table, payload):
                return httpx.Response(409, json={
                    "code": "23503",
                    "message": f'insert or update on table "{table}" violates foreign key constraint',
                })
        for predicate in self.failing_upserts:
            if predicate(table, payload):
                return httpx.Response(500, json={"code": "XX000", "message": "upsert exploded"})

        conflict = parse_qs(urlsplit(str(request.url)).query)["on_conflict"][0].split(",")
        key = (table,) + tuple(payload[c] for c in conflict)
        self.upserts.append((table, payload))
        self.remote_rows[key] = payload
        return httpx.Response(201)

    def writes(self):
        return [r for r in self.requests if r.method == "POST"]


def _matches(value, expression: str) -> bool:
    if expression.startswith("eq."):
        expected = expression[3:]
        if isinstance(value, bool):
            return ("true" if value else "false") == expected
        return str(value) == expected
    if expression.startswith("in.("):
        members = [m.strip('"') for m in expression[4:-1].split(",")]
        return str(value) in members
    return True


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def classroom_remote(remote):
    """Remote backend holding one teacher with two classes of data"""
    remote.tables = {
        "teachers": [
            {"id": "T1", "nip": "198501012010", "user": {"full_name": "Ibu Rina"}},
        ],
        "teaching_assignments": [
            {"id": "TA1", "teacher_id": "T1", "class_id": "C1",
             "subject": {"name": "Math"}, "class": {"id": "C1", "name": "X IPA 1"}},
            {"id": "TA2", "teacher_id": "T1", "class_id": "C2",
             "subject": {"name": "Biology"}, "class": {"id": "C2", "name": "X IPA 2"}},
        ],
        "students": [
            {"id": "S1", "nis": "1234", "class_id": "C1",
             "user": {"full_name": "Budi Santoso"}, "class": {"name": "X IPA 1"}},
            {"id": "S2", "nis": "5678", "class_id": "C2",
             "user": {"full_name": "Siti Aminah"}, "class": {"name": "X IPA 2"}},
            {"id": "S3", "nis": "9012", "class_id": "C2", "user": None, "class": None},
            {"id": "S9", "nis": "0000", "class_id": "C9",
             "user": {"full_name": "Other class"}, "class": {"name": "XII"}},
        ],
        "quizzes": [
            {"id": "Q1", "title": "Algebra", "description": None, "duration_minutes": 40,
             "is_randomized": False, "teaching_assignment_id": "TA1", "is_active": True},
            {"id": "Q2", "title": "Cells", "description": "Unit 2", "duration_minutes": None,
             "is_randomized": True, "teaching_assignment_id": "TA2", "is_active": True},
            {"id": "Q3", "title": "Draft", "description": "", "duration_minutes": 10,
             "is_randomized": False, "teaching_assignment_id": "TA1", "is_active": False},
        ],
        "quiz_questions": [
            {"id": "QQ1", "quiz_id": "Q1", "question_text": "2 + 2 = ?", "question_type": "MULTIPLE_CHOICE",
             "options": ["A. 3", "B. 4"], "correct_answer": "B", "points": 10, "order_index": 1,
             "image_url": "/storage/v1/object/public/images/qq1.png", "passage_text": None},
            {"id": "QQ2", "quiz_id": "Q1", "question_text": "Explain", "question_type": "ESSAY",
             "options": None, "correct_answer": None, "points": None, "order_index": 2,
             "image_url": "https://cdn.example.com/pics/diagram", "passage_text": "Read this first"},
            {"id": "QQ3", "quiz_id": "Q2", "question_text": "Cell wall?", "question_type": None,
             "options": ["A", "B"], "correct_answer": "A", "points": 5, "order_index": 1,
             "image_url": "https://unreachable.example.org/x.jpg", "passage_text": None},
            {"id": "QQ4", "quiz_id": "Q3", "question_text": "Draft question", "question_type": "ESSAY",
             "options": None, "correct_answer": None, "points": 10, "order_index": 1,
             "image_url": None, "passage_text": None},
        ],
        "assignments": [
            {"id": "A1", "title": "Worksheet", "description": None, "type": None,
             "due_date": "2026-11-01", "teaching_assignment_id": "TA1"},
            {"id": "A2", "title": "Lab report", "description": "Microscope", "type": "PROYEK",
             "due_date": None, "teaching_assignment_id": "TA2"},
        ],
    }
    remote.images = {
        "https://remote.test/storage/v1/object/public/images/qq1.png": (200, b"\x89PNG-qq1"),
        "https://cdn.example.com/pics/diagram": (200, b"diagram-bytes"),
    }
    return remote
