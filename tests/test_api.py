# /tests/test_api.py

import json

import pytest
from fastapi.testclient import TestClient

from auth.security import create_access_token
from config import get_settings
from database import crud
from database.database import get_db
from embeddings.qdrant_manager import NullVectorIndex
from papersmith_api import app
from services.container import assemble_services, get_services
from services.errors import ModelServiceError
from services.storage import LocalFileStorage
from tests.conftest import FakeChatModel, HashEmbedder, make_grading, paper_from_prompt


@pytest.fixture
def model():
    return FakeChatModel()


@pytest.fixture
def client(db, model, tmp_path):
    services = assemble_services(
        get_settings(),
        embedder=HashEmbedder(),
        vector_index=NullVectorIndex(),
        model=model,
        storage=LocalFileStorage(str(tmp_path / "uploads")),
    )
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_services] = lambda: services
    app.state.services = services
    # No context manager: the lifespan would build real clients
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def _generate_body(course, **overrides):
    body = {"course_id": course.id, "exam_type": "Quiz", "total_marks": 10, "duration_minutes": 30}
    body.update(overrides)
    return body


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_qdrant_health_reports_disabled_index(client):
    assert client.get("/health/qdrant").json() == {"status": "disabled", "service": "qdrant"}


def test_requests_without_token_are_rejected(client, course):
    response = client.get(f"/courses/{course.id}/materials")
    assert response.status_code == 401


def test_invalid_token_is_rejected(client):
    response = client.get("/quota", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_student_cannot_upload_material(client, student, course):
    response = client.post(
        f"/courses/{course.id}/materials",
        headers=_auth(student),
        data={"title": "Syllabus", "type": "SYLLABUS"},
        files={"file": ("syllabus.txt", b"Unit 1: arrays", "text/plain")},
    )
    assert response.status_code == 403


def test_admin_uploads_and_lists_material(client, admin, course):
    """
    GIVEN an admin and a course
    WHEN a TXT syllabus is uploaded with weightings
    THEN the material is stored with its extracted text and shows up in the course listing
    """
    response = client.post(
        f"/courses/{course.id}/materials",
        headers=_auth(admin),
        data={"title": "CS101 Syllabus", "type": "SYLLABUS", "weightings": json.dumps({"searching": 30})},
        files={"file": ("syllabus.txt", b"Unit 3: binary search on sorted arrays.", "text/plain")},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["weightings"] == {"searching": 30}
    assert body["content_length"] == len("Unit 3: binary search on sorted arrays.")
    assert body["index_status"] == "disabled"

    listing = client.get(f"/courses/{course.id}/materials", headers=_auth(admin)).json()
    assert [m["id"] for m in listing] == [body["id"]]


def test_upload_rejects_bad_weightings(client, admin, course):
    response = client.post(
        f"/courses/{course.id}/materials",
        headers=_auth(admin),
        data={"title": "Syllabus", "type": "SYLLABUS", "weightings": "[1, 2]"},
        files={"file": ("syllabus.txt", b"Unit 1", "text/plain")},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "precondition_failed"


def test_upload_rejects_unsupported_file(client, admin, course):
    response = client.post(
        f"/courses/{course.id}/materials",
        headers=_auth(admin),
        data={"title": "Slides", "type": "REFERENCE"},
        files={"file": ("slides.pptx", b"binary", "application/octet-stream")},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "unsupported_file_type"


def test_quota_endpoint(client, student):
    body = client.get("/quota", headers=_auth(student)).json()
    assert body["plan"] == "Medium"
    assert body["limit"] == 3
    assert body["remaining"] == 3


def test_generate_returns_variants_with_answers(client, model, student, course):
    model.responses.append(paper_from_prompt())

    response = client.post("/papers/generate", headers=_auth(student), json=_generate_body(course, variant_count=3))

    assert response.status_code == 200
    body = response.json()
    assert body["requested_variant_count"] == 3
    assert body["variant_count"] == 2
    assert body["paper_request"]["status"] == "GENERATED"
    assert all(v["marking_scheme"] for v in body["variants"])


def test_marking_scheme_hidden_without_answers_plan(client, model, db, student, plan, course):
    plan.include_answers = False
    db.commit()
    model.responses.append(paper_from_prompt())

    body = client.post("/papers/generate", headers=_auth(student), json=_generate_body(course)).json()
    assert body["variants"][0]["marking_scheme"] is None

    request_id = body["paper_request"]["id"]
    detail = client.get(f"/papers/{request_id}", headers=_auth(student)).json()
    assert detail["variants"][0]["marking_scheme"] is None


def test_generate_over_quota_returns_403(client, model, db, student, course):
    """
    GIVEN a student who has used their monthly quota
    WHEN they call /papers/generate
    THEN the API answers 403 with code quota_exhausted and the model is never called
    """
    for _ in range(3):
        crud.create_paper_request(
            db, user_id=student.id, course_id=course.id, exam_type="Quiz", total_marks=10,
            duration_minutes=30, topics_include=[], topics_exclude=[], seed=1, variant_count=1,
        )

    response = client.post("/papers/generate", headers=_auth(student), json=_generate_body(course))

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "quota_exhausted"
    assert body["error"]
    assert model.calls == []


def test_model_outage_returns_generic_503(client, model, student, course):
    model.responses.append(ModelServiceError("connection refused to api.internal:443"))

    response = client.post("/papers/generate", headers=_auth(student), json=_generate_body(course))

    assert response.status_code == 503
    body = response.json()
    assert body["code"] == "upstream_unavailable"
    assert "api.internal" not in body["error"]


def test_invalid_generation_body_is_422(client, student, course):
    response = client.post("/papers/generate", headers=_auth(student), json={"course_id": course.id})
    assert response.status_code == 422


def test_out_of_range_seed_is_422(client, model, db, student, course):
    response = client.post("/papers/generate", headers=_auth(student), json=_generate_body(course, seed=2 ** 64))

    assert response.status_code == 422
    assert model.calls == []
    assert crud.get_user_paper_requests(db, student.id) == []


def test_papers_are_private(client, model, student, other_student, course):
    model.responses.append(paper_from_prompt())
    request_id = client.post(
        "/papers/generate", headers=_auth(student), json=_generate_body(course)
    ).json()["paper_request"]["id"]

    response = client.get(f"/papers/{request_id}", headers=_auth(other_student))
    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"

    listing = client.get("/papers", headers=_auth(student)).json()
    assert [p["id"] for p in listing] == [request_id]


def test_grade_then_fetch_submission(client, model, student, course):
    model.responses.append(paper_from_prompt())
    body = client.post("/papers/generate", headers=_auth(student), json=_generate_body(course)).json()
    variant_id = body["variants"][0]["id"]

    model.responses.append(json.dumps(make_grading({"Q1": 4, "Q2": 2, "Q3": 1}, {"Q1": 4, "Q2": 4, "Q3": 2})))
    response = client.post(
        "/papers/grade",
        headers=_auth(student),
        data={"paper_variant_id": str(variant_id)},
        files={"file": ("answers.txt", b"Q1. halves\nQ2. LIFO\nQ3. n log n", "text/plain")},
    )

    assert response.status_code == 200
    submission = response.json()
    assert submission["status"] == "GRADED"
    assert submission["grading_result"]["total_score"] == 7.0

    fetched = client.get(f"/submissions/{submission['id']}", headers=_auth(student)).json()
    assert fetched["grading_result"]["percentage"] == 70.0
