from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from courseflow.services import token_service
from tests.conftest import auth, mint_token, seed_course, seed_user


def _course(lessons: int = 2):
    instructor = seed_user(name="Grace Instructor", roles=("instructor",))
    course, seeded = seed_course(instructor_id=instructor.id, lessons=lessons)
    return instructor, course, seeded


def _enroll(client: TestClient, student, course_id) -> dict:
    resp = client.post(
        "/v1/enrollments", json={"course_id": str(course_id)}, headers=auth(student)
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_enroll_requires_auth(client: TestClient) -> None:
    resp = client.post("/v1/enrollments", json={"course_id": str(uuid.uuid4())})
    assert resp.status_code == 401


def test_enroll_rejects_non_uuid_subject(client: TestClient) -> None:
    token = token_service.create_access_token(sub="not-a-uuid")
    resp = client.post(
        "/v1/enrollments",
        json={"course_id": str(uuid.uuid4())},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 401


def test_enroll_and_read_back(client: TestClient) -> None:
    _, course, _ = _course()
    student = seed_user()

    body = _enroll(client, student, course.id)
    assert body["status"] == "active"
    assert body["progress"] == 0
    assert body["total_lessons"] == 2
    assert body["student_id"] == str(student.id)

    resp = client.get(f"/v1/enrollments/{body['id']}", headers=auth(student))
    assert resp.status_code == 200
    assert resp.json()["id"] == body["id"]


def test_duplicate_enroll_is_409(client: TestClient) -> None:
    _, course, _ = _course()
    student = seed_user()
    _enroll(client, student, course.id)

    resp = client.post(
        "/v1/enrollments", json={"course_id": str(course.id)}, headers=auth(student)
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "conflict"


def test_enroll_unknown_course_is_404(client: TestClient) -> None:
    student = seed_user()
    resp = client.post(
        "/v1/enrollments",
        json={"course_id": str(uuid.uuid4())},
        headers=auth(student),
    )
    assert resp.status_code == 404
    assert resp.json() == {"detail": "course not found", "code": "not_found"}


def test_enroll_as_instructor_is_403(client: TestClient) -> None:
    _, course, _ = _course()
    other = seed_user(roles=("instructor",))
    resp = client.post(
        "/v1/enrollments", json={"course_id": str(course.id)}, headers=auth(other)
    )
    assert resp.status_code == 403


def test_list_my_enrollments(client: TestClient) -> None:
    student = seed_user()
    for _ in range(3):
        _, course, _ = _course()
        _enroll(client, student, course.id)

    resp = client.get("/v1/enrollments/me?limit=2", headers=auth(student))
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 3
    assert body["page"] == 1
    assert len(body["items"]) == 2


def test_list_my_enrollments_rejects_bad_limit(client: TestClient) -> None:
    student = seed_user()
    resp = client.get("/v1/enrollments/me?limit=500", headers=auth(student))
    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid_input"


def test_other_student_cannot_read_enrollment(client: TestClient) -> None:
    _, course, _ = _course()
    owner = seed_user()
    enrollment = _enroll(client, owner, course.id)

    resp = client.get(f"/v1/enrollments/{enrollment['id']}", headers=auth(seed_user()))
    assert resp.status_code == 403


def test_lesson_completion_flow(client: TestClient) -> None:
    _, course, lessons = _course(lessons=2)
    student = seed_user()
    enrollment = _enroll(client, student, course.id)

    url = f"/v1/enrollments/{enrollment['id']}/lessons/{lessons[0].id}/complete"
    first = client.post(url, headers=auth(student))
    assert first.status_code == 200
    assert first.json()["progress"] == 50.0

    url = f"/v1/enrollments/{enrollment['id']}/lessons/{lessons[1].id}/complete"
    done = client.post(url, headers=auth(student)).json()
    assert done["progress"] == 100.0
    assert done["status"] == "completed"
    assert done["completed_at"] is not None


def test_complete_foreign_lesson_is_422(client: TestClient) -> None:
    _, course, _ = _course()
    _, _, other_lessons = _course()
    student = seed_user()
    enrollment = _enroll(client, student, course.id)

    resp = client.post(
        f"/v1/enrollments/{enrollment['id']}/lessons/{other_lessons[0].id}/complete",
        headers=auth(student),
    )
    assert resp.status_code == 422


def test_record_time_spent(client: TestClient) -> None:
    _, course, _ = _course()
    student = seed_user()
    enrollment = _enroll(client, student, course.id)

    url = f"/v1/enrollments/{enrollment['id']}/time"
    client.post(url, json={"minutes": 20}, headers=auth(student))
    resp = client.post(url, json={"minutes": 5}, headers=auth(student))
    assert resp.json()["total_time_spent"] == 25

    negative = client.post(url, json={"minutes": -1}, headers=auth(student))
    assert negative.status_code == 422


def test_instructor_adds_and_removes_student(client: TestClient) -> None:
    instructor, course, _ = _course()
    student = seed_user()

    resp = client.post(
        f"/v1/courses/{course.id}/students",
        json={"student_id": str(student.id)},
        headers=auth(instructor),
    )
    assert resp.status_code == 201
    enrollment_id = resp.json()["id"]

    removed = client.delete(f"/v1/enrollments/{enrollment_id}", headers=auth(instructor))
    assert removed.status_code == 204

    again = client.delete(f"/v1/enrollments/{enrollment_id}", headers=auth(instructor))
    assert again.status_code == 404


def test_student_cannot_unenroll(client: TestClient) -> None:
    _, course, _ = _course()
    student = seed_user()
    enrollment = _enroll(client, student, course.id)

    resp = client.delete(f"/v1/enrollments/{enrollment['id']}", headers=auth(student))
    assert resp.status_code == 403


def test_admin_can_unenroll(client: TestClient) -> None:
    _, course, _ = _course()
    student = seed_user()
    enrollment = _enroll(client, student, course.id)

    admin_headers = {"Authorization": f"Bearer {mint_token(roles=['admin'])}"}
    resp = client.delete(f"/v1/enrollments/{enrollment['id']}", headers=admin_headers)
    assert resp.status_code == 204
