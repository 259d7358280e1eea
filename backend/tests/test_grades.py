import pytest

from gradeflow.utils.grade_math import errors_from_percentage


@pytest.fixture
def setup(client, auth_headers):
    """A subject with one 20-point lesson and one student."""
    subject_id = client.post("/api/subjects", json={"name": "Reading"}, headers=auth_headers).json()["id"]
    lesson = client.post(
        f"/api/subjects/{subject_id}/lessons", json={"name": "Spelling", "points": 20}, headers=auth_headers
    ).json()
    student = client.post("/api/students", json={"name": "Ada Lovelace"}, headers=auth_headers).json()
    return {"subject_id": subject_id, "lesson_id": lesson["id"], "student_id": student["id"]}


def grade_url(setup):
    return f"/api/grades/student/{setup['student_id']}/lesson/{setup['lesson_id']}"


def test_percentage_derives_errors(client, auth_headers, setup):
    r = client.put(grade_url(setup), json={"percentage": 85}, headers=auth_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["percentage"] == 85
    assert body["errors"] == 3.0
    assert body["points"] == 20


def test_errors_derive_percentage(client, auth_headers, setup):
    r = client.put(grade_url(setup), json={"errors": 2.5}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["percentage"] == 87.5
    assert r.json()["points"] == 20


def test_upsert_replaces_existing_grade(client, auth_headers, setup):
    first = client.put(grade_url(setup), json={"percentage": 50}, headers=auth_headers).json()
    second = client.put(grade_url(setup), json={"percentage": 90}, headers=auth_headers).json()
    assert first["id"] == second["id"]
    rows = client.get(
        f"/api/grades/student/{setup['student_id']}/subject/{setup['subject_id']}", headers=auth_headers
    ).json()
    assert len(rows) == 1
    assert rows[0]["percentage"] == 90
    assert rows[0]["lesson_name"] == "Spelling"


@pytest.mark.parametrize("payload", [{}, {"errors": 25}, {"errors": 5, "points": 4}])
def test_invalid_grades_are_rejected(client, auth_headers, setup, payload):
    r = client.put(grade_url(setup), json=payload, headers=auth_headers)
    assert r.status_code == 400


def test_out_of_range_percentage_is_a_validation_error(client, auth_headers, setup):
    r = client.put(grade_url(setup), json={"percentage": 120}, headers=auth_headers)
    assert r.status_code == 422


def test_changing_lesson_points_recalculates(client, auth_headers, setup):
    client.put(grade_url(setup), json={"errors": 5}, headers=auth_headers)
    r = client.put(
        f"/api/grades/subject/{setup['subject_id']}/lesson-points",
        json={"lesson_id": setup["lesson_id"], "points": 10},
        headers=auth_headers,
    )
    assert r.status_code == 200
    assert r.json()["grades_updated"] == 1
    matrix = client.get(f"/api/grades/subject/{setup['subject_id']}", headers=auth_headers).json()
    cell = matrix[0]["grades"][0]
    assert cell["lesson_points"] == 10
    assert cell["percentage"] == 50.0
    assert cell["grade_points"] == 10


def test_lesson_update_with_points_recalculates(client, auth_headers, setup):
    client.put(grade_url(setup), json={"errors": 5}, headers=auth_headers)
    client.put(f"/api/lessons/{setup['lesson_id']}", json={"points": 4}, headers=auth_headers)
    rows = client.get(
        f"/api/grades/student/{setup['student_id']}/subject/{setup['subject_id']}", headers=auth_headers
    ).json()
    # more errors than points bottoms out at zero
    assert rows[0]["percentage"] == 0.0
    assert rows[0]["errors"] == 4


def test_lowering_points_below_errors_caps_errors(client, auth_headers, setup):
    client.put(grade_url(setup), json={"errors": 15}, headers=auth_headers)
    r = client.put(
        f"/api/grades/subject/{setup['subject_id']}/lesson-points",
        json={"lesson_id": setup["lesson_id"], "points": 10},
        headers=auth_headers,
    )
    assert r.status_code == 200
    cell = client.get(f"/api/grades/subject/{setup['subject_id']}", headers=auth_headers).json()[0]["grades"][0]
    assert cell["percentage"] == 0.0
    assert cell["errors"] == 10
    assert cell["grade_points"] == 10
    assert abs(errors_from_percentage(cell["percentage"], 10) - cell["errors"]) <= 0.5


def test_matrix_lists_ungraded_lessons(client, auth_headers, setup):
    matrix = client.get(f"/api/grades/subject/{setup['subject_id']}", headers=auth_headers).json()
    assert len(matrix) == 1
    assert matrix[0]["student_name"] == "Ada Lovelace"
    assert matrix[0]["grades"][0]["grade_id"] is None


def test_delete_grade(client, auth_headers, setup):
    client.put(grade_url(setup), json={"percentage": 70}, headers=auth_headers)
    assert client.delete(grade_url(setup), headers=auth_headers).status_code == 200
    assert client.delete(grade_url(setup), headers=auth_headers).status_code == 404
    assert client.get("/api/grades", headers=auth_headers).json() == []


def test_cannot_grade_another_users_student(client, auth_headers, setup):
    other = client.post(
        "/api/auth/register",
        json={"email": f"intruder-{setup['student_id']}@example.com", "password": "secret123", "name": "Intruder"},
    ).json()
    headers = {"Authorization": f"Bearer {other['access_token']}"}
    r = client.put(grade_url(setup), json={"percentage": 10}, headers=headers)
    assert r.status_code == 404
