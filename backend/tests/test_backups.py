import json
import uuid

import pytest

from gradeflow.backups import validate_backup
from gradeflow.errors import InvalidRequestError


def _populate(client, headers):
    cats = {c["name"]: c["id"] for c in client.get("/api/grade-category-types", headers=headers).json()}
    sid = client.post(
        "/api/subjects",
        json={"name": "Biology", "group_name": "Grade 6", "weights": {str(cats["Lesson"]): 1.0}},
        headers=headers,
    ).json()["id"]
    lesson_ids = [
        client.post(f"/api/subjects/{sid}/lessons", json={"name": f"Cells {n}"}, headers=headers).json()["id"]
        for n in range(1, 4)
    ]
    client.post(f"/api/subjects/{sid}/markers", json={"name": "Term 1", "order_index": 2}, headers=headers)
    student = client.post(
        "/api/students", json={"name": "Rosalind Franklin", "birthday": "2014-07-25", "group_name": "Grade 6"},
        headers=headers,
    ).json()
    client.put(f"/api/students/{student['id']}/subjects", json={"subjects": [sid]}, headers=headers)
    client.put(f"/api/grades/student/{student['id']}/lesson/{lesson_ids[0]}", json={"percentage": 88}, headers=headers)
    return sid, student["id"]


def _new_headers(client):
    r = client.post(
        "/api/auth/register",
        json={"email": f"restore-{uuid.uuid4().hex[:8]}@example.com", "password": "secret123", "name": "Restorer"},
    )
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def test_export_contains_the_whole_account(client, auth_headers):
    _populate(client, auth_headers)
    r = client.get("/api/backups/export", headers=auth_headers)
    assert r.status_code == 200
    assert "attachment" in r.headers["content-disposition"]
    data = r.json()
    assert data["version"] == "2.0.0"
    assert [s["name"] for s in data["subjects"]] == ["Biology"]
    assert len(data["lessons"]) == 3
    assert [m["name"] for m in data["grading_period_markers"]] == ["Term 1"]
    assert data["students"][0]["birthday"] == "2014-07-25"
    assert data["metadata"]["grade_count"] == 1


def test_snapshot_create_list_restore_delete(client, auth_headers):
    _, student_id = _populate(client, auth_headers)
    r = client.post("/api/backups/create", headers=auth_headers)
    assert r.status_code == 201
    timestamp = r.json()["backup"]["timestamp"]
    listed = client.get("/api/backups/list", headers=auth_headers).json()
    assert [b["timestamp"] for b in listed] == [timestamp]
    assert listed[0]["metadata"]["student_count"] == 1

    client.delete(f"/api/students/{student_id}", headers=auth_headers)
    assert client.get("/api/students", headers=auth_headers).json() == []

    r = client.post(f"/api/backups/restore/{timestamp}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["restored"]["students"] == 1
    assert r.json()["restored"]["grades"] == 1
    students = client.get("/api/students", headers=auth_headers).json()
    assert [s["name"] for s in students] == ["Rosalind Franklin"]
    assert students[0]["group_name"] == "Grade 6"
    assert len(students[0]["subjects"]) == 1

    subject = client.get("/api/subjects", headers=auth_headers).json()[0]
    seq = client.get(f"/api/subjects/{subject['id']}/sequence", headers=auth_headers).json()
    assert [e["name"] for e in seq] == ["Cells 1", "Term 1", "Cells 2", "Cells 3"]
    assert [e["order_index"] for e in seq] == [1, 2, 3, 4]
    report = client.get(f"/api/reports/student/{students[0]['id']}", headers=auth_headers).json()
    assert report["subjects"][0]["weighted_average"] == 88.0

    assert client.delete(f"/api/backups/{timestamp}", headers=auth_headers).status_code == 200
    assert client.post(f"/api/backups/restore/{timestamp}", headers=auth_headers).status_code == 404


def test_upload_merge_into_another_account(client, auth_headers):
    _populate(client, auth_headers)
    data = client.get("/api/backups/export", headers=auth_headers).json()
    data["school_settings"]["school_name"] = "Old School"

    headers = _new_headers(client)
    client.post("/api/students", json={"name": "Existing Kid"}, headers=headers)
    files = {"backupFile": ("backup.json", json.dumps(data).encode("utf-8"), "application/json")}
    r = client.post(
        "/api/backups/restore/json",
        files=files,
        data={"mergeData": "true", "updateSettings": "true"},
        headers=headers,
    )
    assert r.status_code == 200
    restored = r.json()["restored"]
    assert restored["subjects"] == 1
    assert restored["lessons"] == 3
    assert restored["grade_category_types"] == 0
    assert restored["settings_updated"] is True

    names = sorted(s["name"] for s in client.get("/api/students", headers=headers).json())
    assert names == ["Existing Kid", "Rosalind Franklin"]
    assert client.get("/api/users/profile", headers=headers).json()["school_name"] == "Old School"

    # merging again finds everything by name and adds nothing
    r = client.post("/api/backups/restore/json", files=files, data={"mergeData": "true"}, headers=headers)
    assert r.json()["restored"]["students"] == 0
    assert r.json()["restored"]["lessons"] == 0


def test_upload_rejects_broken_files(client, auth_headers):
    files = {"backupFile": ("backup.json", b"{not json", "application/json")}
    r = client.post("/api/backups/restore/json", files=files, headers=auth_headers)
    assert r.status_code == 400
    files = {"backupFile": ("backup.json", json.dumps({"students": []}).encode(), "application/json")}
    assert client.post("/api/backups/restore/json", files=files, headers=auth_headers).status_code == 400


def test_validate_backup_checks_sections():
    with pytest.raises(InvalidRequestError):
        validate_backup({"version": "2.0.0", "lessons": {}})
    with pytest.raises(InvalidRequestError):
        validate_backup([])
    assert validate_backup({"version": "2.0.0"}) == {"version": "2.0.0"}


def _upload(client, headers, document, **form):
    files = {"backupFile": ("backup.json", json.dumps(document).encode("utf-8"), "application/json")}
    return client.post("/api/backups/restore/json", files=files, data=form, headers=headers)


@pytest.mark.parametrize("row", [
    {"id": 1, "name": "Math", "weights": {"abc": 0.5}},
    {"id": 1, "name": "Math", "weights": {"7": 50}},
    {"id": 1, "name": "Math", "weights": {"7": "heavy"}},
    {"id": [1], "name": "Math"},
])
def test_upload_rejects_bad_subject_rows(client, auth_headers, row):
    client.post("/api/students", json={"name": "Kept Student"}, headers=auth_headers)
    r = _upload(client, auth_headers, {"version": "2.0.0", "subjects": [row]})
    assert r.status_code == 400
    assert "subjects[0]" in r.json()["detail"]
    # the failed replace left the account untouched
    assert [s["name"] for s in client.get("/api/students", headers=auth_headers).json()] == ["Kept Student"]


@pytest.mark.parametrize("section, row", [
    ("lessons", {"id": 1, "subject_id": 1, "name": "L", "points": -5}),
    ("lessons", {"id": 1, "subject_id": 1, "name": "L", "points": 2.5}),
    ("lessons", {"id": 1, "subject_id": 1, "name": "L", "order_index": 1.5}),
    ("grading_period_markers", {"id": 1, "subject_id": 1, "order_index": "first"}),
    ("grades", {"student_id": 1, "lesson_id": 1, "percentage": 140}),
    ("grades", {"student_id": 1, "lesson_id": 1, "errors": 12, "points": 10}),
])
def test_upload_rejects_out_of_range_values(client, auth_headers, section, row):
    document = {"version": "2.0.0", "subjects": [{"id": 1, "name": "Math"}], section: [row]}
    r = _upload(client, auth_headers, document)
    assert r.status_code == 400
    assert r.json()["detail"].startswith(f"Invalid backup file format: {section}[0]")


def test_validate_backup_normalizes_rows():
    data = validate_backup({
        "version": "2.0.0",
        "subjects": [{"id": "3", "name": "Math", "weights": {"7": "0.25"}}],
        "lessons": [{"id": 4, "subject_id": 3, "points": "20"}],
    })
    assert data["subjects"][0]["id"] == 3
    assert data["subjects"][0]["weights"] == {7: 0.25}
    assert data["lessons"][0]["points"] == 20
    assert data["lessons"][0]["order_index"] is None


def test_upload_with_string_weight_keys_restores_weights(client, auth_headers):
    _populate(client, auth_headers)
    data = client.get("/api/backups/export", headers=auth_headers).json()
    headers = _new_headers(client)
    assert _upload(client, headers, data).status_code == 200
    categories = {c["id"]: c["name"] for c in client.get("/api/grade-category-types", headers=headers).json()}
    subject = client.get("/api/subjects", headers=headers).json()[0]
    assert {categories[int(k)]: v for k, v in subject["weights"].items()} == {"Lesson": 1.0}
