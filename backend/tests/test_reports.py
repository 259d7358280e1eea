from gradeflow.reports import category_averages, letter_band, weighted_average


def test_category_averages_skip_missing_percentages():
    rows = [(1, 80.0), (1, None), (1, 90.0), (2, 70.0)]
    assert category_averages(rows) == {1: 85.0, 2: 70.0}


def test_weighted_average_without_weights_is_none():
    assert weighted_average({1: 80.0, 2: 90.0}, {}) is None
    assert weighted_average({}, {1: 0.5}) is None


def test_single_weighted_category_returns_its_average():
    assert weighted_average({1: 80.0, 2: 90.0}, {1: 0.5}) == 80.0


def test_weights_are_normalised():
    assert weighted_average({1: 80.0, 2: 90.0}, {1: 0.25, 2: 0.75}) == 87.5
    # a weighted category without grades does not dilute the result
    assert weighted_average({1: 80.0}, {1: 0.4, 2: 0.6}) == 80.0


def test_letter_bands():
    assert [letter_band(p) for p in (95, 90, 85, 72, 60, 59.5)] == ["A", "A", "B", "C", "D", "F"]


def _category_ids(client, headers):
    categories = client.get("/api/grade-category-types", headers=headers).json()
    return {c["name"]: c["id"] for c in categories}


def _graded_subject(client, headers):
    cats = _category_ids(client, headers)
    subject = client.post(
        "/api/subjects",
        json={"name": "History", "weights": {str(cats["Lesson"]): 0.4, str(cats["Test"]): 0.6}},
        headers=headers,
    ).json()
    sid = subject["id"]
    lessons = []
    for name, category in [("L1", "Lesson"), ("L2", "Lesson"), ("T1", "Test"), ("L3", "Lesson")]:
        lessons.append(client.post(
            f"/api/subjects/{sid}/lessons", json={"name": name, "category_id": cats[category]}, headers=headers
        ).json()["id"])
    student = client.post("/api/students", json={"name": "Grace Hopper"}, headers=headers).json()
    for lesson_id, pct in zip(lessons, [80, 90, 70]):
        client.put(f"/api/grades/student/{student['id']}/lesson/{lesson_id}", json={"percentage": pct}, headers=headers)
    return sid, student["id"], cats


def test_student_report_weighted_average(client, auth_headers):
    sid, student_id, cats = _graded_subject(client, auth_headers)
    r = client.get(f"/api/reports/student/{student_id}", headers=auth_headers)
    assert r.status_code == 200
    report = r.json()
    summary = next(s for s in report["subjects"] if s["subject_id"] == sid)
    assert summary["graded_count"] == 3
    assert summary["lesson_count"] == 4
    averages = {c["category"]: c["average"] for c in summary["category_averages"]}
    assert averages == {"Lesson": 85.0, "Test": 70.0}
    assert summary["weighted_average"] == 76.0
    assert report["overall_average"] == 76.0


def test_student_subject_report_without_weights(client, auth_headers):
    sid, student_id, _ = _graded_subject(client, auth_headers)
    client.put(f"/api/subjects/{sid}", json={"name": "History", "weights": {}}, headers=auth_headers)
    r = client.get(f"/api/reports/student/{student_id}/subject/{sid}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["weighted_average"] is None


def test_group_report(client, auth_headers):
    groups = client.get("/api/student-groups", headers=auth_headers).json()
    group_id = next(g["id"] for g in groups if g["name"] == "Grade 3")
    sid, student_id, cats = _graded_subject(client, auth_headers)
    client.put(
        f"/api/subjects/{sid}",
        json={"name": "History", "group_ids": [group_id], "weights": {str(cats["Test"]): 1.0}},
        headers=auth_headers,
    )
    client.put(f"/api/students/{student_id}", json={"name": "Grace Hopper", "group_ids": [group_id]}, headers=auth_headers)
    r = client.get(f"/api/reports/group/{group_id}", headers=auth_headers)
    assert r.status_code == 200
    body = r.json()
    assert [s["name"] for s in body["subjects"]] == ["History"]
    row = body["students"][0]
    assert row["subject_averages"][str(sid)] == 70.0
    assert row["overall_average"] == 70.0


def test_dashboard_counts_and_distribution(client, auth_headers):
    _graded_subject(client, auth_headers)
    r = client.get("/api/reports/dashboard", headers=auth_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["counts"]["grades"] == 3
    assert body["counts"]["lessons"] == 4
    assert body["counts"]["groups"] == 10
    assert body["grade_distribution"] == {"A": 1, "B": 1, "C": 1, "D": 0, "F": 0}
    assert len(body["recent_grades"]) == 3
    assert body["subjects"][0]["average"] == 80.0


def test_subject_stats(client, auth_headers):
    sid, _, _ = _graded_subject(client, auth_headers)
    r = client.get(f"/api/grades/subject/{sid}/stats", headers=auth_headers)
    assert r.status_code == 200
    overview = r.json()["overview"]
    assert overview == {"students": 1, "lessons": 4, "grades": 3, "average": 80.0, "min": 70.0, "max": 90.0}
    categories = {c["category"]: c["grade_count"] for c in r.json()["categories"]}
    assert categories == {"Lesson": 2, "Test": 1}
