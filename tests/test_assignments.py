"""Assignments, submissions and per-class progress."""

from database import utcnow


def _assignment(class_id, **overrides):
    body = {"classId": class_id, "title": "Homework 1", "deadline": "2026-11-01", "description": "Loops"}
    body.update(overrides)
    return body


def test_teacher_creates_assignment(client, db, teacher, seed_class):
    class_id = seed_class()
    res = client.post("/assignments", json=_assignment(class_id), headers=teacher)
    assert res.status_code == 201
    stored = db["assignments"].find_one({"classId": class_id})
    assert str(stored["_id"]) == res.json()["insertedId"]
    assert stored["submissionCount"] == 0
    assert stored["deadline"] == "2026-11-01"


def test_assignment_for_someone_elses_class_is_403(client, login, seed_class):
    class_id = seed_class()
    other = login("other@school.edu", "teacher")
    assert client.post("/assignments", json=_assignment(class_id), headers=other).status_code == 403


def test_assignment_for_unknown_class_is_404(client, teacher, unknown_id):
    assert client.post("/assignments", json=_assignment(unknown_id), headers=teacher).status_code == 404


def test_assignment_with_malformed_class_id_is_400(client, teacher):
    assert client.post("/assignments", json=_assignment("bad"), headers=teacher).status_code == 400


def test_list_assignments_for_class(client, teacher, student, seed_class):
    class_id = seed_class()
    other_class = seed_class(title="Other")
    client.post("/assignments", json=_assignment(class_id), headers=teacher)
    client.post("/assignments", json=_assignment(class_id, title="Homework 2"), headers=teacher)
    client.post("/assignments", json=_assignment(other_class), headers=teacher)

    listed = client.get("/assignments", params={"classId": class_id}, headers=student).json()
    assert {a["title"] for a in listed} == {"Homework 1", "Homework 2"}


def test_list_assignments_requires_class_id(client, student):
    assert client.get("/assignments", headers=student).status_code == 400


def test_update_assignment(client, db, teacher, seed_class):
    class_id = seed_class()
    assignment_id = client.post("/assignments", json=_assignment(class_id), headers=teacher).json()["insertedId"]
    res = client.patch(f"/assignments/{assignment_id}", json={"deadline": "2026-12-01"}, headers=teacher)
    assert res.status_code == 200
    assert db["assignments"].find_one({})["deadline"] == "2026-12-01"


def test_increment_submission_count(client, db, teacher, student, seed_class):
    class_id = seed_class()
    assignment_id = client.post("/assignments", json=_assignment(class_id), headers=teacher).json()["insertedId"]
    res = client.patch(f"/assignments/{assignment_id}/increment", headers=student)
    assert res.status_code == 200
    assert db["assignments"].find_one({})["submissionCount"] == 1


def test_increment_unknown_assignment_is_404(client, student, unknown_id):
    assert client.patch(f"/assignments/{unknown_id}/increment", headers=student).status_code == 404


def test_submission_copies_class_and_bumps_counter(client, db, teacher, student, seed_class):
    class_id = seed_class()
    assignment_id = client.post("/assignments", json=_assignment(class_id), headers=teacher).json()["insertedId"]
    body = {"assignmentId": assignment_id, "studentEmail": "student@school.edu", "answer": "for i in range(3): ..."}

    res = client.post("/submissions", json=body, headers=student)
    assert res.status_code == 201
    client.post("/submissions", json=body, headers=student)

    assert db["submissions"].count_documents({"classId": class_id}) == 2
    assert db["assignments"].find_one({})["submissionCount"] == 2

    count = client.get("/submissions/count", params={"classId": class_id}, headers=student).json()
    assert count == {"classId": class_id, "count": 2}


def test_submission_for_unknown_assignment_is_404(client, student, unknown_id):
    body = {"assignmentId": unknown_id, "studentEmail": "student@school.edu", "answer": "42"}
    assert client.post("/submissions", json=body, headers=student).status_code == 404


def test_class_progress_counts(client, db, student, seed_class):
    class_id = seed_class()
    for i in range(3):
        db["enrollments"].insert_one({"email": f"s{i}@school.edu", "classId": class_id, "enrolledAt": utcnow()})
    for i in range(2):
        db["assignments"].insert_one({"classId": class_id, "title": f"A{i}", "submissionCount": 0})
    for i in range(5):
        db["submissions"].insert_one({"classId": class_id, "assignmentId": "x", "studentEmail": f"s{i}@school.edu"})
    db["enrollments"].insert_one({"email": "elsewhere@school.edu", "classId": "another", "enrolledAt": utcnow()})

    res = client.get(f"/class-progress/{class_id}", headers=student)
    assert res.status_code == 200
    assert res.json() == {"enrolledCount": 3, "assignmentCount": 2, "submissionCount": 5}
