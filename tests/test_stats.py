"""Liveness, diagnostics and aggregate counts."""

from database import utcnow


def test_liveness(client):
    res = client.get("/")
    assert res.status_code == 200
    assert res.json() == {"message": "Edu Platform Backend is Running"}


def test_diagnostics_without_database(client):
    body = client.get("/test").json()
    assert body["backend"] == "Running"
    assert body["connection_status"] == "Not Connected"


def test_stats_counts(client, db, student, admin, seed_class):
    seed_class(status="approved")
    seed_class(status="approved")
    seed_class(status="pending")
    db["enrollments"].insert_one({"email": "student@school.edu", "classId": "x", "enrolledAt": utcnow()})

    assert client.get("/stats/total-users").json() == {"totalUsers": 2}
    assert client.get("/stats/total-classes").json() == {"totalClasses": 2}
    assert client.get("/stats/total-enrollments").json() == {"totalEnrollments": 1}
