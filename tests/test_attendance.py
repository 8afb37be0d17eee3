from __future__ import annotations

from datetime import datetime

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

import main


def mark(client, student_id, date, status="present", **extra):
    body = {"studentId": str(student_id), "studentName": "Asha Rao", "date": date, "status": status}
    body.update(extra)
    return client.post("/api/attendance", json=body)


def test_mark_creates_record_pinned_to_start_of_day(client, db):
    sid = ObjectId()
    r = mark(client, sid, "2024-01-15T10:45:00", markedBy="teacher@school.com")
    assert r.status_code == 200
    data = r.json()
    assert data["studentId"] == str(sid)
    assert data["studentName"] == "Asha Rao"
    assert data["status"] == "present"
    assert data["markedBy"] == "teacher@school.com"
    assert data["date"].startswith("2024-01-15T00:00:00")
    assert db["attendances"].count_documents({}) == 1


def test_marking_twice_same_day_keeps_one_record_with_latest_status(client, db):
    sid = ObjectId()
    first = mark(client, sid, "2024-01-15", "present", markedBy="a").json()
    second = mark(client, sid, "2024-01-15T15:00:00", "absent", markedBy="b").json()

    assert second["id"] == first["id"]
    assert second["status"] == "absent"
    assert second["markedBy"] == "b"
    assert db["attendances"].count_documents({"studentId": sid}) == 1


def test_update_path_keeps_original_student_name(client):
    sid = ObjectId()
    mark(client, sid, "2024-01-15", studentName="Asha Rao")
    again = mark(client, sid, "2024-01-15", "leave", studentName="Someone Else").json()
    assert again["studentName"] == "Asha Rao"
    assert again["status"] == "leave"


def test_different_days_are_separate_records(client, db):
    sid = ObjectId()
    mark(client, sid, "2024-01-15")
    mark(client, sid, "2024-01-16")
    assert db["attendances"].count_documents({"studentId": sid}) == 2


def test_invalid_status_is_rejected(client, db):
    r = mark(client, ObjectId(), "2024-01-15", "late")
    assert r.status_code == 400
    assert "status" in r.json()["error"]
    assert db["attendances"].count_documents({}) == 0


def test_missing_fields_are_rejected(client):
    r = client.post("/api/attendance", json={"status": "present"})
    assert r.status_code == 400
    error = r.json()["error"]
    assert "studentId" in error
    assert "date" in error


def test_invalid_student_id_is_rejected(client):
    r = mark(client, "12345", "2024-01-15")
    assert r.status_code == 400


def test_invalid_date_is_rejected(client):
    r = mark(client, ObjectId(), "15/01/2024")
    assert r.status_code == 400


def test_by_date_returns_only_that_day(client):
    a, b = ObjectId(), ObjectId()
    mark(client, a, "2024-01-14")
    mark(client, a, "2024-01-15")
    mark(client, b, "2024-01-15T23:00:00")
    mark(client, b, "2024-01-16")

    r = client.get("/api/attendance", params={"date": "2024-01-15"})
    assert r.status_code == 200
    records = r.json()
    assert sorted(rec["studentId"] for rec in records) == sorted([str(a), str(b)])
    assert all(rec["date"].startswith("2024-01-15") for rec in records)


def test_by_date_requires_date(client):
    r = client.get("/api/attendance")
    assert r.status_code == 400
    assert r.json() == {"error": "Date is required"}


def test_by_date_accepts_but_does_not_apply_class_filter(client):
    mark(client, ObjectId(), "2024-01-15")
    mark(client, ObjectId(), "2024-01-15")
    r = client.get("/api/attendance", params={"date": "2024-01-15", "class": "7", "section": "Z"})
    assert r.status_code == 200
    assert len(r.json()) == 2


def test_by_date_with_no_records_is_empty(client):
    r = client.get("/api/attendance", params={"date": "2030-06-01"})
    assert r.status_code == 200
    assert r.json() == []


def test_student_history_is_sorted_newest_first(client):
    sid = ObjectId()
    for day in ("2024-01-10", "2024-01-12", "2024-01-11"):
        mark(client, sid, day)
    mark(client, ObjectId(), "2024-01-11")

    r = client.get(f"/api/attendance/student/{sid}")
    assert r.status_code == 200
    assert [rec["date"][:10] for rec in r.json()] == ["2024-01-12", "2024-01-11", "2024-01-10"]


def test_student_history_date_range(client):
    sid = ObjectId()
    for day in ("2024-01-10", "2024-01-11", "2024-01-12", "2024-01-13"):
        mark(client, sid, day)

    r = client.get(
        f"/api/attendance/student/{sid}",
        params={"startDate": "2024-01-11", "endDate": "2024-01-12"},
    )
    assert [rec["date"][:10] for rec in r.json()] == ["2024-01-12", "2024-01-11"]


def test_student_history_ignores_half_open_range(client):
    sid = ObjectId()
    mark(client, sid, "2024-01-10")
    mark(client, sid, "2024-01-12")
    r = client.get(f"/api/attendance/student/{sid}", params={"startDate": "2024-01-11"})
    assert len(r.json()) == 2


class RacingCollection:
    """Inserts the day's record just before the first upsert runs."""

    def __init__(self, inner):
        self.inner = inner
        self.raced = False

    def find_one_and_update(self, query, update, upsert=False, **kwargs):
        if upsert and not self.raced:
            self.raced = True
            self.inner.insert_one(
                {"studentId": query["studentId"], "date": query["date"]["$gte"], "status": "present"}
            )
            raise DuplicateKeyError("E11000 duplicate key error")
        return self.inner.find_one_and_update(query, update, upsert=upsert, **kwargs)


class RacingDatabase:
    def __init__(self, db):
        self.db = db
        self.attendances = RacingCollection(db["attendances"])

    def __getitem__(self, name):
        if name == "attendances":
            return self.attendances
        return self.db[name]


def test_concurrent_insert_falls_back_to_update(client, db):
    main.app.dependency_overrides[main.get_db] = lambda: RacingDatabase(db)
    sid = ObjectId()
    r = mark(client, sid, "2024-01-15", "absent")
    assert r.status_code == 200
    assert r.json()["status"] == "absent"
    assert db["attendances"].count_documents({"studentId": sid}) == 1


def test_unique_index_blocks_duplicate_day(db):
    sid = ObjectId()
    db["attendances"].insert_one({"studentId": sid, "date": datetime(2024, 1, 15), "status": "present"})
    with pytest.raises(DuplicateKeyError):
        db["attendances"].insert_one({"studentId": sid, "date": datetime(2024, 1, 15), "status": "absent"})


def test_mark_with_offset_answers_in_that_offset(client, db):
    sid = ObjectId()
    r = mark(client, sid, "2024-01-15T09:00:00+05:30")
    assert r.status_code == 200
    assert r.json()["date"] == "2024-01-15T00:00:00+05:30"

    again = mark(client, sid, "2024-01-15T17:00:00+05:30", "absent").json()
    assert again["id"] == r.json()["id"]
    assert again["date"] == "2024-01-15T00:00:00+05:30"
    assert db["attendances"].count_documents({"studentId": sid}) == 1


def test_stored_dates_keep_an_explicit_offset(client):
    sid = ObjectId()
    mark(client, sid, "2024-01-15")
    history = client.get(f"/api/attendance/student/{sid}").json()
    assert history[0]["date"] == "2024-01-15T00:00:00+00:00"


def test_absent_optional_fields_are_not_stored(client, db):
    sid = ObjectId()
    r = client.post("/api/attendance", json={"studentId": str(sid), "date": "2024-01-15", "status": "present"})
    assert r.status_code == 200
    stored = db["attendances"].find_one({"studentId": sid})
    assert "studentName" not in stored
    assert "markedBy" not in stored


def test_by_date_rejects_unparseable_date(client):
    r = client.get("/api/attendance", params={"date": "garbage"})
    assert r.status_code == 400
    assert "Invalid date" in r.json()["error"]


def test_student_history_rejects_unparseable_range(client):
    r = client.get(
        f"/api/attendance/student/{ObjectId()}",
        params={"startDate": "garbage", "endDate": "2024-01-12"},
    )
    assert r.status_code == 400
    assert "Invalid date" in r.json()["error"]
