from __future__ import annotations

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main


@pytest.fixture
def db():
    mongo = mongomock.MongoClient(tz_aware=True)
    db = mongo["attendance_test"]
    database.ensure_indexes(db)
    return db


@pytest.fixture
def client(db):
    main.app.dependency_overrides[main.get_db] = lambda: db
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_student(client):
    def _make(**overrides):
        body = {"name": "Asha Rao", "rollNumber": "01", "class": "7", "section": "A"}
        body.update(overrides)
        r = client.post("/api/students", json=body)
        assert r.status_code == 201, r.text
        return r.json()

    return _make
