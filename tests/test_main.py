import mongomock
from bson import ObjectId
from pymongo.errors import PyMongoError

import database


def test_root(client):
    assert client.get("/").json() == {"message": "BookCars Backend Running"}


def test_database_status(client, monkeypatch):
    monkeypatch.setattr(database, "db", None)
    assert client.get("/test").json()["database"] == "❌ Not Available"

    mock_db = mongomock.MongoClient()["bookcars_status"]
    mock_db["country"].insert_one({"name": "France"})
    monkeypatch.setattr(database, "db", mock_db)
    status = client.get("/test").json()
    assert status["database"] == "✅ Connected & Working"
    assert status["collections"] == ["country"]


def test_validation_errors_are_422(client):
    r = client.post("/api/validate-country", json={})
    assert r.status_code == 422
    assert r.json()["detail"][0]["loc"] == ["body", "name"]


def test_database_errors_are_400(client, db, monkeypatch):
    def broken(*args, **kwargs):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(db["country"].__class__, "find_one", broken)
    r = client.post("/api/validate-country", json={"name": "France"})
    assert r.status_code == 400
    assert r.json() == {"detail": "Database error"}


def test_routes_are_mounted_under_api(client):
    for method, path in (
        ("POST", "/api/sign-in"),
        ("POST", "/api/checkout"),
        ("POST", "/api/dashboard"),
        ("POST", "/api/invoice/generate"),
        ("GET", f"/api/contract/{ObjectId()}/EUR"),
    ):
        assert client.request(method, path, json={}).status_code != 404, path
    assert client.post("/sign-in", json={}).status_code == 404
