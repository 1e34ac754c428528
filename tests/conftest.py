import os
from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import mailer
import push
from auth import create_access_token, hash_password
from database import get_db
from helpers import now
from main import app
from schemas import User

CDN_SETTINGS = (
    "CDN_USERS",
    "CDN_TEMP_USERS",
    "CDN_CARS",
    "CDN_TEMP_CARS",
    "CDN_LOCATIONS",
    "CDN_TEMP_LOCATIONS",
    "CDN_CONTRACTS",
    "CDN_LICENSES",
    "CDN_TEMP_LICENSES",
)

PASSWORD = "secret123"


@pytest.fixture
def db():
    return mongomock.MongoClient()["bookcars_test"]


@pytest.fixture(autouse=True)
def cdn(tmp_path, monkeypatch):
    for name in CDN_SETTINGS:
        folder = tmp_path / name.lower()
        folder.mkdir()
        monkeypatch.setattr(config, name, str(folder))
    return tmp_path


@pytest.fixture(autouse=True)
def sent_mail(monkeypatch):
    sent = []

    def fake_send_mail(to, subject, html_content, attachments=None, from_address=None):
        sent.append({"to": to, "subject": subject, "html": html_content, "attachments": attachments or []})
        return True

    monkeypatch.setattr(mailer, "send_mail", fake_send_mail)
    return sent


@pytest.fixture(autouse=True)
def sent_push(monkeypatch):
    sent = []

    def fake_send(messages):
        sent.extend(messages)
        return len(messages)

    monkeypatch.setattr(push, "send_push_notifications", fake_send)
    return sent


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make_user(email, type="user", password=PASSWORD, **fields):
        values = User(email=email, full_name=fields.pop("full_name", email.split("@")[0].title()), type=type).model_dump()
        values.update(active=True, verified=True, password=hash_password(password) if password else None)
        values.update(fields)
        values["created_at"] = values["updated_at"] = now()
        values["_id"] = db["user"].insert_one(values).inserted_id
        return values

    return _make_user


def auth_headers(user):
    return {config.X_ACCESS_TOKEN: create_access_token(str(user["_id"]))}


@pytest.fixture
def admin(make_user, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_EMAIL", "admin@bookcars.com")
    return make_user("admin@bookcars.com", type="admin", full_name="Admin")


@pytest.fixture
def supplier(make_user):
    return make_user("supplier@bookcars.com", type="supplier", full_name="Fast Rentals", pay_later=True)


@pytest.fixture
def driver(make_user):
    return make_user("driver@bookcars.com", full_name="Jane Driver")


@pytest.fixture
def fleet(db, supplier):
    """A country, two locations and one car of the supplier serving both."""
    country_id = db["country"].insert_one({"name": "France"}).inserted_id
    paris = db["location"].insert_one(
        {"name": "Paris", "country": country_id, "latitude": 48.85, "longitude": 2.35, "parking_spots": []}
    ).inserted_id
    lyon = db["location"].insert_one(
        {"name": "Lyon", "country": country_id, "latitude": 45.76, "longitude": 4.83, "parking_spots": []}
    ).inserted_id
    car_id = db["car"].insert_one(car_doc(supplier["_id"], [paris, lyon])).inserted_id
    return {"country": country_id, "paris": paris, "lyon": lyon, "car": car_id}


def car_doc(supplier_id, location_ids, **overrides):
    stamp = now()
    doc = {
        "brand": "Renault",
        "car_model": "Clio",
        "plate_number": "AB-123-CD",
        "year": 2022,
        "supplier": supplier_id,
        "minimum_age": 21,
        "locations": list(location_ids),
        "daily_price": 50.0,
        "discounted_daily_price": None,
        "bi_weekly_price": None,
        "discounted_bi_weekly_price": None,
        "weekly_price": 300.0,
        "discounted_weekly_price": None,
        "monthly_price": None,
        "discounted_monthly_price": None,
        "deposit": 500.0,
        "available": True,
        "type": "gasoline",
        "gearbox": "manual",
        "aircon": True,
        "image": None,
        "seats": 5,
        "doors": 5,
        "fuel_policy": "likeForlike",
        "mileage": -1,
        "cancellation": 10.0,
        "amendments": 0,
        "theft_protection": 5.0,
        "collision_damage_waiver": -1,
        "full_insurance": -1,
        "additional_driver": 3.0,
        "range": "midi",
        "multimedia": ["bluetooth"],
        "rating": 4.0,
        "trips": 0,
        "created_at": stamp,
        "updated_at": stamp,
    }
    doc.update(overrides)
    return doc


def car_payload(supplier_id, location_ids, **overrides):
    payload = car_doc(str(supplier_id), [str(i) for i in location_ids], **overrides)
    for key in ("created_at", "updated_at"):
        payload.pop(key)
    return payload


def booking_payload(supplier, driver, fleet, days=3, **overrides):
    start = datetime(2030, 6, 1, 10, 0)
    payload = {
        "supplier": str(supplier["_id"]),
        "car": str(fleet["car"]),
        "driver": str(driver["_id"]) if driver else None,
        "pickup_location": str(fleet["paris"]),
        "drop_off_location": str(fleet["lyon"]),
        "from_date": start.isoformat(),
        "to_date": (start + timedelta(days=days)).isoformat(),
        "status": "pending",
    }
    payload.update(overrides)
    return payload


def insert_booking(db, supplier, driver, fleet, **overrides):
    stamp = now()
    doc = {
        "supplier": supplier["_id"],
        "car": fleet["car"],
        "driver": driver["_id"],
        "pickup_location": fleet["paris"],
        "drop_off_location": fleet["lyon"],
        "from_date": datetime(2030, 6, 1, 10, 0),
        "to_date": datetime(2030, 6, 4, 10, 0),
        "status": "pending",
        "cancellation": False,
        "cancel_request": False,
        "additional_driver": False,
        "additional_driver_id": None,
        "price": 150.0,
        "expire_at": None,
        "created_at": stamp,
        "updated_at": stamp,
    }
    doc.update(overrides)
    doc["_id"] = db["booking"].insert_one(doc).inserted_id
    return doc


def png_bytes(size=(1200, 600), mode="RGB"):
    import io

    from PIL import Image

    buf = io.BytesIO()
    Image.new(mode, size, (200, 30, 30) if mode == "RGB" else (200, 30, 30, 128)).save(buf, format="PNG")
    return buf.getvalue()


def touch(folder, filename, data=b"data"):
    with open(os.path.join(folder, filename), "wb") as f:
        f.write(data)
