from datetime import datetime

from conftest import auth_headers, car_doc, insert_booking
from routes.dashboard import dashboard_data, month_starts


def test_month_starts_cross_year_boundary():
    starts = month_starts(datetime(2030, 2, 15))
    assert len(starts) == 12
    assert starts[0] == datetime(2029, 3, 1)
    assert starts[-1] == datetime(2030, 2, 1)


def test_dashboard_data():
    cars = [
        {"_id": 1, "type": "diesel", "range": "midi", "rating": 4},
        {"_id": 2, "type": "electric", "range": "mini", "rating": 5},
        {"_id": 3, "type": "diesel", "range": "maxi", "rating": None},
    ]
    bookings = [
        {"car": 1, "price": 100.0, "from_date": datetime(2030, 2, 3)},
        {"car": 2, "price": 250.0, "from_date": datetime(2030, 1, 10)},
        {"car": 1, "price": 50.0, "from_date": datetime(2029, 1, 10)},
    ]
    data = dashboard_data(cars, bookings, datetime(2030, 2, 15))

    assert data["total_cars"] == 3
    assert data["total_bookings"] == 3
    assert data["total_revenue"] == 400.0
    assert data["average_rating"] == 4.5
    assert data["car_type_distribution"] == [{"name": "diesel", "value": 2}, {"name": "electric", "value": 1}]
    assert data["revenue_by_car_type"] == [{"type": "mini", "revenue": 250.0}, {"type": "midi", "revenue": 150.0}]
    assert data["bookings_by_month"][-1] == {"month": "Feb", "bookings": 1}
    assert data["bookings_by_month"][-2] == {"month": "Jan", "bookings": 1}
    assert sum(m["bookings"] for m in data["bookings_by_month"]) == 2


def test_dashboard_without_rated_cars():
    assert dashboard_data([{"_id": 1, "type": "diesel"}], [], datetime(2030, 1, 1))["average_rating"] == 0


def test_dashboard_endpoint_is_scoped_to_supplier(client, db, admin, supplier, driver, fleet, make_user):
    other = make_user("other@mail.com", type="supplier")
    db["car"].insert_one(car_doc(other["_id"], [fleet["paris"]]))
    insert_booking(db, supplier, driver, fleet, price=120.0)
    insert_booking(db, supplier, driver, fleet, price=80.0, status="cancelled")

    body = {"suppliers": [str(supplier["_id"]), str(other["_id"])], "statuses": ["pending"]}
    data = client.post("/api/dashboard", json=body, headers=auth_headers(admin)).json()
    assert data["total_cars"] == 2
    assert data["total_revenue"] == 120.0

    data = client.post("/api/dashboard", json=body, headers=auth_headers(supplier)).json()
    assert data["total_cars"] == 1

    assert client.post("/api/dashboard", json=body, headers=auth_headers(driver)).status_code == 403
