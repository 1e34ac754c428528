from bson import ObjectId

import config
import storage
from conftest import auth_headers, car_doc, car_payload, insert_booking, png_bytes


def test_create_car_moves_temp_image(client, db, fleet, supplier):
    headers = auth_headers(supplier)
    image = client.post(
        "/api/create-car-image", files={"image": ("clio.png", png_bytes(), "image/png")}, headers=headers
    ).json()
    payload = car_payload(supplier["_id"], [fleet["paris"]], image=image, plate_number="ZZ-999-ZZ")

    r = client.post("/api/create-car", json=payload, headers=headers)
    assert r.status_code == 200
    car = r.json()
    assert car["image"] == f"{car['id']}_{image}"
    assert car["model_identifier"] == "renault_clio_2022_gasoline"
    assert car["model_group"] == "renault_clio"
    assert storage.exists(config.CDN_CARS, car["image"])
    assert isinstance(db["car"].find_one({"_id": ObjectId(car["id"])})["supplier"], ObjectId)


def test_supplier_cannot_create_cars_for_others(client, fleet, supplier, make_user):
    other = make_user("other@bookcars.com", type="supplier")
    payload = car_payload(other["_id"], [fleet["paris"]])
    assert client.post("/api/create-car", json=payload, headers=auth_headers(supplier)).status_code == 403


def test_create_car_validates_payload(client, fleet, admin, supplier):
    payload = car_payload(supplier["_id"], [fleet["paris"]], minimum_age=18)
    assert client.post("/api/create-car", json=payload, headers=auth_headers(admin)).status_code == 422

    payload = car_payload(supplier["_id"], [])
    assert client.post("/api/create-car", json=payload, headers=auth_headers(admin)).status_code == 422


def test_create_car_unknown_supplier(client, fleet, admin, driver):
    payload = car_payload(driver["_id"], [fleet["paris"]])
    assert client.post("/api/create-car", json=payload, headers=auth_headers(admin)).status_code == 404


def test_update_car_keeps_image(client, db, fleet, supplier):
    db["car"].update_one({"_id": fleet["car"]}, {"$set": {"image": "clio.jpg"}})
    payload = car_payload(supplier["_id"], [fleet["lyon"]], id=str(fleet["car"]), daily_price=65.0, image=None)

    r = client.put("/api/update-car", json=payload, headers=auth_headers(supplier))
    assert r.status_code == 200
    car = db["car"].find_one({"_id": fleet["car"]})
    assert car["daily_price"] == 65.0
    assert car["locations"] == [fleet["lyon"]]
    assert car["image"] == "clio.jpg"


def test_delete_car_cascades_bookings(client, db, fleet, supplier, driver):
    additional = db["additional_driver"].insert_one({"full_name": "Bob"}).inserted_id
    insert_booking(db, supplier, driver, fleet, additional_driver=True, additional_driver_id=additional)
    assert client.get(f"/api/check-car/{fleet['car']}").status_code == 200

    assert client.delete(f"/api/delete-car/{fleet['car']}", headers=auth_headers(supplier)).status_code == 200
    assert db["car"].count_documents({}) == 0
    assert db["booking"].count_documents({}) == 0
    assert db["additional_driver"].count_documents({}) == 0


def test_get_car_populates_supplier_and_locations(client, fleet):
    car = client.get(f"/api/car/{fleet['car']}").json()
    assert car["supplier"]["full_name"] == "Fast Rentals"
    assert "email" not in car["supplier"]
    assert [loc["name"] for loc in car["locations"]] == ["Paris", "Lyon"]
    assert client.get(f"/api/car/{ObjectId()}").status_code == 404


def test_backoffice_car_filters(client, db, fleet, supplier):
    db["car"].insert_one(car_doc(
        supplier["_id"], [fleet["paris"]], car_model="Zoe", type="electric", gearbox="automatic",
        mileage=200, deposit=1000.0, available=False, rating=None, multimedia=["bluetooth", "androidAuto"],
    ))
    suppliers = [str(supplier["_id"])]
    headers = auth_headers(supplier)

    def models(filters, **params):
        page = client.post(
            "/api/cars/1/10", json={"suppliers": suppliers, **filters}, params=params, headers=headers
        ).json()
        return sorted(c["car_model"] for c in page["result_data"])

    assert models({}) == ["Clio", "Zoe"]
    assert models({"car_type": ["electric"]}) == ["Zoe"]
    assert models({"gearbox": ["manual"]}) == ["Clio"]
    assert models({"mileage": ["unlimited"]}) == ["Clio"]
    assert models({"mileage": ["limited", "unlimited"]}) == ["Clio", "Zoe"]
    assert models({"deposit": 600}) == ["Clio"]
    assert models({"availability": ["unavailable"]}) == ["Zoe"]
    assert models({"multimedia": ["androidAuto"]}) == ["Zoe"]
    assert models({"rating": 3}) == ["Clio"]
    assert models({}, s="zo") == ["Zoe"]
    assert models({"suppliers": []}) == []


def test_backoffice_car_list_requires_backend_user(client, fleet, supplier, driver):
    body = {"suppliers": [str(supplier["_id"])]}
    assert client.post("/api/cars/1/10", json=body).status_code == 401
    assert client.post("/api/cars/1/10", json=body, headers=auth_headers(driver)).status_code == 403


def test_frontend_cars(client, db, fleet, supplier, make_user):
    blacklisted = make_user("black@bookcars.com", type="supplier", blacklisted=True)
    db["car"].insert_one(car_doc(blacklisted["_id"], [fleet["paris"]], car_model="Megane"))
    db["car"].insert_one(car_doc(supplier["_id"], [fleet["paris"]], car_model="Twingo", daily_price=30.0))
    db["car"].insert_one(car_doc(supplier["_id"], [fleet["paris"]], car_model="Kadjar", available=False))

    page = client.post("/api/frontend-cars/1/10", json={"pickup_location": str(fleet["paris"])}).json()
    assert [c["car_model"] for c in page["result_data"]] == ["Twingo", "Clio"]
    assert page["result_data"][0]["supplier"]["full_name"] == "Fast Rentals"

    assert client.post("/api/frontend-cars/1/10", json={}).status_code == 400


def test_frontend_cars_minimum_rental_days(client, db, fleet, supplier):
    db["user"].update_one({"_id": supplier["_id"]}, {"$set": {"minimum_rental_days": 5}})
    body = {"pickup_location": str(fleet["paris"])}
    assert client.post("/api/frontend-cars/1/10", json={**body, "days": 3}).json()["total_records"] == 0
    assert client.post("/api/frontend-cars/1/10", json={**body, "days": 5}).json()["total_records"] == 1


def test_booking_cars(client, db, fleet, supplier):
    body = {"supplier": str(supplier["_id"]), "pickup_location": str(fleet["lyon"])}
    cars = client.post("/api/booking-cars/1/10", json=body).json()
    assert [c["car_model"] for c in cars] == ["Clio"]
    assert set(cars[0]) == {"id", "car_model", "brand", "image", "plate_number"}


def test_similar_cars(client, db, fleet, supplier):
    db["car"].insert_one(car_doc(supplier["_id"], [fleet["paris"]], year=2023, plate_number="S1"))
    db["car"].insert_one(car_doc(supplier["_id"], [fleet["paris"]], year=2019, plate_number="S2"))
    db["car"].insert_one(car_doc(supplier["_id"], [fleet["paris"]], car_model="Zoe", plate_number="S3"))

    similar = client.get(f"/api/similar-cars/{fleet['car']}").json()
    assert [c["plate_number"] for c in similar] == ["S1"]


def test_car_image_endpoints(client, db, fleet, supplier):
    headers = auth_headers(supplier)
    files = {"image": ("clio.png", png_bytes(), "image/png")}
    filename = client.post(f"/api/update-car-image/{fleet['car']}", files=files, headers=headers).json()
    assert storage.exists(config.CDN_CARS, filename)

    assert client.post(f"/api/delete-car-image/{fleet['car']}", headers=headers).status_code == 200
    assert not storage.exists(config.CDN_CARS, filename)

    temp = client.post("/api/create-car-image", files=files, headers=headers).json()
    assert client.post(f"/api/delete-temp-car-image/{temp}", headers=headers).status_code == 200
    assert not storage.exists(config.CDN_TEMP_CARS, temp)
