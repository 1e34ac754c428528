from bson import ObjectId

import config
import storage
from conftest import auth_headers, car_doc, png_bytes


def location_payload(country_id, **overrides):
    payload = {
        "country": str(country_id),
        "name": "Nice",
        "latitude": 43.7,
        "longitude": 7.26,
        "parking_spots": [{"name": "Airport T1", "latitude": 43.66, "longitude": 7.21}],
    }
    payload.update(overrides)
    return payload


def test_create_location_with_parking_spots_and_image(client, db, fleet, admin):
    image = storage.save_temp_image(config.CDN_TEMP_LOCATIONS, "nice.png", png_bytes())
    r = client.post("/api/create-location", json=location_payload(fleet["country"], image=image), headers=auth_headers(admin))
    assert r.status_code == 200
    location = db["location"].find_one({"_id": ObjectId(r.json()["id"])})

    assert len(location["parking_spots"]) == 1
    assert location["image"].startswith(f"{location['_id']}_")
    assert storage.exists(config.CDN_LOCATIONS, location["image"])
    assert not storage.exists(config.CDN_TEMP_LOCATIONS, image)


def test_create_location_unknown_country(client, admin):
    r = client.post("/api/create-location", json=location_payload(ObjectId()), headers=auth_headers(admin))
    assert r.status_code == 404


def test_update_location_syncs_parking_spots(client, db, fleet, admin):
    headers = auth_headers(admin)
    location_id = client.post("/api/create-location", json=location_payload(fleet["country"]), headers=headers).json()["id"]
    old_spot = db["location"].find_one({"_id": ObjectId(location_id)})["parking_spots"][0]

    payload = location_payload(fleet["country"], name="Nice Côte d'Azur", parking_spots=[
        {"name": "Station", "latitude": 43.70, "longitude": 7.26},
    ])
    assert client.put(f"/api/update-location/{location_id}", json=payload, headers=headers).status_code == 200

    location = client.get(f"/api/location/{location_id}").json()
    assert location["name"] == "Nice Côte d'Azur"
    assert location["country"]["name"] == "France"
    assert [s["name"] for s in location["parking_spots"]] == ["Station"]
    assert db["parking_spot"].find_one({"_id": old_spot}) is None


def test_update_location_rejects_foreign_parking_spot(client, db, fleet, admin):
    headers = auth_headers(admin)
    nice = client.post("/api/create-location", json=location_payload(fleet["country"]), headers=headers).json()["id"]
    cannes = client.post(
        "/api/create-location", json=location_payload(fleet["country"], name="Cannes"), headers=headers
    ).json()["id"]
    cannes_spot = db["location"].find_one({"_id": ObjectId(cannes)})["parking_spots"][0]

    payload = location_payload(fleet["country"], parking_spots=[
        {"id": str(cannes_spot), "name": "Taken", "latitude": 43.55, "longitude": 7.01},
    ])
    assert client.put(f"/api/update-location/{nice}", json=payload, headers=headers).status_code == 400
    assert db["parking_spot"].find_one({"_id": cannes_spot})["name"] == "Airport T1"
    assert len(db["location"].find_one({"_id": ObjectId(nice)})["parking_spots"]) == 1

    client.delete(f"/api/delete-location/{nice}", headers=headers)
    assert db["parking_spot"].find_one({"_id": cannes_spot}) is not None


def test_update_location_unknown_country(client, db, fleet, admin):
    headers = auth_headers(admin)
    location_id = client.post("/api/create-location", json=location_payload(fleet["country"]), headers=headers).json()["id"]
    r = client.put(f"/api/update-location/{location_id}", json=location_payload(ObjectId()), headers=headers)
    assert r.status_code == 404
    assert db["location"].find_one({"_id": ObjectId(location_id)})["country"] == fleet["country"]


def test_delete_location_cascades(client, db, fleet, admin):
    headers = auth_headers(admin)
    location_id = client.post("/api/create-location", json=location_payload(fleet["country"]), headers=headers).json()["id"]
    assert client.delete(f"/api/delete-location/{location_id}", headers=headers).status_code == 200
    assert db["parking_spot"].count_documents({}) == 0
    assert client.get(f"/api/location/{location_id}").status_code == 404


def test_locations_paging(client, fleet):
    page = client.get("/api/locations/1/1").json()
    assert page["total_records"] == 2
    assert page["result_data"][0]["name"] == "Lyon"
    assert page["result_data"][0]["country"]["name"] == "France"

    page = client.get("/api/locations/1/10", params={"s": "par"}).json()
    assert [loc["name"] for loc in page["result_data"]] == ["Paris"]


def test_locations_with_position(client, db, fleet):
    db["location"].insert_one({"name": "Nowhere", "country": fleet["country"], "latitude": None, "longitude": None})
    names = [loc["name"] for loc in client.get("/api/locations-with-position").json()]
    assert names == ["Lyon", "Paris"]


def test_check_location_and_lookup_by_name(client, db, fleet):
    assert client.get(f"/api/check-location/{fleet['paris']}").status_code == 200
    unused = db["location"].insert_one({"name": "Brest", "country": fleet["country"]}).inserted_id
    assert client.get(f"/api/check-location/{unused}").status_code == 204
    assert client.get("/api/location-id/paris").json() == str(fleet["paris"])


def test_location_image_upload(client, db, fleet, admin):
    headers = auth_headers(admin)
    files = {"image": ("paris.png", png_bytes(), "image/png")}
    r = client.post(f"/api/update-location-image/{fleet['paris']}", files=files, headers=headers)
    assert r.status_code == 200
    filename = r.json()
    assert storage.exists(config.CDN_LOCATIONS, filename)

    assert client.post(f"/api/delete-location-image/{fleet['paris']}", headers=headers).status_code == 200
    assert db["location"].find_one({"_id": fleet["paris"]})["image"] is None
    assert not storage.exists(config.CDN_LOCATIONS, filename)


def test_invalid_image_upload(client, admin):
    files = {"image": ("bad.png", b"nope", "image/png")}
    assert client.post("/api/create-location-image", files=files, headers=auth_headers(admin)).status_code == 400


def test_supplier_locations(client, db, fleet, supplier, make_user):
    other = make_user("other@bookcars.com", type="supplier")
    marseille = db["location"].insert_one({"name": "Marseille", "country": fleet["country"]}).inserted_id
    db["car"].insert_one(car_doc(other["_id"], [marseille]))

    page = client.get(f"/api/supplier-locations/{supplier['_id']}/1/10").json()
    assert sorted(loc["name"] for loc in page["result_data"]) == ["Lyon", "Paris"]
