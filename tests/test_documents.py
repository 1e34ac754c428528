from datetime import datetime

import pytest
from bson import ObjectId
from fastapi import HTTPException
from playwright.sync_api import Error as PlaywrightError

import config
import contract
import invoice
from conftest import auth_headers, insert_booking, touch


@pytest.fixture
def fake_pdf(monkeypatch):
    rendered = []

    def html_to_pdf(html):
        rendered.append(html)
        return b"%PDF-1.4 fake"

    monkeypatch.setattr(contract, "html_to_pdf", html_to_pdf)
    monkeypatch.setattr(invoice, "html_to_pdf", html_to_pdf)
    return rendered


def test_contract_context(db, supplier, driver, fleet):
    additional = db["additional_driver"].insert_one({
        "full_name": "Bob Second", "license_id": "L-2", "birth_date": datetime(1990, 5, 4),
    }).inserted_id
    booking = insert_booking(db, supplier, driver, fleet, price=150.0, deposit=500.0, additional_driver_id=additional)

    context = contract.build_contract_context(contract.load_booking(db, str(booking["_id"])), "€")
    assert context["contract_number"] == str(booking["_id"])
    assert context["supplier"]["name"] == "Fast Rentals"
    assert context["driver"]["first_name"] == "Jane"
    assert context["driver"]["last_name"] == "Driver"
    assert context["additional_driver"]["birth_date"] == "04/05/1990"
    assert context["car"]["name"] == "Renault Clio"
    assert context["car"]["mileage"] == 0
    assert context["days"] == 3
    assert context["price_per_day"] == "50.00 €"
    assert context["vat"] == "30.00 €"
    assert context["total_incl_vat"] == "180.00 €"
    assert context["deposit"] == "500.00 €"


def test_contract_logo_is_inlined(db, supplier, driver, fleet):
    touch(config.CDN_USERS, "logo.png", b"\x89PNG")
    db["user"].update_one({"_id": supplier["_id"]}, {"$set": {"avatar": "logo.png"}})
    booking = insert_booking(db, supplier, driver, fleet)
    context = contract.build_contract_context(contract.load_booking(db, str(booking["_id"])), "$")
    assert context["supplier"]["logo"].startswith("data:image/png;base64,")


def test_load_unknown_booking(db):
    with pytest.raises(HTTPException) as e:
        contract.load_booking(db, str(ObjectId()))
    assert e.value.status_code == 404


def test_download_contract(client, db, supplier, driver, fleet, fake_pdf, make_user):
    booking = insert_booking(db, supplier, driver, fleet)
    r = client.get(f"/api/contract/{booking['_id']}/€", headers=auth_headers(driver))
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert f'filename="contract_{booking["_id"]}.pdf"' in r.headers["content-disposition"]
    assert r.content == b"%PDF-1.4 fake"
    assert "Jane" in fake_pdf[0]

    stranger = make_user("stranger@mail.com")
    assert client.get(f"/api/contract/{booking['_id']}/€", headers=auth_headers(stranger)).status_code == 403
    assert client.get(f"/api/contract/{booking['_id']}/€", headers=auth_headers(supplier)).status_code == 200


def test_contract_generation_failure(db, supplier, driver, fleet, monkeypatch):
    def broken(html):
        raise PlaywrightError("browser crashed")

    monkeypatch.setattr(contract, "html_to_pdf", broken)
    booking = insert_booking(db, supplier, driver, fleet)
    with pytest.raises(HTTPException) as e:
        contract.generate_contract(db, str(booking["_id"]), "€")
    assert e.value.status_code == 500
    assert e.value.detail == "Error generating contract"


def test_invoice_data(db, supplier, driver, fleet):
    db["user"].update_one({"_id": driver["_id"]}, {"$set": {"ice": "ICE-42"}})
    first = insert_booking(db, supplier, driver, fleet, price=150.0, cancellation=True)
    second = insert_booking(
        db, supplier, driver, fleet, price=100.0,
        from_date=datetime(2030, 7, 1, 23, 30), to_date=datetime(2030, 7, 3, 23, 30),
    )

    data = invoice.get_invoice_data(db, [str(first["_id"]), str(second["_id"])], "Europe/Paris")
    assert data["invoice_number"] == str(first["_id"])
    assert data["client"] == {"name": "Jane Driver", "ice": "ICE-42"}
    assert data["total_excl_vat"] == "250.00"
    assert data["vat_amount"] == "50.00"
    assert data["total_incl_vat"] == "300.00"

    first_item, second_item = data["items"]
    assert first_item["additional_charges"] == [{"name": "Cancellation Insurance", "amount": "10.00"}]
    assert first_item["price_per_day"] == "50.00"
    # 23:30 UTC is already the next day in Paris
    assert "From 02/07/2030 to 04/07/2030" in second_item["designation"]
    assert "additional_charges" not in second_item


def test_invoice_date_uses_client_timezone(db, supplier, driver, fleet, monkeypatch):
    monkeypatch.setattr(invoice, "now", lambda: datetime(2030, 1, 1, 23, 30))
    booking = insert_booking(db, supplier, driver, fleet)

    data = invoice.get_invoice_data(db, [str(booking["_id"])], "Asia/Tokyo")
    assert data["client_timezone"] == "Asia/Tokyo"
    assert "Date: 02/01/2030" in invoice.render_invoice_html(data, False, "€")

    data = invoice.get_invoice_data(db, [str(booking["_id"])])
    assert "Date: 01/01/2030" in invoice.render_invoice_html(data, False, "€")


def test_invoice_data_errors(db):
    with pytest.raises(HTTPException) as e:
        invoice.get_invoice_data(db, [])
    assert e.value.status_code == 400
    with pytest.raises(HTTPException) as e:
        invoice.get_invoice_data(db, [str(ObjectId())])
    assert e.value.status_code == 404


def test_unknown_timezone_falls_back_to_utc():
    assert invoice.format_date(datetime(2030, 1, 1, 23, 30), "Mars/Olympus") == "01/01/2030"


def test_invoice_endpoints(client, db, supplier, driver, fleet, fake_pdf):
    touch(config.CDN_LICENSES, "sign.png", b"\x89PNG")
    db["user"].update_one({"_id": supplier["_id"]}, {"$set": {"signature": "sign.png"}})
    booking = insert_booking(db, supplier, driver, fleet)
    headers = auth_headers(supplier)

    data = client.post("/api/invoice/data", json={"booking_ids": [str(booking["_id"])]}, headers=headers).json()
    data["place"] = "Paris"

    r = client.post("/api/invoice/generate", json={"signed": True, "data": data, "currency_symbol": "$"}, headers=headers)
    assert r.status_code == 200
    assert f'filename="invoice_{booking["_id"]}.pdf"' in r.headers["content-disposition"]
    assert "data:image/png;base64," in fake_pdf[0]
    assert "Paris" in fake_pdf[0]

    assert client.post("/api/invoice/data", json={"booking_ids": [str(booking["_id"])]}, headers=auth_headers(driver)).status_code == 403
