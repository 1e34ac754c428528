"""
Invoice data and PDF.

Invoice data is computed from one or more bookings, edited by the client,
then posted back to be rendered through templates/invoice.html.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import HTTPException
from playwright.sync_api import Error as PlaywrightError
from pymongo.database import Database

import config
from contract import data_uri, env, html_to_pdf
from helpers import now, parse_object_ids

logger = logging.getLogger(__name__)

ADDITIONAL_CHARGES = (
    ("cancellation", "Cancellation Insurance"),
    ("amendments", "Amendments Insurance"),
    ("collision_damage_waiver", "Collision Damage Waiver"),
    ("theft_protection", "Theft Protection"),
    ("full_insurance", "Full Insurance"),
    ("additional_driver", "Additional Driver"),
)


def _zone(client_timezone: Optional[str]):
    if not client_timezone:
        return timezone.utc
    try:
        return ZoneInfo(client_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {client_timezone}, using UTC")
        return timezone.utc


def format_date(value: datetime, client_timezone: Optional[str] = None) -> str:
    """dd/mm/YYYY in the client's timezone; stored datetimes are naive UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(_zone(client_timezone)).strftime("%d/%m/%Y")


def _item(booking: Dict[str, Any], car: Dict[str, Any], client_timezone: Optional[str]) -> Dict[str, Any]:
    days = max(1, math.ceil((booking["to_date"] - booking["from_date"]).total_seconds() / 86400))
    price = float(booking.get("price") or 0)

    item: Dict[str, Any] = {
        "designation": (
            f"{car.get('brand', '')} {car.get('car_model', '')} Plate {car.get('plate_number', '')} "
            f"From {format_date(booking['from_date'], client_timezone)} "
            f"to {format_date(booking['to_date'], client_timezone)}"
        ),
        "days": days,
        "price_per_day": f"{price / days:.2f}",
        "total": f"{price:.2f}",
    }

    charges = [
        {"name": label, "amount": f"{float(car.get(field) or 0):.2f}"}
        for field, label in ADDITIONAL_CHARGES
        if booking.get(field)
    ]
    if charges:
        item["additional_charges"] = charges
    return item


def get_invoice_data(db: Database, booking_ids: List[str], client_timezone: Optional[str] = None) -> Dict[str, Any]:
    if not booking_ids:
        raise HTTPException(status_code=400, detail="No booking IDs provided")

    ids = parse_object_ids(booking_ids, "booking id")
    by_id = {b["_id"]: b for b in db["booking"].find({"_id": {"$in": ids}})}
    bookings = [by_id[_id] for _id in ids if _id in by_id]
    if not bookings:
        raise HTTPException(status_code=404, detail="No bookings found")

    items = []
    total_excl_vat = 0.0
    for booking in bookings:
        car = db["car"].find_one({"_id": booking.get("car")}) or {}
        items.append(_item(booking, car, client_timezone))
        total_excl_vat += float(booking.get("price") or 0)

    first = bookings[0]
    supplier = db["user"].find_one({"_id": first.get("supplier")}) or {}
    driver = db["user"].find_one({"_id": first.get("driver")}) or {}

    vat_amount = total_excl_vat * config.VAT_PERCENTAGE / 100

    return {
        "invoice_number": str(first["_id"]),
        "date": now().isoformat(),
        "client_timezone": client_timezone,
        "supplier": {
            "bio": supplier.get("bio") or "",
            "company_logo": supplier.get("avatar") or "",
            "signature": supplier.get("signature") or "",
        },
        "client": {
            "name": driver.get("full_name") or "",
            "ice": driver.get("ice") or "",
        },
        "items": items,
        "total_excl_vat": f"{total_excl_vat:.2f}",
        "vat_percentage": config.VAT_PERCENTAGE,
        "vat_amount": f"{vat_amount:.2f}",
        "total_incl_vat": f"{total_excl_vat + vat_amount:.2f}",
        "place": "",
    }


def _parse_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return now()


def render_invoice_html(data: Dict[str, Any], signed: bool, currency_symbol: str) -> str:
    supplier = data.get("supplier") or {}
    context = {
        "company_logo": data_uri(config.CDN_USERS, supplier.get("company_logo"), "Company logo"),
        "signature": data_uri(config.CDN_LICENSES, supplier.get("signature"), "Signature") if signed else "",
        "invoice_number": data.get("invoice_number"),
        "date": format_date(_parse_date(data.get("date")), data.get("client_timezone")),
        "supplier": supplier,
        "client": data.get("client") or {},
        "items": data.get("items") or [],
        "currency_symbol": currency_symbol,
        "total_excl_vat": data.get("total_excl_vat"),
        "vat_percentage": data.get("vat_percentage"),
        "vat_amount": data.get("vat_amount"),
        "total_incl_vat": data.get("total_incl_vat"),
        "place": data.get("place") or "",
    }
    return env.get_template("invoice.html").render(**context)


def generate_invoice(data: Dict[str, Any], signed: bool, currency_symbol: str) -> bytes:
    html = render_invoice_html(data, signed, currency_symbol)
    try:
        return html_to_pdf(html)
    except PlaywrightError as e:
        logger.error(f"[invoice.generate_invoice] {e}")
        raise HTTPException(status_code=500, detail="Error generating invoice") from e
