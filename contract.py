"""
Rental contract PDF.

The contract is rendered from templates/contract.html with Jinja2 and
printed to A4 by a headless Chromium driven through Playwright.
"""

import base64
import logging
import math
import mimetypes
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException
from jinja2 import Environment, FileSystemLoader, select_autoescape
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright
from pymongo.database import Database

import config
from helpers import now, parse_object_id

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)

PDF_MARGIN = {"top": "10px", "right": "10px", "bottom": "10px", "left": "10px"}


def format_date(value: Optional[datetime]) -> str:
    return value.strftime("%d/%m/%Y") if value else ""


def format_price(price: float, currency_symbol: str) -> str:
    return f"{price:.2f} {currency_symbol}"


def data_uri(folder: str, filename: Optional[str], label: str) -> str:
    """Image file as a base64 data URI, empty when the file is missing."""
    if not filename:
        return ""
    file_path = os.path.join(folder, os.path.basename(filename))
    mime = mimetypes.guess_type(file_path)[0] or "image/png"
    try:
        with open(file_path, "rb") as f:
            return f"data:{mime};base64,{base64.b64encode(f.read()).decode('ascii')}"
    except OSError as e:
        logger.error(f"[pdf] {label} not found: {e}")
        return ""


def split_name(full_name: Optional[str]) -> Tuple[str, str]:
    """First word is the first name, the rest the last name."""
    parts = (full_name or "").split(" ", 1)
    return parts[0], parts[1] if len(parts) > 1 else ""


def _driver_block(driver: Optional[Dict[str, Any]]) -> Dict[str, str]:
    driver = driver or {}
    first_name, last_name = split_name(driver.get("full_name"))
    return {
        "first_name": first_name,
        "last_name": last_name,
        "birth_date": format_date(driver.get("birth_date")),
        "birth_place": driver.get("location") or "",
        "license_id": driver.get("license_id") or "",
        "license_date": format_date(driver.get("license_delivery_date")),
        "phone": driver.get("phone") or "",
        "email": driver.get("email") or "",
    }


def build_contract_context(booking: Dict[str, Any], currency_symbol: str) -> Dict[str, Any]:
    """Template values for a booking with supplier, driver, car and additional_driver_info populated."""
    supplier = booking.get("supplier") or {}
    car = booking.get("car") or {}
    additional_driver = booking.get("additional_driver_info")

    seconds = (booking["to_date"] - booking["from_date"]).total_seconds()
    days = max(1, math.ceil(seconds / 86400))
    price = float(booking.get("price") or 0)
    vat = price * config.VAT_PERCENTAGE / 100

    return {
        "contract_number": str(booking["_id"]),
        "date": now().strftime("%d/%m/%Y %H:%M"),
        "supplier": {
            "name": supplier.get("full_name") or "",
            "address": supplier.get("location") or "",
            "phone": supplier.get("phone") or "",
            "email": supplier.get("email") or "",
            "logo": data_uri(config.CDN_USERS, supplier.get("avatar"), "Supplier logo"),
        },
        "driver": _driver_block(booking.get("driver")),
        "additional_driver": _driver_block(additional_driver) if additional_driver else None,
        "car": {
            "name": " ".join(filter(None, [car.get("brand"), car.get("car_model")])),
            "plate_number": car.get("plate_number") or "",
            "mileage": car.get("mileage") if car.get("mileage") not in (None, -1) else 0,
        },
        "from_date": format_date(booking["from_date"]),
        "to_date": format_date(booking["to_date"]),
        "days": days,
        "price_per_day": format_price(price / days, currency_symbol),
        "total_excl_vat": format_price(price, currency_symbol),
        "vat_percentage": f"{config.VAT_PERCENTAGE:g}",
        "vat": format_price(vat, currency_symbol),
        "total_incl_vat": format_price(price + vat, currency_symbol),
        "deposit": format_price(float(booking.get("deposit") or 0), currency_symbol),
    }


def render_contract_html(context: Dict[str, Any]) -> str:
    return env.get_template("contract.html").render(**context)


def html_to_pdf(html: str) -> bytes:
    """Print HTML to an A4 PDF with headless Chromium."""
    with sync_playwright() as p:
        browser = p.chromium.launch(args=["--no-sandbox", "--disable-setuid-sandbox"])
        try:
            page = browser.new_page()
            page.set_content(html, wait_until="networkidle")
            return page.pdf(format="A4", margin=PDF_MARGIN, print_background=True)
        finally:
            browser.close()


def load_booking(db: Database, booking_id: str) -> Dict[str, Any]:
    booking = db["booking"].find_one({"_id": parse_object_id(booking_id, "booking id")})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    booking["supplier"] = db["user"].find_one({"_id": booking.get("supplier")})
    booking["driver"] = db["user"].find_one({"_id": booking.get("driver")})
    booking["car"] = db["car"].find_one({"_id": booking.get("car")})
    booking["additional_driver_info"] = (
        db["additional_driver"].find_one({"_id": booking["additional_driver_id"]})
        if booking.get("additional_driver_id") else None
    )
    return booking


def generate_contract(db: Database, booking_id: str, currency_symbol: str) -> Tuple[str, bytes]:
    booking = load_booking(db, booking_id)
    html = render_contract_html(build_contract_context(booking, currency_symbol))
    try:
        pdf = html_to_pdf(html)
    except PlaywrightError as e:
        logger.error(f"[contract.generate_contract] {e}")
        raise HTTPException(status_code=500, detail="Error generating contract") from e
    return f"contract_{booking['_id']}.pdf", pdf
