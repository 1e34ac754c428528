"""
Booking price calculation.

Rental days are billed greedily by tier: 30-day months, then 14-day
bi-weekly blocks, then 7-day weeks, then single days. A discounted tier
price replaces the regular one when it is set. Option prices are added on
top, once per booking for cancellation/amendments and per day for the
insurance and additional-driver options.
"""

import math
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Union

from fastapi import HTTPException
from pymongo.database import Database

from helpers import parse_object_id, utc

# (block length in days, regular price field, discounted price field)
TIERS = (
    (30, "monthly_price", "discounted_monthly_price"),
    (14, "bi_weekly_price", "discounted_bi_weekly_price"),
    (7, "weekly_price", "discounted_weekly_price"),
)

ONE_TIME_OPTIONS = ("cancellation", "amendments")
DAILY_OPTIONS = ("theft_protection", "collision_damage_waiver", "full_insurance", "additional_driver")


def days(from_date: datetime, to_date: datetime) -> int:
    """Number of billed days, any started day counts as a full one."""
    seconds = (utc(to_date) - utc(from_date)).total_seconds()
    if seconds <= 0:
        raise ValueError("Drop-off must be after pickup")
    return math.ceil(seconds / 86400)


def _tier_price(car: Mapping[str, Any], regular: str, discounted: str) -> Optional[float]:
    price = car.get(discounted) or car.get(regular)
    return float(price) if price else None


def _option_enabled(options: Union[Mapping[str, Any], Any, None], name: str) -> bool:
    if options is None:
        return False
    if isinstance(options, Mapping):
        return bool(options.get(name))
    return bool(getattr(options, name, False))


def rental_price(car: Mapping[str, Any], total_days: int) -> float:
    remaining = total_days
    total = 0.0

    for length, regular, discounted in TIERS:
        price = _tier_price(car, regular, discounted)
        if price is not None and remaining >= length:
            blocks = remaining // length
            total += blocks * price
            remaining -= blocks * length

    if remaining > 0:
        daily = _tier_price(car, "daily_price", "discounted_daily_price") or 0.0
        total += remaining * daily

    return total


def options_price(car: Mapping[str, Any], total_days: int, options: Any) -> float:
    total = 0.0
    for name in ONE_TIME_OPTIONS:
        if _option_enabled(options, name) and (car.get(name) or 0) > 0:
            total += float(car[name])
    for name in DAILY_OPTIONS:
        if _option_enabled(options, name) and (car.get(name) or 0) > 0:
            total += float(car[name]) * total_days
    return total


def calculate_total_price(
    car: Mapping[str, Any],
    from_date: datetime,
    to_date: datetime,
    options: Any = None,
) -> float:
    total_days = days(from_date, to_date)
    total = rental_price(car, total_days) + options_price(car, total_days, options)
    return round(total, 2)


def calculate_booking_price(db: Database, booking: Union[Dict[str, Any], Any]) -> float:
    """Load the booking's car and price the booking with its selected options."""
    get = booking.get if isinstance(booking, Mapping) else lambda k: getattr(booking, k, None)
    car = db["car"].find_one({"_id": parse_object_id(get("car"), "car id")})
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")
    try:
        return calculate_total_price(car, get("from_date"), get("to_date"), booking)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
