from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from fastapi import HTTPException

import pricing
from conftest import car_doc

START = datetime(2030, 1, 1, 9, 0)


def car(**overrides):
    return car_doc(ObjectId(), [ObjectId()], **overrides)


def test_days_rounds_started_days_up():
    assert pricing.days(START, START + timedelta(days=2)) == 2
    assert pricing.days(START, START + timedelta(days=2, hours=1)) == 3
    assert pricing.days(START, START + timedelta(minutes=5)) == 1


def test_days_accepts_aware_datetimes():
    aware = START.replace(tzinfo=timezone.utc)
    assert pricing.days(aware, START + timedelta(days=1)) == 1


def test_days_rejects_empty_or_reversed_period():
    with pytest.raises(ValueError):
        pricing.days(START, START)
    with pytest.raises(ValueError):
        pricing.days(START, START - timedelta(days=1))


def test_daily_price_only():
    assert pricing.rental_price(car(weekly_price=None), 3) == 150.0


def test_weekly_tier_then_remaining_days():
    assert pricing.rental_price(car(), 10) == 300.0 + 3 * 50.0


def test_tiers_are_applied_greedily():
    c = car(monthly_price=1000.0, bi_weekly_price=600.0, weekly_price=320.0, daily_price=50.0)
    # 30 + 14 + 7 + 2
    assert pricing.rental_price(c, 53) == 1000.0 + 600.0 + 320.0 + 100.0


def test_discounted_prices_replace_regular_ones():
    c = car(discounted_daily_price=40.0, weekly_price=300.0, discounted_weekly_price=250.0)
    assert pricing.rental_price(c, 8) == 250.0 + 40.0


def test_options_price_one_time_and_daily():
    options = {"cancellation": True, "theft_protection": True, "additional_driver": True}
    assert pricing.options_price(car(), 3, options) == 10.0 + 3 * 5.0 + 3 * 3.0


def test_unavailable_and_included_options_are_free():
    options = {"amendments": True, "collision_damage_waiver": True, "full_insurance": True}
    assert pricing.options_price(car(), 4, options) == 0


def test_options_from_object_attributes():
    class Options:
        cancellation = True
        theft_protection = False

    assert pricing.options_price(car(), 2, Options()) == 10.0


def test_calculate_total_price():
    total = pricing.calculate_total_price(car(), START, START + timedelta(days=3), {"theft_protection": True})
    assert total == 150.0 + 15.0


def test_calculate_booking_price_loads_the_car(db):
    car_id = db["car"].insert_one(car()).inserted_id
    booking = {"car": str(car_id), "from_date": START, "to_date": START + timedelta(days=2), "cancellation": True}
    assert pricing.calculate_booking_price(db, booking) == 110.0


def test_calculate_booking_price_unknown_car(db):
    booking = {"car": str(ObjectId()), "from_date": START, "to_date": START + timedelta(days=2)}
    with pytest.raises(HTTPException) as e:
        pricing.calculate_booking_price(db, booking)
    assert e.value.status_code == 404


def test_calculate_booking_price_bad_period(db):
    car_id = db["car"].insert_one(car()).inserted_id
    booking = {"car": str(car_id), "from_date": START, "to_date": START}
    with pytest.raises(HTTPException) as e:
        pricing.calculate_booking_price(db, booking)
    assert e.value.status_code == 400
