"""
Booking notification flow.

A notification is stored for the recipient, its unread counter bumped, an
email sent when the recipient accepts them and, for drivers, an Expo push
message sent to the registered device.
"""

import logging
import os
from typing import Any, Dict, Optional

from pymongo.database import Database

import config
import mailer
import push
from helpers import join_url, now, optional_object_id
from schemas import UserType

logger = logging.getLogger(__name__)

BOOKING_UPDATED_MESSAGE = "Your booking {booking_id} has been updated."
DATE_FORMAT = "%A, %B %d, %Y %H:%M"


def _add_notification(db: Database, user_id: Any, message: str, booking_id: Any) -> Any:
    stamp = now()
    result = db["notification"].insert_one({
        "user": user_id,
        "message": message,
        "booking": optional_object_id(str(booking_id), "booking id") if booking_id else None,
        "is_read": False,
        "created_at": stamp,
        "updated_at": stamp,
    })
    db["notification_counter"].update_one(
        {"user": user_id},
        {"$inc": {"count": 1}, "$set": {"updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
        upsert=True,
    )
    return result.inserted_id


def _email(user: Dict[str, Any], subject: str, message: str, link: str) -> bool:
    html = mailer.render(
        "message",
        hello=f"Hello {user.get('full_name', '')},",
        lines=[message],
        link=link,
    )
    return mailer.send_mail(user["email"], subject, html)


def notify(db: Database, driver: Dict[str, Any], booking_id: Any, user: Dict[str, Any], message: str) -> None:
    """Tell a supplier or an admin about an action a driver took on a booking."""
    text = f"{driver.get('full_name', '')} {message} {booking_id}."
    _add_notification(db, user["_id"], text, booking_id)

    if user.get("enable_email_notifications", True):
        _email(user, text, text, join_url(config.BACKEND_HOST, f"update-booking?b={booking_id}"))


def notify_admin(db: Database, driver: Dict[str, Any], booking_id: Any, message: str) -> bool:
    if not config.ADMIN_EMAIL:
        return False
    admin = db["user"].find_one({"email": config.ADMIN_EMAIL.lower(), "type": UserType.ADMIN.value})
    if not admin:
        return False
    notify(db, driver, booking_id, admin, message)
    return True


def notify_driver(db: Database, booking: Dict[str, Any]) -> bool:
    """Tell the booking's driver that the booking changed."""
    driver = db["user"].find_one({"_id": booking.get("driver")})
    if not driver:
        logger.info(f"Driver {booking.get('driver')} not found")
        return False

    booking_id = booking["_id"]
    message = BOOKING_UPDATED_MESSAGE.format(booking_id=booking_id)
    notification_id = _add_notification(db, driver["_id"], message, booking_id)

    if driver.get("enable_email_notifications", True):
        _email(driver, message, message, join_url(config.FRONTEND_HOST, f"booking?b={booking_id}"))

    push_token = db["push_token"].find_one({"user": driver["_id"]})
    if push_token:
        token = push_token.get("token")
        if not push.is_push_token(token):
            logger.info(f"Push token {token} is not a valid Expo push token.")
            return True
        push.send_push_notifications([{
            "to": token,
            "sound": "default",
            "body": message,
            "data": {
                "user": str(driver["_id"]),
                "notification": str(notification_id),
                "booking": str(booking_id),
            },
        }])
    return True


def contract_file(supplier: Dict[str, Any], language: Optional[str]) -> Optional[str]:
    """Supplier contract in the driver's language, English otherwise."""
    contracts = supplier.get("contracts") or []
    for lang in (language, "en"):
        for contract in contracts:
            if contract.get("language") == lang and contract.get("file"):
                return contract["file"]
    return None


def confirm(
    db: Database,
    user: Dict[str, Any],
    supplier: Dict[str, Any],
    booking: Dict[str, Any],
    pay_later: bool,
) -> bool:
    """Send the checkout confirmation email to the driver."""
    car = db["car"].find_one({"_id": booking["car"]})
    if not car:
        logger.info(f"Car {booking['car']} not found")
        return False
    pickup_location = db["location"].find_one({"_id": booking["pickup_location"]})
    if not pickup_location:
        logger.info(f"Pick-up location {booking['pickup_location']} not found")
        return False
    drop_off_location = db["location"].find_one({"_id": booking["drop_off_location"]})
    if not drop_off_location:
        logger.info(f"Drop-off location {booking['drop_off_location']} not found")
        return False

    attachments = []
    filename = contract_file(supplier, user.get("language"))
    if filename:
        file_path = os.path.join(config.CDN_CONTRACTS, filename)
        if os.path.isfile(file_path):
            attachments.append(file_path)
        else:
            logger.warning(f"Contract file not found: {file_path}")

    html = mailer.render(
        "booking_confirmation",
        hello=f"Hello {user.get('full_name', '')},",
        pay_later=pay_later,
        booking_id=str(booking["_id"]),
        car_name=f"{car['brand']} {car['car_model']}",
        supplier_name=supplier.get("full_name"),
        pickup_location=pickup_location.get("name"),
        drop_off_location=drop_off_location.get("name"),
        from_date=booking["from_date"].strftime(DATE_FORMAT),
        to_date=booking["to_date"].strftime(DATE_FORMAT),
        contract_attached=bool(attachments),
    )
    mailer.send_mail(user["email"], f"Your booking {booking['_id']} is confirmed", html, attachments=attachments)
    return True
