import logging
import os
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, HTTPException, Path, Response
from pymongo.database import Database

import config
import notifications
import storage
from auth import assert_can_manage_supplier, get_current_user, is_admin, is_supplier, require_backend_user
from database import create_document, get_db, update_document
from helpers import (
    escape_regex,
    facet_page,
    is_valid_object_id,
    now,
    optional_object_id,
    parse_object_id,
    parse_object_ids,
    serialize_doc,
    supplier_info,
    unpack_facet,
    utc,
)
from pricing import calculate_booking_price
from routes.users import send_activation_email
from schemas import (
    AdditionalDriver,
    BookingPayload,
    BookingStatus,
    CheckoutPayload,
    DriverPayload,
    GetBookingsPayload,
    PaymentMethod,
    PricePayload,
    UpdateStatusPayload,
    UpsertBookingPayload,
    User,
    UserType,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Bookings"])

BOOKING_NOTIFICATION = "made the booking"
BOOKING_PAID_NOTIFICATION = "paid the booking"
CANCEL_BOOKING_NOTIFICATION = "requested the cancellation of the booking"

DOCUMENT_KEYS = ("license_recto", "license_verso", "id_recto", "id_verso")


def booking_values(booking: BookingPayload) -> Dict[str, Any]:
    """Booking payload as stored: ObjectId refs, naive UTC dates."""
    values = booking.model_dump(exclude={"id"})
    for field in ("supplier", "car", "pickup_location", "drop_off_location"):
        values[field] = parse_object_id(values[field], field.replace("_", " "))
    values["driver"] = optional_object_id(values.get("driver"), "driver")
    values["additional_driver_id"] = optional_object_id(values.get("additional_driver_id"), "additional driver")
    values["from_date"] = utc(booking.from_date)
    values["to_date"] = utc(booking.to_date)
    values["expire_at"] = utc(booking.expire_at)
    return values


def _get_booking(db: Database, booking_id: Any) -> Dict[str, Any]:
    booking = db["booking"].find_one({"_id": parse_object_id(booking_id, "booking id")})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def _find_supplier(db: Database, supplier_id: Any) -> Dict[str, Any]:
    supplier = db["user"].find_one({"_id": supplier_id, "type": UserType.SUPPLIER.value})
    if not supplier:
        raise HTTPException(status_code=404, detail=f"Supplier {supplier_id} not found")
    return supplier


def _price(db: Database, values: Dict[str, Any]) -> float:
    return calculate_booking_price(db, {**values, "car": str(values["car"])})


def _create_additional_driver(db: Database, additional_driver: AdditionalDriver) -> ObjectId:
    return parse_object_id(create_document("additional_driver", additional_driver, database=db))


@router.post("/create-booking")
def create_booking(
    payload: UpsertBookingPayload,
    user: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    """Back-office booking, paid in cash."""
    values = booking_values(payload.booking)
    assert_can_manage_supplier(user, values["supplier"])
    if values["driver"] is None:
        raise HTTPException(status_code=400, detail="Driver is required")

    if payload.booking.additional_driver:
        if payload.additional_driver is None:
            raise HTTPException(status_code=400, detail="Additional driver is required")
        values["additional_driver_id"] = _create_additional_driver(db, payload.additional_driver)

    if values.get("price") is None:
        values["price"] = _price(db, values)
    values["payment_method"] = PaymentMethod.CASH.value
    values["paid_amount"] = values["price"]

    booking_id = parse_object_id(create_document("booking", values, database=db))
    db["user"].update_one({"_id": values["driver"]}, {"$addToSet": {"suppliers": values["supplier"]}})
    logger.info(f"Booking created: {booking_id}")
    return serialize_doc(db["booking"].find_one({"_id": booking_id}))


def _move_driver_documents(db: Database, user: Dict[str, Any], driver: DriverPayload) -> Dict[str, Any]:
    """Move the temp license/id scans and signature next to the user's documents."""
    values: Dict[str, Any] = {}
    documents = dict(user.get("documents") or {})

    if driver.documents:
        for key in DOCUMENT_KEYS:
            temp = getattr(driver.documents, key)
            if not temp or not storage.exists(config.CDN_TEMP_LICENSES, temp):
                continue
            if documents.get(key):
                storage.delete_file(config.CDN_LICENSES, documents[key])
            filename = f"{user['_id']}_{key}{os.path.splitext(temp)[1]}"
            documents[key] = storage.move_temp_file(config.CDN_TEMP_LICENSES, config.CDN_LICENSES, temp, filename)
        values["documents"] = documents

    if driver.signature and storage.exists(config.CDN_TEMP_LICENSES, driver.signature):
        filename = f"{user['_id']}_signature{os.path.splitext(driver.signature)[1]}"
        values["signature"] = storage.move_temp_file(
            config.CDN_TEMP_LICENSES, config.CDN_LICENSES, driver.signature, filename
        )

    if values:
        update_document("user", user["_id"], values, database=db)
    return values


def _checkout_driver(db: Database, driver: DriverPayload, supplier: Dict[str, Any], pay_later: bool) -> Dict[str, Any]:
    """Update the driver with this email, or create it and mail an activation link."""
    email = driver.email.lower()
    existing = db["user"].find_one({"email": email})

    if existing:
        update_document("user", existing["_id"], {
            "full_name": driver.full_name.strip(),
            "phone": driver.phone,
            "birth_date": utc(driver.birth_date),
            "national_id": driver.national_id,
            "language": driver.language.lower(),
        }, database=db)
        db["user"].update_one({"_id": existing["_id"]}, {"$addToSet": {"suppliers": supplier["_id"]}})
        existing = db["user"].find_one({"_id": existing["_id"]})
        _move_driver_documents(db, existing, driver)
        return db["user"].find_one({"_id": existing["_id"]})

    values = User(
        email=email,
        full_name=driver.full_name,
        phone=driver.phone,
        birth_date=driver.birth_date,
        language=driver.language,
        national_id=driver.national_id,
        license_id=driver.license_id,
        active=True,
    ).model_dump()
    values["birth_date"] = utc(driver.birth_date)
    values["suppliers"] = [supplier["_id"]]
    values["documents"] = None
    values["expire_at"] = None if pay_later else now()

    user_id = parse_object_id(create_document("user", values, database=db))
    user = db["user"].find_one({"_id": user_id})
    _move_driver_documents(db, user, driver)
    user = db["user"].find_one({"_id": user_id})
    send_activation_email(db, user)
    return user


def _notify_supplier_and_admin(
    db: Database, driver: Dict[str, Any], supplier: Dict[str, Any], booking_id: Any, message: str
) -> None:
    notifications.notify(db, driver, booking_id, supplier, message)
    notifications.notify_admin(db, driver, booking_id, message)


@router.post("/checkout")
def checkout(payload: CheckoutPayload, db: Database = Depends(get_db)):
    """Storefront checkout. Pay-later bookings are pending; card bookings stay void until confirm-checkout."""
    values = booking_values(payload.booking)
    supplier = _find_supplier(db, values["supplier"])

    if payload.driver:
        if supplier.get("license_required") and not payload.driver.documents:
            raise HTTPException(status_code=400, detail="Driver's license required")
        user = _checkout_driver(db, payload.driver, supplier, payload.pay_later)
    else:
        user = db["user"].find_one({"_id": values["driver"]}) if values["driver"] else None
        if not user:
            raise HTTPException(status_code=404, detail=f"User {values['driver']} not found")
        db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"suppliers": supplier["_id"]}})

    values["driver"] = user["_id"]

    if payload.booking.additional_driver and payload.additional_driver:
        values["additional_driver_id"] = _create_additional_driver(db, payload.additional_driver)
    else:
        values["additional_driver"] = False
        values["additional_driver_id"] = None

    values["price"] = _price(db, values)
    values["cancel_request"] = False
    if payload.pay_later:
        values["status"] = BookingStatus.PENDING.value
        values["expire_at"] = None
    else:
        values["status"] = BookingStatus.VOID.value
        values["payment_method"] = PaymentMethod.CARD.value
        values["session_id"] = payload.session_id
        values["payment_intent_id"] = payload.payment_intent_id
        values["customer_id"] = payload.customer_id
        values["expire_at"] = now()

    booking_id = parse_object_id(create_document("booking", values, database=db))
    booking = db["booking"].find_one({"_id": booking_id})

    if payload.pay_later:
        if not notifications.confirm(db, user, supplier, booking, True):
            raise HTTPException(status_code=400, detail="Booking confirmation failed")
        _notify_supplier_and_admin(db, user, supplier, booking_id, BOOKING_NOTIFICATION)

    logger.info(f"Checkout completed: booking {booking_id} ({values['status']})")
    return {"booking_id": str(booking_id)}


@router.post("/confirm-checkout/{booking_id}/{session_id}")
def confirm_checkout(booking_id: str, session_id: str, db: Database = Depends(get_db)):
    """Payment succeeded: the temporary booking becomes paid and permanent."""
    _id = parse_object_id(booking_id, "booking id")
    booking = db["booking"].find_one({"_id": _id, "session_id": session_id, "status": BookingStatus.VOID.value})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    update_document("booking", _id, {
        "status": BookingStatus.PAID.value,
        "paid_amount": booking.get("price"),
        "expire_at": None,
    }, database=db)
    update_document("user", booking["driver"], {"expire_at": None}, database=db)

    user = db["user"].find_one({"_id": booking["driver"]})
    supplier = db["user"].find_one({"_id": booking["supplier"]})
    if not user or not supplier:
        raise HTTPException(status_code=404, detail="Driver or supplier not found")

    notifications.confirm(db, user, supplier, db["booking"].find_one({"_id": _id}), False)
    _notify_supplier_and_admin(db, user, supplier, _id, BOOKING_PAID_NOTIFICATION)
    return {"ok": True}


@router.put("/update-booking")
def update_booking(
    payload: UpsertBookingPayload,
    user: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    if not payload.booking.id:
        raise HTTPException(status_code=400, detail="Booking id is required")
    booking = _get_booking(db, payload.booking.id)
    assert_can_manage_supplier(user, booking["supplier"])

    values = booking_values(payload.booking)
    assert_can_manage_supplier(user, values["supplier"])
    additional_driver_id = booking.get("additional_driver_id")

    if not payload.booking.additional_driver and additional_driver_id:
        db["additional_driver"].delete_one({"_id": additional_driver_id})
        additional_driver_id = None
    elif payload.booking.additional_driver and payload.additional_driver:
        if additional_driver_id:
            if not update_document(
                "additional_driver", additional_driver_id, payload.additional_driver.model_dump(), database=db
            ):
                logger.info(f"Additional Driver {additional_driver_id} not found")
                raise HTTPException(status_code=404, detail="Additional driver not found")
        else:
            additional_driver_id = _create_additional_driver(db, payload.additional_driver)

    values["additional_driver_id"] = additional_driver_id
    for field in ("session_id", "payment_intent_id", "customer_id", "cancel_request"):
        values.pop(field, None)
    if values.get("price") is None:
        values.pop("price")

    previous_status = booking.get("status")
    update_document("booking", booking["_id"], values, database=db)
    updated = db["booking"].find_one({"_id": booking["_id"]})

    if previous_status != updated.get("status"):
        notifications.notify_driver(db, updated)

    return serialize_doc(updated)


def _scope(user: Dict[str, Any], match: Dict[str, Any]) -> Dict[str, Any]:
    """Suppliers only touch their own bookings."""
    if is_supplier(user):
        match["supplier"] = user["_id"]
    return match


@router.post("/update-booking-status")
def update_booking_status(
    payload: UpdateStatusPayload,
    user: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    match = _scope(user, {"_id": {"$in": parse_object_ids(payload.ids, "booking id")}})
    bookings = list(db["booking"].find(match))
    db["booking"].update_many(match, {"$set": {"status": payload.status, "updated_at": now()}})

    notified = 0
    for booking in bookings:
        if booking.get("status") != payload.status:
            booking["status"] = payload.status
            notifications.notify_driver(db, booking)
            notified += 1
    return {"updated": len(bookings), "notified": notified}


@router.post("/delete-bookings")
def delete_bookings(
    ids: List[str] = Body(..., min_length=1),
    user: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    match = _scope(user, {"_id": {"$in": parse_object_ids(ids, "booking id")}})
    bookings = list(db["booking"].find(match, {"additional_driver_id": 1}))
    driver_ids = [b["additional_driver_id"] for b in bookings if b.get("additional_driver_id")]

    result = db["booking"].delete_many(match)
    if driver_ids:
        db["additional_driver"].delete_many({"_id": {"$in": driver_ids}})
    return {"deleted": result.deleted_count}


@router.delete("/delete-temp-booking/{booking_id}/{session_id}")
def delete_temp_booking(booking_id: str, session_id: str, db: Database = Depends(get_db)):
    """Drop an abandoned card checkout together with its unverified temp driver."""
    booking = db["booking"].find_one({
        "_id": parse_object_id(booking_id, "booking id"),
        "session_id": session_id,
        "status": BookingStatus.VOID.value,
        "expire_at": {"$ne": None},
    })
    if booking:
        db["user"].delete_one({"_id": booking.get("driver"), "verified": False, "expire_at": {"$ne": None}})
        if booking.get("additional_driver_id"):
            db["additional_driver"].delete_one({"_id": booking["additional_driver_id"]})
        db["booking"].delete_one({"_id": booking["_id"]})
    return {"ok": True}


def _can_view(user: Dict[str, Any], booking: Dict[str, Any]) -> bool:
    if is_admin(user):
        return True
    if is_supplier(user):
        return booking.get("supplier") == user["_id"]
    return booking.get("driver") == user["_id"]


@router.get("/booking/{booking_id}")
def get_booking(booking_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    booking = _get_booking(db, booking_id)
    if not _can_view(user, booking):
        raise HTTPException(status_code=403, detail="Not allowed")

    booking["supplier"] = supplier_info(db["user"].find_one({"_id": booking.get("supplier")}))
    car = db["car"].find_one({"_id": booking.get("car")})
    if car:
        car["supplier"] = supplier_info(db["user"].find_one({"_id": car.get("supplier")}))
    booking["car"] = car
    booking["driver"] = db["user"].find_one({"_id": booking.get("driver")})
    booking["pickup_location"] = db["location"].find_one({"_id": booking.get("pickup_location")})
    booking["drop_off_location"] = db["location"].find_one({"_id": booking.get("drop_off_location")})
    if booking.get("additional_driver_id"):
        booking["additional_driver_info"] = db["additional_driver"].find_one({"_id": booking["additional_driver_id"]})
    return serialize_doc(booking)


@router.get("/booking-id/{session_id}")
def get_booking_id(session_id: str, db: Database = Depends(get_db)):
    booking = db["booking"].find_one({"session_id": session_id}, {"_id": 1})
    if not booking:
        logger.error(f"[booking.get_booking_id] Booking not found (session_id): {session_id}")
        raise HTTPException(status_code=404, detail="Booking not found")
    return str(booking["_id"])


def _lookup(collection: str, field: str) -> List[Dict[str, Any]]:
    return [
        {"$lookup": {"from": collection, "localField": field, "foreignField": "_id", "as": field}},
        {"$unwind": {"path": f"${field}", "preserveNullAndEmptyArrays": False}},
    ]


def bookings_match(payload: GetBookingsPayload) -> Dict[str, Any]:
    """Match stage applied after the supplier, car, driver and location joins."""
    conditions: List[Dict[str, Any]] = [
        {"supplier._id": {"$in": parse_object_ids(payload.suppliers, "supplier id")}},
        {"status": {"$in": list(payload.statuses)}},
        {"expire_at": None},
    ]
    if payload.user:
        conditions.append({"driver._id": parse_object_id(payload.user, "user id")})
    if payload.car:
        conditions.append({"car._id": parse_object_id(payload.car, "car id")})

    f = payload.filter
    if f is not None:
        if f.from_date:
            conditions.append({"from_date": {"$gte": utc(f.from_date)}})
        if f.to_date:
            conditions.append({"to_date": {"$lte": utc(f.to_date)}})
        if f.pickup_location:
            conditions.append({"pickup_location._id": parse_object_id(f.pickup_location, "pick-up location")})
        if f.drop_off_location:
            conditions.append({"drop_off_location._id": parse_object_id(f.drop_off_location, "drop-off location")})
        if f.keyword:
            if is_valid_object_id(f.keyword):
                conditions.append({"_id": ObjectId(f.keyword)})
            else:
                keyword = escape_regex(f.keyword)
                conditions.append({"$or": [
                    {"supplier.full_name": {"$regex": keyword, "$options": "i"}},
                    {"driver.full_name": {"$regex": keyword, "$options": "i"}},
                    {"car.car_model": {"$regex": keyword, "$options": "i"}},
                ]})
    return {"$and": conditions}


@router.post("/bookings/{page}/{size}")
def get_bookings(
    payload: GetBookingsPayload,
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if user.get("type") == UserType.USER.value:
        payload.user = str(user["_id"])
    elif is_supplier(user):
        payload.suppliers = [str(user["_id"])]

    pipeline = [
        *_lookup("user", "supplier"),
        *_lookup("car", "car"),
        *_lookup("user", "driver"),
        *_lookup("location", "pickup_location"),
        *_lookup("location", "drop_off_location"),
        {"$match": bookings_match(payload)},
        facet_page(page, size, {"created_at": -1, "_id": 1}),
    ]
    result = unpack_facet(list(db["booking"].aggregate(pipeline)))
    for booking in result["result_data"]:
        supplier = booking.get("supplier") or {}
        booking["supplier"] = {k: supplier.get(k) for k in ("id", "full_name", "avatar")}
    return result


@router.get("/has-bookings/{driver}")
def has_bookings(driver: str, db: Database = Depends(get_db)):
    """200 when the driver has bookings, 204 otherwise."""
    if db["booking"].count_documents({"driver": parse_object_id(driver, "driver id")}, limit=1):
        return Response(status_code=200)
    return Response(status_code=204)


@router.post("/cancel-booking/{booking_id}")
def cancel_booking(booking_id: str, user: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    """Driver cancellation request, accepted once and only with the cancellation option."""
    booking = _get_booking(db, booking_id)
    if not (is_admin(user) or booking.get("driver") == user["_id"]):
        raise HTTPException(status_code=403, detail="Not allowed")

    if not booking.get("cancellation") or booking.get("cancel_request"):
        return Response(status_code=204)

    update_document("booking", booking["_id"], {"cancel_request": True}, database=db)

    driver = db["user"].find_one({"_id": booking.get("driver")}) or {}
    supplier = db["user"].find_one({"_id": booking.get("supplier")})
    if not supplier:
        logger.info(f"Supplier {booking.get('supplier')} not found")
        return Response(status_code=204)
    notifications.notify(db, driver, booking["_id"], supplier, CANCEL_BOOKING_NOTIFICATION)
    notifications.notify_admin(db, driver, booking["_id"], CANCEL_BOOKING_NOTIFICATION)
    return {"ok": True}


@router.post("/booking-price")
def booking_price(payload: PricePayload, db: Database = Depends(get_db)):
    booking: Dict[str, Optional[Any]] = {
        "car": payload.car,
        "from_date": payload.from_date,
        "to_date": payload.to_date,
        **payload.options.model_dump(),
    }
    return {"price": calculate_booking_price(db, booking)}
