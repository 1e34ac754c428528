import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, HTTPException, Path, Response, UploadFile
from pymongo.database import Database

import config
import storage
from auth import assert_can_manage_supplier, require_backend_user
from database import create_document, get_db, update_document
from helpers import (
    escape_regex,
    facet_page,
    parse_object_id,
    parse_object_ids,
    serialize_doc,
    supplier_info,
    unpack_facet,
)
from schemas import (
    Availability,
    Car,
    CreateCarPayload,
    GetBookingCarsPayload,
    GetCarsPayload,
    Mileage,
    UpdateCarPayload,
    UserType,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Cars"])


def model_identifier(car: Car) -> str:
    return f"{car.brand}_{car.car_model}_{car.year}_{car.type}".lower().replace(" ", "_")


def model_group(car: Car) -> str:
    return f"{car.brand}_{car.car_model}".lower().replace(" ", "_")


def _car_values(db: Database, car: Car) -> Dict[str, Any]:
    supplier_id = parse_object_id(car.supplier, "supplier id")
    if not db["user"].find_one({"_id": supplier_id, "type": UserType.SUPPLIER.value}):
        raise HTTPException(status_code=404, detail="Supplier not found")

    values = car.model_dump(exclude={"id"})
    values["supplier"] = supplier_id
    values["locations"] = parse_object_ids(car.locations, "location id")
    values["model_identifier"] = model_identifier(car)
    values["model_group"] = model_group(car)
    return values


def _supplier_lookup() -> List[Dict[str, Any]]:
    return [
        {"$lookup": {"from": "user", "localField": "supplier", "foreignField": "_id", "as": "supplier"}},
        {"$unwind": {"path": "$supplier", "preserveNullAndEmptyArrays": True}},
    ]


def _strip_suppliers(page: Dict[str, Any]) -> Dict[str, Any]:
    for car in page["result_data"]:
        supplier = car.get("supplier")
        if isinstance(supplier, dict):
            car["supplier"] = {k: supplier.get(k) for k in ("id", "full_name", "avatar", "pay_later")}
    return page


def car_filters(payload: GetCarsPayload) -> Dict[str, Any]:
    """Mongo match for the car list filters shared by the back-office and the storefront."""
    match: Dict[str, Any] = {}

    if payload.suppliers is not None:
        match["supplier"] = {"$in": parse_object_ids(payload.suppliers, "supplier id")}

    specs = payload.car_specs
    if specs is not None:
        if specs.aircon:
            match["aircon"] = True
        if specs.more_than_four_doors:
            match["doors"] = {"$gt": 4}
        if specs.more_than_five_seats:
            match["seats"] = {"$gt": 5}

    if payload.car_type:
        match["type"] = {"$in": list(payload.car_type)}
    if payload.gearbox:
        match["gearbox"] = {"$in": list(payload.gearbox)}
    if payload.fuel_policy:
        match["fuel_policy"] = {"$in": list(payload.fuel_policy)}
    if payload.ranges:
        match["range"] = {"$in": list(payload.ranges)}
    if payload.multimedia:
        match["multimedia"] = {"$all": list(payload.multimedia)}

    if payload.mileage and len(payload.mileage) == 1:
        if payload.mileage[0] == Mileage.LIMITED.value:
            match["mileage"] = {"$gt": -1}
        else:
            match["mileage"] = -1

    if payload.deposit is not None and payload.deposit > -1:
        match["deposit"] = {"$lte": payload.deposit}

    if payload.availability and len(payload.availability) == 1:
        match["available"] = payload.availability[0] == Availability.AVAILABLE.value

    if payload.rating is not None and payload.rating > -1:
        match["rating"] = {"$gte": payload.rating}

    if payload.seats is not None and payload.seats > -1:
        match["seats"] = {"$gte": payload.seats} if payload.seats > 5 else payload.seats

    return match


@router.post("/create-car")
def create_car(
    payload: CreateCarPayload,
    user: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    assert_can_manage_supplier(user, payload.supplier)
    values = _car_values(db, payload)
    values["image"] = None
    car_id = parse_object_id(create_document("car", values, database=db))

    if payload.image:
        image = storage.move_temp_file(config.CDN_TEMP_CARS, config.CDN_CARS, payload.image, f"{car_id}_{payload.image}")
        if image:
            update_document("car", car_id, {"image": image}, database=db)

    logger.info(f"Car created: {car_id}")
    return serialize_doc(db["car"].find_one({"_id": car_id}))


@router.put("/update-car")
def update_car(
    payload: UpdateCarPayload,
    user: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    _id = parse_object_id(payload.id, "car id")
    car = db["car"].find_one({"_id": _id})
    if not car:
        logger.error(f"[car.update] Car not found: {payload.id}")
        raise HTTPException(status_code=404, detail="Car not found")
    assert_can_manage_supplier(user, car["supplier"])
    assert_can_manage_supplier(user, payload.supplier)

    values = _car_values(db, payload)
    values.pop("image", None)
    update_document("car", _id, values, database=db)
    return serialize_doc(db["car"].find_one({"_id": _id}))


def delete_car_cascade(db: Database, car: Dict[str, Any]) -> None:
    """Delete a car with its bookings, their additional drivers and its image."""
    bookings = list(db["booking"].find({"car": car["_id"]}, {"additional_driver_id": 1}))
    driver_ids = [b["additional_driver_id"] for b in bookings if b.get("additional_driver_id")]
    if driver_ids:
        db["additional_driver"].delete_many({"_id": {"$in": driver_ids}})
    db["booking"].delete_many({"car": car["_id"]})
    if car.get("image"):
        storage.delete_file(config.CDN_CARS, car["image"])
    db["car"].delete_one({"_id": car["_id"]})


@router.delete("/delete-car/{car_id}")
def delete_car(car_id: str, user: Dict[str, Any] = Depends(require_backend_user), db: Database = Depends(get_db)):
    car = db["car"].find_one({"_id": parse_object_id(car_id, "car id")})
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")
    assert_can_manage_supplier(user, car["supplier"])
    delete_car_cascade(db, car)
    logger.info(f"Car deleted: {car_id}")
    return {"ok": True}


@router.post("/create-car-image", dependencies=[Depends(require_backend_user)])
def create_car_image(image: UploadFile = File(...)):
    try:
        return storage.save_temp_image(config.CDN_TEMP_CARS, image.filename or "image", image.file.read())
    except ValueError as e:
        logger.error(f"[car.create_image] {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/update-car-image/{car_id}")
def update_car_image(
    car_id: str,
    image: UploadFile = File(...),
    user: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    _id = parse_object_id(car_id, "car id")
    car = db["car"].find_one({"_id": _id})
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")
    assert_can_manage_supplier(user, car["supplier"])

    try:
        filename = storage.save_image(config.CDN_CARS, str(_id), image.file.read())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if car.get("image"):
        storage.delete_file(config.CDN_CARS, car["image"])
    update_document("car", _id, {"image": filename}, database=db)
    return filename


@router.post("/delete-car-image/{car_id}")
def delete_car_image(car_id: str, user: Dict[str, Any] = Depends(require_backend_user), db: Database = Depends(get_db)):
    _id = parse_object_id(car_id, "car id")
    car = db["car"].find_one({"_id": _id})
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")
    assert_can_manage_supplier(user, car["supplier"])
    if car.get("image"):
        storage.delete_file(config.CDN_CARS, car["image"])
    update_document("car", _id, {"image": None}, database=db)
    return {"ok": True}


@router.post("/delete-temp-car-image/{image}", dependencies=[Depends(require_backend_user)])
def delete_temp_car_image(image: str):
    try:
        storage.check_filename(image)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    storage.delete_file(config.CDN_TEMP_CARS, image)
    return {"ok": True}


@router.get("/car/{car_id}")
def get_car(car_id: str, db: Database = Depends(get_db)):
    car = db["car"].find_one({"_id": parse_object_id(car_id, "car id")})
    if not car:
        logger.error(f"[car.get_car] Car not found: {car_id}")
        raise HTTPException(status_code=404, detail="Car not found")

    car["supplier"] = supplier_info(db["user"].find_one({"_id": car.get("supplier")}))
    location_ids = car.get("locations") or []
    locations = {loc["_id"]: loc for loc in db["location"].find({"_id": {"$in": location_ids}})}
    car["locations"] = [locations[i] for i in location_ids if i in locations]
    return serialize_doc(car)


@router.post("/cars/{page}/{size}", dependencies=[Depends(require_backend_user)])
def get_cars(
    payload: GetCarsPayload,
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    s: Optional[str] = None,
    db: Database = Depends(get_db),
):
    """Back-office car list."""
    match = car_filters(payload)
    if s:
        match["car_model"] = {"$regex": escape_regex(s), "$options": "i"}

    pipeline = [
        {"$match": match},
        *_supplier_lookup(),
        facet_page(page, size, {"updated_at": -1, "_id": 1}),
    ]
    return _strip_suppliers(unpack_facet(list(db["car"].aggregate(pipeline))))


@router.post("/booking-cars/{page}/{size}")
def get_booking_cars(
    payload: GetBookingCarsPayload,
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    s: Optional[str] = None,
    db: Database = Depends(get_db),
):
    """Available cars of a supplier at a pick-up location, for the booking forms."""
    match: Dict[str, Any] = {
        "supplier": parse_object_id(payload.supplier, "supplier id"),
        "locations": parse_object_id(payload.pickup_location, "location id"),
        "available": True,
    }
    if s:
        match["car_model"] = {"$regex": escape_regex(s), "$options": "i"}

    cursor = (
        db["car"]
        .find(match, {"car_model": 1, "brand": 1, "image": 1, "plate_number": 1})
        .sort([("car_model", 1), ("_id", 1)])
        .skip((page - 1) * size)
        .limit(size)
    )
    return [serialize_doc(c) for c in cursor]


@router.post("/frontend-cars/{page}/{size}")
def get_frontend_cars(
    payload: GetCarsPayload,
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    db: Database = Depends(get_db),
):
    """Storefront search: available cars at the pick-up location."""
    if not payload.pickup_location:
        raise HTTPException(status_code=400, detail="Pick-up location is required")

    match = car_filters(payload)
    match["locations"] = parse_object_id(payload.pickup_location, "location id")
    match["available"] = True

    pipeline: List[Dict[str, Any]] = [{"$match": match}, *_supplier_lookup()]
    if payload.days:
        pipeline.append({"$match": {"$or": [
            {"supplier.minimum_rental_days": None},
            {"supplier.minimum_rental_days": {"$lte": payload.days}},
        ]}})
    pipeline.append({"$match": {"supplier.blacklisted": {"$ne": True}}})
    pipeline.append(facet_page(page, size, {"daily_price": 1, "_id": 1}))
    return _strip_suppliers(unpack_facet(list(db["car"].aggregate(pipeline))))


@router.get("/check-car/{car_id}")
def check_car(car_id: str, db: Database = Depends(get_db)):
    """200 when the car has bookings, 204 otherwise."""
    _id = parse_object_id(car_id, "car id")
    if db["booking"].count_documents({"car": _id}, limit=1):
        return Response(status_code=200)
    return Response(status_code=204)


@router.get("/similar-cars/{car_id}")
def get_similar_cars(car_id: str, db: Database = Depends(get_db)):
    """Available cars of the same brand and model, one year apart at most."""
    _id: ObjectId = parse_object_id(car_id, "car id")
    car = db["car"].find_one({"_id": _id})
    if not car:
        raise HTTPException(status_code=404, detail="Car not found")

    cursor = db["car"].find({
        "_id": {"$ne": _id},
        "brand": car["brand"],
        "car_model": car["car_model"],
        "year": {"$gte": car["year"] - 1, "$lte": car["year"] + 1},
        "available": True,
    }).sort([("daily_price", 1), ("_id", 1)])
    return [serialize_doc(c) for c in cursor]
