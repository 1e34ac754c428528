import logging
import time
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, HTTPException, Path, Response, UploadFile
from pymongo.database import Database

import config
import storage
from auth import require_admin
from database import create_document, get_db, update_document
from helpers import (
    escape_regex,
    exact_name_regex,
    facet_page,
    parse_object_id,
    serialize_doc,
    unpack_facet,
)
from schemas import NamePayload, ParkingSpot, UpsertLocationPayload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Locations"])


def _country_lookup() -> List[Dict[str, Any]]:
    return [
        {"$lookup": {"from": "country", "localField": "country", "foreignField": "_id", "as": "country"}},
        {"$unwind": {"path": "$country", "preserveNullAndEmptyArrays": True}},
    ]


def _sync_parking_spots(db: Database, current: List[ObjectId], payload: UpsertLocationPayload) -> List[ObjectId]:
    """Insert new spots, update listed ones, delete the ones no longer listed."""
    for spot in payload.parking_spots:
        if spot.id and parse_object_id(spot.id, "parking spot id") not in current:
            raise HTTPException(status_code=400, detail=f"Parking spot {spot.id} does not belong to this location")

    ids: List[ObjectId] = []
    for spot in payload.parking_spots:
        values = ParkingSpot(name=spot.name, latitude=spot.latitude, longitude=spot.longitude).model_dump()
        if spot.id:
            _id = parse_object_id(spot.id, "parking spot id")
            update_document("parking_spot", _id, values, database=db)
            ids.append(_id)
        else:
            ids.append(parse_object_id(create_document("parking_spot", values, database=db)))

    removed = [_id for _id in current if _id not in ids]
    if removed:
        db["parking_spot"].delete_many({"_id": {"$in": removed}})
    return ids


def _country_id(db: Database, country: str) -> ObjectId:
    country_id = parse_object_id(country, "country id")
    if not db["country"].find_one({"_id": country_id}):
        raise HTTPException(status_code=404, detail="Country not found")
    return country_id


def _move_temp_image(location_id: ObjectId, image: Optional[str]) -> Optional[str]:
    if not image:
        return None
    return storage.move_temp_file(
        config.CDN_TEMP_LOCATIONS, config.CDN_LOCATIONS, image, f"{location_id}_{int(time.time() * 1000)}.jpg"
    )


@router.post("/validate-location")
def validate_location(payload: NamePayload, db: Database = Depends(get_db)):
    location = db["location"].find_one({"name": exact_name_regex(payload.name)})
    return {"exists": location is not None}


@router.post("/create-location", dependencies=[Depends(require_admin)])
def create_location(payload: UpsertLocationPayload, db: Database = Depends(get_db)):
    country_id = _country_id(db, payload.country)
    parking_spots = _sync_parking_spots(db, [], payload)
    location_id = parse_object_id(create_document("location", {
        "country": country_id,
        "name": payload.name.strip(),
        "latitude": payload.latitude,
        "longitude": payload.longitude,
        "image": None,
        "parking_spots": parking_spots,
    }, database=db))

    image = _move_temp_image(location_id, payload.image)
    if image:
        update_document("location", location_id, {"image": image}, database=db)

    logger.info(f"Location created: {location_id}")
    return {"id": str(location_id)}


@router.put("/update-location/{location_id}", dependencies=[Depends(require_admin)])
def update_location(location_id: str, payload: UpsertLocationPayload, db: Database = Depends(get_db)):
    _id = parse_object_id(location_id, "location id")
    location = db["location"].find_one({"_id": _id})
    if not location:
        raise HTTPException(status_code=404, detail="Location not found")

    country_id = _country_id(db, payload.country)
    parking_spots = _sync_parking_spots(db, location.get("parking_spots") or [], payload)
    update_document("location", _id, {
        "country": country_id,
        "name": payload.name.strip(),
        "latitude": payload.latitude,
        "longitude": payload.longitude,
        "parking_spots": parking_spots,
    }, database=db)
    return {"id": location_id}


@router.delete("/delete-location/{location_id}", dependencies=[Depends(require_admin)])
def delete_location(location_id: str, db: Database = Depends(get_db)):
    _id = parse_object_id(location_id, "location id")
    location = db["location"].find_one({"_id": _id})
    if not location:
        logger.info(f"[location.delete] Location {location_id} not found")
        raise HTTPException(status_code=404, detail="Location not found")

    db["location"].delete_one({"_id": _id})
    if location.get("parking_spots"):
        db["parking_spot"].delete_many({"_id": {"$in": location["parking_spots"]}})
    if location.get("image"):
        storage.delete_file(config.CDN_LOCATIONS, location["image"])
    return {"ok": True}


@router.get("/location/{location_id}")
def get_location(location_id: str, db: Database = Depends(get_db)):
    location = db["location"].find_one({"_id": parse_object_id(location_id, "location id")})
    if not location:
        logger.error(f"[location.get_location] Location not found: {location_id}")
        raise HTTPException(status_code=404, detail="Location not found")

    location["country"] = db["country"].find_one({"_id": location.get("country")})
    spot_ids = location.get("parking_spots") or []
    spots = {s["_id"]: s for s in db["parking_spot"].find({"_id": {"$in": spot_ids}})}
    location["parking_spots"] = [spots[i] for i in spot_ids if i in spots]
    return serialize_doc(location)


@router.get("/locations/{page}/{size}")
def get_locations(
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    s: Optional[str] = None,
    db: Database = Depends(get_db),
):
    pipeline = [
        {"$match": {"name": {"$regex": escape_regex(s), "$options": "i"}}},
        *_country_lookup(),
        {"$project": {"parking_spots": 0}},
        facet_page(page, size, {"name": 1, "_id": 1}),
    ]
    return unpack_facet(list(db["location"].aggregate(pipeline)))


@router.get("/locations-with-position")
def get_locations_with_position(s: Optional[str] = None, db: Database = Depends(get_db)):
    cursor = db["location"].find(
        {
            "latitude": {"$ne": None},
            "longitude": {"$ne": None},
            "name": {"$regex": escape_regex(s), "$options": "i"},
        },
        {"parking_spots": 0},
    ).sort("name", 1)
    return [serialize_doc(d) for d in cursor]


@router.get("/check-location/{location_id}")
def check_location(location_id: str, db: Database = Depends(get_db)):
    """200 when a car serves the location, 204 otherwise."""
    _id = parse_object_id(location_id, "location id")
    if db["car"].count_documents({"locations": _id}, limit=1):
        return Response(status_code=200)
    return Response(status_code=204)


@router.get("/location-id/{name}")
def get_location_id(name: str, db: Database = Depends(get_db)):
    location = db["location"].find_one({"name": exact_name_regex(name)})
    if not location:
        raise HTTPException(status_code=404, detail="Location not found")
    return str(location["_id"])


@router.post("/create-location-image", dependencies=[Depends(require_admin)])
def create_location_image(image: UploadFile = File(...)):
    try:
        return storage.save_temp_image(config.CDN_TEMP_LOCATIONS, image.filename or "image", image.file.read())
    except ValueError as e:
        logger.error(f"[location.create_image] {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/update-location-image/{location_id}", dependencies=[Depends(require_admin)])
def update_location_image(location_id: str, image: UploadFile = File(...), db: Database = Depends(get_db)):
    _id = parse_object_id(location_id, "location id")
    location = db["location"].find_one({"_id": _id})
    if not location:
        logger.error(f"[location.update_image] Location not found: {location_id}")
        raise HTTPException(status_code=404, detail="Location not found")

    try:
        filename = storage.save_image(config.CDN_LOCATIONS, str(_id), image.file.read())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if location.get("image"):
        storage.delete_file(config.CDN_LOCATIONS, location["image"])
    update_document("location", _id, {"image": filename}, database=db)
    return filename


@router.post("/delete-location-image/{location_id}", dependencies=[Depends(require_admin)])
def delete_location_image(location_id: str, db: Database = Depends(get_db)):
    _id = parse_object_id(location_id, "location id")
    location = db["location"].find_one({"_id": _id})
    if not location:
        raise HTTPException(status_code=404, detail="Location not found")
    if location.get("image"):
        storage.delete_file(config.CDN_LOCATIONS, location["image"])
    update_document("location", _id, {"image": None}, database=db)
    return {"ok": True}


@router.post("/delete-temp-location-image/{image}", dependencies=[Depends(require_admin)])
def delete_temp_location_image(image: str):
    try:
        storage.check_filename(image)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if "." not in image:
        raise HTTPException(status_code=400, detail="Filename not valid")
    storage.delete_file(config.CDN_TEMP_LOCATIONS, image)
    return {"ok": True}


@router.get("/supplier-locations/{supplier_id}/{page}/{size}")
def get_supplier_locations(
    supplier_id: str,
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    s: Optional[str] = None,
    db: Database = Depends(get_db),
):
    """Locations served by at least one of the supplier's cars."""
    supplier = parse_object_id(supplier_id, "supplier id")
    location_ids = set()
    for car in db["car"].find({"supplier": supplier}, {"locations": 1}):
        location_ids.update(car.get("locations") or [])

    pipeline = [
        {"$match": {"_id": {"$in": list(location_ids)}, "name": {"$regex": escape_regex(s), "$options": "i"}}},
        *_country_lookup(),
        {"$project": {"parking_spots": 0}},
        facet_page(page, size, {"name": 1, "_id": 1}),
    ]
    return unpack_facet(list(db["location"].aggregate(pipeline)))


