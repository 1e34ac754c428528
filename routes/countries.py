import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Response
from pymongo.database import Database

from auth import require_admin
from database import create_document, get_db, update_document
from helpers import (
    escape_regex,
    exact_name_regex,
    facet_page,
    parse_object_id,
    serialize_doc,
    str_to_bool,
    unpack_facet,
)
from schemas import Country, NamePayload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Countries"])


@router.post("/validate-country")
def validate_country(payload: NamePayload, db: Database = Depends(get_db)):
    country = db["country"].find_one({"name": exact_name_regex(payload.name)})
    return {"exists": country is not None}


@router.post("/create-country", dependencies=[Depends(require_admin)])
def create_country(payload: NamePayload, db: Database = Depends(get_db)):
    country = Country(name=payload.name.strip())
    country_id = create_document("country", country, database=db)
    logger.info(f"Country created: {country_id}")
    return serialize_doc(db["country"].find_one({"_id": parse_object_id(country_id)}))


@router.put("/update-country/{country_id}", dependencies=[Depends(require_admin)])
def update_country(country_id: str, payload: NamePayload, db: Database = Depends(get_db)):
    _id = parse_object_id(country_id, "country id")
    if not update_document("country", _id, {"name": payload.name.strip()}, database=db):
        logger.error(f"[country.update] Country not found: {country_id}")
        raise HTTPException(status_code=404, detail="Country not found")
    return serialize_doc(db["country"].find_one({"_id": _id}))


@router.delete("/delete-country/{country_id}", dependencies=[Depends(require_admin)])
def delete_country(country_id: str, db: Database = Depends(get_db)):
    _id = parse_object_id(country_id, "country id")
    if not db["country"].find_one({"_id": _id}):
        logger.info(f"[country.delete] Country {country_id} not found")
        raise HTTPException(status_code=404, detail="Country not found")
    if db["location"].count_documents({"country": _id}, limit=1):
        raise HTTPException(status_code=409, detail="Country is used by a location")
    db["country"].delete_one({"_id": _id})
    return {"ok": True}


@router.get("/country/{country_id}")
def get_country(country_id: str, db: Database = Depends(get_db)):
    country = db["country"].find_one({"_id": parse_object_id(country_id, "country id")})
    if not country:
        logger.error(f"[country.get_country] Country not found: {country_id}")
        raise HTTPException(status_code=404, detail="Country not found")
    return serialize_doc(country)


@router.get("/countries/{page}/{size}")
def get_countries(
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    s: Optional[str] = None,
    db: Database = Depends(get_db),
):
    pipeline = [
        {"$match": {"name": {"$regex": escape_regex(s), "$options": "i"}}},
        facet_page(page, size, {"name": 1, "_id": 1}),
    ]
    return unpack_facet(list(db["country"].aggregate(pipeline)))


@router.get("/countries-with-locations/{image_required}/{min_locations}")
def get_countries_with_locations(
    image_required: str,
    min_locations: int = Path(..., ge=0),
    s: Optional[str] = None,
    db: Database = Depends(get_db),
):
    """Countries with at least min_locations locations, optionally counting only locations with an image."""
    with_image = str_to_bool(image_required)
    pipeline = [
        {"$match": {"name": {"$regex": escape_regex(s), "$options": "i"}}},
        {"$lookup": {"from": "location", "localField": "_id", "foreignField": "country", "as": "locations"}},
        {"$sort": {"name": 1}},
    ]

    countries = []
    for country in db["country"].aggregate(pipeline):
        locations = country.get("locations", [])
        if with_image:
            locations = [loc for loc in locations if loc.get("image")]
        if len(locations) >= min_locations:
            country["locations"] = locations
            countries.append(serialize_doc(country))
    return countries


@router.get("/check-country/{country_id}")
def check_country(country_id: str, db: Database = Depends(get_db)):
    """200 when a location uses the country, 204 otherwise."""
    _id = parse_object_id(country_id, "country id")
    if db["location"].count_documents({"country": _id}, limit=1):
        return Response(status_code=200)
    return Response(status_code=204)


@router.get("/country-id/{name}")
def get_country_id(name: str, db: Database = Depends(get_db)):
    country: Optional[Dict[str, Any]] = db["country"].find_one({"name": exact_name_regex(name)})
    if not country:
        raise HTTPException(status_code=404, detail="Country not found")
    return str(country["_id"])
