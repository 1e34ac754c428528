from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response
from pymongo.database import Database

import contract
from auth import get_current_user, is_admin, is_supplier
from database import get_db
from helpers import parse_object_id

router = APIRouter(tags=["Contracts"])


@router.get("/contract/{booking_id}/{currency_symbol}")
def download_contract(
    booking_id: str,
    currency_symbol: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    booking = db["booking"].find_one({"_id": parse_object_id(booking_id, "booking id")})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    owner = booking.get("supplier") if is_supplier(user) else booking.get("driver")
    if not is_admin(user) and owner != user["_id"]:
        raise HTTPException(status_code=403, detail="Not allowed")

    filename, pdf = contract.generate_contract(db, booking_id, currency_symbol)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
