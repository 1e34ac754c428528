import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException, Path
from pymongo.database import Database

import push
from auth import assert_self_or_admin, get_current_user
from database import get_db
from helpers import facet_page, now, parse_object_id, parse_object_ids, serialize_doc, unpack_facet

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Notifications"])


def _user_id(user_id: str, current: Dict[str, Any]):
    _id = parse_object_id(user_id, "user id")
    assert_self_or_admin(current, _id)
    return _id


def _shift_counter(db: Database, user_id, delta: int) -> None:
    """Keep the unread counter in sync, never below zero."""
    if not delta:
        return
    counter = db["notification_counter"].find_one({"user": user_id})
    count = max(0, (counter or {}).get("count", 0) + delta)
    stamp = now()
    db["notification_counter"].update_one(
        {"user": user_id},
        {"$set": {"count": count, "updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
        upsert=True,
    )


@router.get("/notification-counter/{user_id}")
def get_notification_counter(
    user_id: str, current: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)
):
    counter = db["notification_counter"].find_one({"user": _user_id(user_id, current)})
    return {"count": (counter or {}).get("count", 0)}


@router.get("/notifications/{user_id}/{page}/{size}")
def get_notifications(
    user_id: str,
    page: int = Path(..., ge=1),
    size: int = Path(..., ge=1),
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    pipeline = [
        {"$match": {"user": _user_id(user_id, current)}},
        facet_page(page, size, {"created_at": -1, "_id": 1}),
    ]
    return unpack_facet(list(db["notification"].aggregate(pipeline)))


def _set_read(db: Database, user_id, ids: List[str], is_read: bool) -> int:
    match = {"_id": {"$in": parse_object_ids(ids, "notification id")}, "user": user_id, "is_read": not is_read}
    result = db["notification"].update_many(match, {"$set": {"is_read": is_read, "updated_at": now()}})
    _shift_counter(db, user_id, -result.modified_count if is_read else result.modified_count)
    return result.modified_count


@router.post("/mark-as-read/{user_id}")
def mark_as_read(
    user_id: str,
    ids: List[str] = Body(..., min_length=1),
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return {"updated": _set_read(db, _user_id(user_id, current), ids, True)}


@router.post("/mark-as-unread/{user_id}")
def mark_as_unread(
    user_id: str,
    ids: List[str] = Body(..., min_length=1),
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return {"updated": _set_read(db, _user_id(user_id, current), ids, False)}


@router.post("/delete-notifications/{user_id}")
def delete_notifications(
    user_id: str,
    ids: List[str] = Body(..., min_length=1),
    current: Dict[str, Any] = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    _id = _user_id(user_id, current)
    match = {"_id": {"$in": parse_object_ids(ids, "notification id")}, "user": _id}
    unread = db["notification"].count_documents({**match, "is_read": False})
    result = db["notification"].delete_many(match)
    _shift_counter(db, _id, -unread)
    return {"deleted": result.deleted_count}


@router.post("/create-push-token/{user_id}/{token}")
def create_push_token(
    user_id: str, token: str, current: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)
):
    if not push.is_push_token(token):
        raise HTTPException(status_code=400, detail="Invalid push token")
    _id = _user_id(user_id, current)
    stamp = now()
    db["push_token"].update_one(
        {"user": _id},
        {"$set": {"token": token, "updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
        upsert=True,
    )
    logger.info(f"Push token registered for user {user_id}")
    return {"ok": True}


@router.get("/push-token/{user_id}")
def get_push_token(user_id: str, current: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)):
    push_token = db["push_token"].find_one({"user": _user_id(user_id, current)})
    if not push_token:
        raise HTTPException(status_code=404, detail="Push token not found")
    return serialize_doc(push_token)


@router.post("/delete-push-token/{user_id}")
def delete_push_token(
    user_id: str, current: Dict[str, Any] = Depends(get_current_user), db: Database = Depends(get_db)
):
    result = db["push_token"].delete_many({"user": _user_id(user_id, current)})
    return {"deleted": result.deleted_count}
