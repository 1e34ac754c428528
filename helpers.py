import os
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException


def is_valid_object_id(value: Any) -> bool:
    if isinstance(value, ObjectId):
        return True
    return isinstance(value, str) and len(value) == 24 and ObjectId.is_valid(value)


def parse_object_id(value: Any, name: str = "id") -> ObjectId:
    """Convert a path/body id to an ObjectId, 400 when it is malformed."""
    if not is_valid_object_id(value):
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
    return ObjectId(value)


def parse_object_ids(values: Optional[List[str]], name: str = "id") -> List[ObjectId]:
    return [parse_object_id(v, name) for v in values or []]


def optional_object_id(value: Optional[str], name: str = "id") -> Optional[ObjectId]:
    if value in (None, ""):
        return None
    return parse_object_id(value, name)


def utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive UTC datetime, the form pymongo hands back."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        _id = doc.pop("_id")
        doc["id"] = str(_id) if _id else None
    doc.pop("password", None)
    for k, v in list(doc.items()):
        doc[k] = _serialize_value(v)
    return doc


def escape_regex(keyword: Optional[str]) -> str:
    return re.escape(keyword or "")


def exact_name_regex(name: str) -> Dict[str, Any]:
    """Case-insensitive exact match, used for name uniqueness checks."""
    return {"$regex": f"^{escape_regex(name.strip())}$", "$options": "i"}


def facet_page(page: int, size: int, sort: Dict[str, int]) -> Dict[str, Any]:
    return {
        "$facet": {
            "resultData": [{"$sort": sort}, {"$skip": (page - 1) * size}, {"$limit": size}],
            "pageInfo": [{"$count": "totalRecords"}],
        }
    }


def unpack_facet(result: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Flatten a facet_page aggregation result into a page of serialized rows."""
    if not result:
        return {"result_data": [], "total_records": 0}
    data = result[0]
    page_info = data.get("pageInfo") or []
    total = page_info[0].get("totalRecords", 0) if page_info else 0
    return {
        "result_data": [serialize_doc(d) for d in data.get("resultData", [])],
        "total_records": total,
    }


def join_url(base: str, path: str) -> str:
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def generate_token() -> str:
    return secrets.token_hex(32)


def str_to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes")


def filename_without_extension(filename: str) -> str:
    return os.path.splitext(os.path.basename(filename))[0]


def supplier_info(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Public subset of a supplier document."""
    if not user:
        return user
    return {
        "_id": user.get("_id"),
        "full_name": user.get("full_name"),
        "avatar": user.get("avatar"),
        "pay_later": user.get("pay_later"),
    }
