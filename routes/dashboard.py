import logging
from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pymongo.database import Database

from auth import is_supplier, require_backend_user
from database import get_db, get_documents
from helpers import now, parse_object_ids, utc
from schemas import DashboardPayload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Dashboard"])


def month_starts(reference: datetime, count: int = 12) -> List[datetime]:
    """First day of each of the last `count` months, oldest first."""
    starts = []
    year, month = reference.year, reference.month
    for _ in range(count):
        starts.append(datetime(year, month, 1))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


def bookings_by_month(bookings: List[Dict[str, Any]], reference: datetime) -> List[Dict[str, Any]]:
    starts = month_starts(reference)
    bounds = starts[1:] + [datetime(reference.year + (reference.month == 12), reference.month % 12 + 1, 1)]
    result = []
    for start, end in zip(starts, bounds):
        count = sum(1 for b in bookings if b.get("from_date") and start <= b["from_date"] < end)
        result.append({"month": start.strftime("%b"), "bookings": count})
    return result


def dashboard_data(cars: List[Dict[str, Any]], bookings: List[Dict[str, Any]], reference: datetime) -> Dict[str, Any]:
    rated = [c["rating"] for c in cars if c.get("rating")]
    average_rating = round(sum(rated) / len(rated), 1) if rated else 0

    types = Counter(c.get("type") for c in cars if c.get("type"))
    car_type_distribution = [
        {"name": name, "value": value} for name, value in sorted(types.items(), key=lambda kv: kv[1], reverse=True)
    ]

    car_ranges = {c["_id"]: c.get("range") for c in cars}
    revenue: Dict[str, float] = defaultdict(float)
    for booking in bookings:
        car_range = car_ranges.get(booking.get("car"))
        if car_range:
            revenue[car_range] += booking.get("price") or 0
    revenue_by_car_type = [
        {"type": t, "revenue": round(r, 2)} for t, r in sorted(revenue.items(), key=lambda kv: kv[1], reverse=True)
    ]

    return {
        "total_cars": len(cars),
        "total_bookings": len(bookings),
        "total_revenue": round(sum(b.get("price") or 0 for b in bookings), 2),
        "average_rating": average_rating,
        "bookings_by_month": bookings_by_month(bookings, reference),
        "car_type_distribution": car_type_distribution,
        "revenue_by_car_type": revenue_by_car_type,
    }


@router.post("/dashboard")
def get_dashboard(
    payload: DashboardPayload,
    user: Dict[str, Any] = Depends(require_backend_user),
    db: Database = Depends(get_db),
):
    suppliers = parse_object_ids(payload.suppliers, "supplier id")
    if is_supplier(user):
        suppliers = [user["_id"]]

    query: Dict[str, Any] = {"supplier": {"$in": suppliers}, "status": {"$in": list(payload.statuses)}}
    f = payload.filter
    if f is not None and f.from_date and f.to_date:
        query["from_date"] = {"$gte": utc(f.from_date)}
        query["to_date"] = {"$lte": utc(f.to_date)}

    cars = get_documents("car", {"supplier": {"$in": suppliers}}, database=db)
    bookings = list(db["booking"].find(query))
    logger.info(f"Dashboard: {len(cars)} cars, {len(bookings)} bookings")
    return dashboard_data(cars, bookings, now())
