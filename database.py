"""
MongoDB connection and bootstrap.

Holds the process-wide client, the collection/index declarations and the
TTL index reconciliation run at startup.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, IndexModel, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from helpers import now

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

BOOKING_EXPIRE_AT_INDEX_NAME = "expire_at"
USER_EXPIRE_AT_INDEX_NAME = "expire_at"
TOKEN_EXPIRE_AT_INDEX_NAME = "expire_at"

# collection name -> indexes created together with the collection
COLLECTIONS: Dict[str, List[IndexModel]] = {
    "booking": [
        IndexModel([("supplier", ASCENDING)]),
        IndexModel([("car", ASCENDING)]),
        IndexModel([("driver", ASCENDING)]),
        IndexModel([("session_id", ASCENDING)]),
    ],
    "car": [
        IndexModel([("brand", ASCENDING)]),
        IndexModel([("car_model", ASCENDING)]),
        IndexModel([("plate_number", ASCENDING)]),
        IndexModel([("supplier", ASCENDING)]),
        IndexModel([("available", ASCENDING)]),
        IndexModel([("model_identifier", ASCENDING)]),
        IndexModel([("model_group", ASCENDING)]),
        IndexModel([("brand", ASCENDING), ("car_model", ASCENDING), ("year", ASCENDING), ("type", ASCENDING)]),
    ],
    "country": [IndexModel([("name", ASCENDING)])],
    "parking_spot": [],
    "location": [IndexModel([("country", ASCENDING)]), IndexModel([("name", ASCENDING)])],
    "notification": [IndexModel([("user", ASCENDING)])],
    "notification_counter": [IndexModel([("user", ASCENDING)], unique=True)],
    "push_token": [IndexModel([("user", ASCENDING)], unique=True)],
    "token": [IndexModel([("user", ASCENDING)])],
    "user": [IndexModel([("email", ASCENDING)], unique=True), IndexModel([("full_name", ASCENDING)])],
    "additional_driver": [IndexModel([("full_name", ASCENDING)]), IndexModel([("email", ASCENDING)])],
}


def ttl_indexes() -> Dict[str, Tuple[str, int]]:
    """collection -> (index name, expireAfterSeconds) from the current configuration."""
    return {
        "booking": (BOOKING_EXPIRE_AT_INDEX_NAME, config.BOOKING_EXPIRE_AT),
        "user": (USER_EXPIRE_AT_INDEX_NAME, config.USER_EXPIRE_AT),
        "token": (TOKEN_EXPIRE_AT_INDEX_NAME, config.TOKEN_EXPIRE_AT),
    }


def connect(uri: str = None, ssl: bool = None, debug: bool = None) -> bool:
    """Open the client and select the configured database."""
    global client, db

    uri = uri or config.DATABASE_URL
    ssl = config.DB_SSL if ssl is None else ssl
    debug = config.DB_DEBUG if debug is None else debug

    options: Dict[str, Any] = {"serverSelectionTimeoutMS": 5000}
    if ssl:
        options.update(tls=True, tlsCertificateKeyFile=config.DB_SSL_CERT, tlsCAFile=config.DB_SSL_CA)
    if debug:
        logging.getLogger("pymongo.command").setLevel(logging.DEBUG)

    try:
        client = MongoClient(uri, **options)
        client.admin.command("ping")
        db = client[config.DATABASE_NAME]
        logger.info("✅ Database is connected")
        return True
    except PyMongoError as e:
        logger.error(f"❌ Cannot connect to the database: {e}")
        client = None
        db = None
        return False


def close() -> None:
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def _as_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Database = None) -> str:
    """Insert a document stamped with created_at/updated_at, return its id."""
    database = database if database is not None else get_db()
    doc = _as_dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    database: Database = None,
) -> List[Dict[str, Any]]:
    database = database if database is not None else get_db()
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(collection_name: str, _id: Any, values: Dict[str, Any], database: Database = None) -> int:
    """$set values on one document and bump updated_at."""
    database = database if database is not None else get_db()
    values = dict(values)
    values["updated_at"] = now()
    result = database[collection_name].update_one({"_id": _id}, {"$set": values})
    return result.matched_count


def reconcile_ttl_index(collection, index_name: str, expire_after_seconds: int) -> None:
    """Make the expire_at TTL index match the configured duration."""
    info = collection.index_information().get(index_name)
    if info is not None and info.get("expireAfterSeconds") == expire_after_seconds:
        return

    if info is not None:
        try:
            collection.drop_index(index_name)
            logger.info(f"Dropped outdated TTL index {collection.name}.{index_name}")
        except PyMongoError as e:
            logger.error(f"Failed dropping {collection.name} TTL index: {e}")

    collection.create_index(
        [("expire_at", ASCENDING)],
        name=index_name,
        expireAfterSeconds=expire_after_seconds,
    )
    logger.info(f"TTL index {collection.name}.{index_name} set to {expire_after_seconds}s")


def _check_names(database: Database, collection_name: str) -> bool:
    logger.info(f"Initializing {collection_name} documents...")
    for doc in database[collection_name].find({}, {"name": 1}):
        if not doc.get("name"):
            logger.info(f"Name not found for {collection_name}: {doc['_id']}")
    logger.info(f"{collection_name} documents initialized")
    return True


def initialize(database: Database = None) -> bool:
    """Create collections and indexes, reconcile TTL indexes, check reference data."""
    database = database if database is not None else db
    if database is None:
        logger.error("Database is not connected")
        return False

    try:
        existing = set(database.list_collection_names())
        for name, indexes in COLLECTIONS.items():
            if name not in existing:
                database.create_collection(name)
                if indexes:
                    database[name].create_indexes(indexes)
                logger.info(f"Created collection {name}")

        for name, (index_name, seconds) in ttl_indexes().items():
            reconcile_ttl_index(database[name], index_name, seconds)

        return (
            _check_names(database, "location")
            and _check_names(database, "country")
            and _check_names(database, "parking_spot")
        )
    except PyMongoError as e:
        logger.error(f"An error occurred while initializing database: {e}")
        return False
