import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict

from bson import ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config

logger = logging.getLogger(__name__)


def now() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache(maxsize=1)
def _connect() -> Database:
    client = MongoClient(
        config.DATABASE_URL,
        serverSelectionTimeoutMS=config.DB_TIMEOUT_MS,
        connectTimeoutMS=config.DB_TIMEOUT_MS,
        socketTimeoutMS=config.DB_TIMEOUT_MS,
    )
    database = client[config.DATABASE_NAME]
    try:
        ensure_indexes(database)
        migrate_user_images(database)
    except PyMongoError:
        client.close()
        raise
    logger.info("Connected to MongoDB database %s", config.DATABASE_NAME)
    return database


def get_db() -> Database:
    """FastAPI dependency returning the shared database handle."""
    return _connect()


def ensure_indexes(database: Database) -> None:
    database["product"].create_index([("productID", ASCENDING)], unique=True)
    database["product"].create_index([("category", ASCENDING)])
    database["product"].create_index([("isAvailable", ASCENDING)])
    database["user"].create_index([("email", ASCENDING)], unique=True)


def migrate_user_images(database: Database) -> int:
    """Rewrite legacy single-string ``image`` values into one-element lists."""
    migrated = 0
    for user in database["user"].find({}, {"image": 1}):
        image = user.get("image")
        if isinstance(image, str):
            database["user"].update_one({"_id": user["_id"]}, {"$set": {"image": [image] if image else []}})
            migrated += 1
    if migrated:
        logger.info("Migrated %d user image field(s) to lists", migrated)
    return migrated


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(data)
    stamp = now()
    doc.setdefault("createdAt", stamp)
    doc["updatedAt"] = stamp
    result = database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc
