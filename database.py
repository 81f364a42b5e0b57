"""
Database Helper Functions

MongoDB connection, collection names and the helpers routes use to turn
documents and write results into JSON-ready dictionaries.
"""

import logging
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, MongoClient, TEXT
from pymongo.database import Database
from pymongo.results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult

import config
from errors import InternalError

logger = logging.getLogger("hostel.database")

MEALS = "meals"
UPCOMING_MEALS = "upcomingmeals"
REQUESTED_MEALS = "requestedmeals"
SERVED_MEALS = "servedmeals"
USERS = "users"
PAYMENTS = "packagepaymentdata"

# Fields covered by the full-text index on meals and upcoming meals
TEXT_INDEX_FIELDS = ["title", "category", "ingredients", "description", "distributorName", "distributorEmail"]

# One request per user and meal
REQUEST_UNIQUE_KEYS = [("userEmail", ASCENDING), ("mealId", ASCENDING)]

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if config.DATABASE_URL:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency handing out the process-wide database handle."""
    if db is None:
        raise InternalError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def ensure_indexes(database: Database) -> None:
    for name in (MEALS, UPCOMING_MEALS):
        database[name].create_index([(field, TEXT) for field in TEXT_INDEX_FIELDS])
    database[REQUESTED_MEALS].create_index(REQUEST_UNIQUE_KEYS, unique=True)
    logger.info("Indexes ensured on %s, %s and %s", MEALS, UPCOMING_MEALS, REQUESTED_MEALS)


def close() -> None:
    if _client is not None:
        _client.close()


def parse_object_id(value: str) -> Optional[ObjectId]:
    """Return the ObjectId for ``value`` or None when it is not a valid id."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def find_by_id(database: Database, collection_name: str, _id: str) -> Optional[dict]:
    oid = parse_object_id(_id)
    if oid is None:
        return None
    return database[collection_name].find_one({"_id": oid})


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    return _serialize(doc)


def serialize_docs(docs) -> list:
    return [_serialize(doc) for doc in docs]


def _serialize(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    return value


# Write results, shaped the way the web client reads them

def insert_result(result: InsertOneResult) -> dict:
    return {"acknowledged": result.acknowledged, "insertedId": str(result.inserted_id)}


def insert_many_result(result: InsertManyResult) -> dict:
    return {
        "acknowledged": result.acknowledged,
        "insertedCount": len(result.inserted_ids),
        "insertedIds": [str(_id) for _id in result.inserted_ids],
    }


def update_result(result: UpdateResult) -> dict:
    return {
        "acknowledged": result.acknowledged,
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
        "upsertedId": str(result.upserted_id) if result.upserted_id is not None else None,
    }


def delete_result(result: DeleteResult) -> dict:
    return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}
