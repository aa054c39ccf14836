"""
MongoDB connection and document helpers.

The connection string and database name come from the environment
(DATABASE_URL, DATABASE_NAME); a .env file is honoured.
"""

import logging
import os
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pymongo import MongoClient
from pymongo.database import Database

from errors import InvalidRequest

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop")

USERS = "user"
PRODUCTS = "product"
ORDERS = "order"
META = "meta"

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=True)
    return _client


def get_db() -> Database:
    """FastAPI dependency returning the application database."""
    return get_client()[DATABASE_NAME]


def ping(db: Database) -> None:
    """Fail fast when the server cannot be reached."""
    db.client.admin.command("ping")
    logger.info("Connected to MongoDB database %s", db.name)


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index("email", unique=True)
    db[ORDERS].create_index([("user_id", 1), ("created_at", -1)])


def parse_object_id(value: Any, what: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    # ObjectId(None) would mint a fresh id
    if not isinstance(value, str):
        raise InvalidRequest(f"Invalid {what}", error=repr(value))
    try:
        return ObjectId(value)
    except InvalidId:
        raise InvalidRequest(f"Invalid {what}", error=value)


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        doc[k] = _serialize_value(v)
    return doc
