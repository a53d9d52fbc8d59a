"""
Database Helpers

MongoDB access for the ReFocus API.

Connection settings come from the environment:
- MONGO_URI (or DATABASE_URL): connection string
- MONGODB_TEST_URI: used instead when TESTING=1
- DATABASE_NAME: database name, defaults to "refocus"

When no connection string is configured and DEV_ALLOW_MEMORY=1, an in-process
mongomock database with the same API is used so the app runs locally and under
tests without a server.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Union, Any

import mongomock
from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient, ASCENDING

logger = logging.getLogger(__name__)

TESTING = os.getenv("TESTING", "0") == "1"
DATABASE_URL = os.getenv("MONGO_URI") or os.getenv("DATABASE_URL")
if TESTING and os.getenv("MONGODB_TEST_URI"):
    DATABASE_URL = os.getenv("MONGODB_TEST_URI")
DATABASE_NAME = os.getenv("DATABASE_NAME", "refocus")
DEV_ALLOW_MEMORY = os.getenv("DEV_ALLOW_MEMORY", "1") == "1"

client = None
db = None
USING_MEMORY = False

if DATABASE_URL:
    client = MongoClient(DATABASE_URL, tz_aware=True)
    db = client[DATABASE_NAME]
elif DEV_ALLOW_MEMORY:
    client = mongomock.MongoClient(tz_aware=True)
    db = client[DATABASE_NAME]
    USING_MEMORY = True
    logger.warning("No MONGO_URI configured, using in-memory database")
else:
    logger.error("No MONGO_URI configured and DEV_ALLOW_MEMORY is off")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_db():
    if db is None:
        raise Exception("Database not available. Check MONGO_URI and DATABASE_NAME environment variables.")
    return db


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with timestamps and return its id as a string."""
    database = _require_db()
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = data.copy()

    now = utcnow()
    data_dict.setdefault("createdAt", now)
    data_dict["updatedAt"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def to_object_id(value: str) -> ObjectId:
    # ObjectId(None) would mint a fresh id
    if not value:
        raise HTTPException(status_code=400, detail="Invalid ID format")
    try:
        return ObjectId(value)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid ID format")


def serialize(value: Any) -> Any:
    """Convert a Mongo document into JSON friendly data (_id -> id, ObjectId -> str, datetime -> ISO)."""
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = serialize(v)
            else:
                out[k] = serialize(v)
        return out
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def ensure_indexes():
    """Create the indexes the API relies on for uniqueness."""
    database = _require_db()
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["goal"].create_index([("userId", ASCENDING)], unique=True)
    database["progress"].create_index([("userId", ASCENDING)], unique=True)
    database["coachprofile"].create_index([("userId", ASCENDING)], unique=True)
    database["license"].create_index([("gameId", ASCENDING)], unique=True)
    database["session"].create_index([("userId", ASCENDING), ("startedAt", ASCENDING)])
    database["survey"].create_index([("userId", ASCENDING), ("createdAt", ASCENDING)])
    database["gameversion"].create_index([("gameId", ASCENDING), ("isCurrentVersion", ASCENDING)])
