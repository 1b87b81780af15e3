"""
Mongo access helpers

Collections are named after the lowercased schema class (User -> "user").
Documents carry created_at / updated_at timestamps and reference each
other by string id.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands datetimes back naive unless the client is tz aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def connect(settings) -> Database:
    """Open the database, retrying forever with a fixed delay until the server answers."""
    while True:
        try:
            client = MongoClient(settings.database_url, tz_aware=True, serverSelectionTimeoutMS=30000)
            client.admin.command("ping")
            logger.info("MongoDB connected (database %s)", settings.database_name)
            return client[settings.database_name]
        except PyMongoError as e:
            logger.error("MongoDB connection failed: %s", e)
            logger.info("Retrying in %s seconds...", settings.db_retry_seconds)
            time.sleep(settings.db_retry_seconds)


def ensure_indexes(db: Database):
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["user"].create_index([("auth_id", ASCENDING)], unique=True, sparse=True)
    db["user"].create_index([("role", ASCENDING)])
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)
    db["review"].create_index([("product_id", ASCENDING)])
    db["product"].create_index([("seller_id", ASCENDING)])
    db["otp"].create_index([("user_id", ASCENDING)])
    db["session"].create_index([("token", ASCENDING)])


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    else:
        data = dict(data)
    now = utcnow()
    data["created_at"] = now
    data["updated_at"] = now
    result = db[collection_name].insert_one(data)
    return str(result.inserted_id)


def parse_object_id(value: Any, label: str = "resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {label} id")


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    doc.pop("password_hash", None)
    return {k: _serialize_value(v) for k, v in doc.items()}
