"""
MongoDB access helpers.

The client is opened once by the application lifespan and handed to request
handlers through the `get_db` dependency in main.py. Collection names are
the lowercased model names from schemas.py (Category -> "category").
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import InvalidInput

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

logger = logging.getLogger(__name__)


def open_database(url: Optional[str] = DATABASE_URL, name: Optional[str] = DATABASE_NAME) -> Tuple[Optional[MongoClient], Optional[Database]]:
    if not url or not name:
        logger.warning("DATABASE_URL or DATABASE_NAME not set, running without a database")
        return None, None
    client = MongoClient(url)
    return client, client[name]


def close_database(client: Optional[MongoClient]) -> None:
    if client is not None:
        client.close()


def ensure_indexes(db: Database) -> None:
    """Create the unique indexes the services rely on as final arbiters."""
    db["category"].create_index([("slug", ASCENDING)], unique=True, name="slug_1")
    db["category"].create_index(
        [("parent_id", ASCENDING), ("name", ASCENDING)], unique=True, name="parent_id_1_name_1"
    )
    db["category"].create_index([("path", ASCENDING)])
    db["category"].create_index([("parent_id", ASCENDING), ("is_active", ASCENDING)])
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)
    db["product"].create_index([("seller_id", ASCENDING)])
    db["product"].create_index([("status", ASCENDING), ("is_available", ASCENDING)])
    db["shippingaddress"].create_index([("user_id", ASCENDING), ("is_default", ASCENDING)])
    # at most one default and one default-pickup address per user
    db["shippingaddress"].create_index([("default_of", ASCENDING)], unique=True, sparse=True, name="default_of_1")
    db["shippingaddress"].create_index(
        [("default_pickup_of", ASCENDING)], unique=True, sparse=True, name="default_pickup_of_1"
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a document with timestamps and return it, _id included."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = _now()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List[Tuple[str, int]]] = None, skip: int = 0, limit: int = 0) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(id_str: Union[str, ObjectId]) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except Exception:
        raise InvalidInput("Invalid id format", details={"id": str(id_str)})


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Make a Mongo document JSON friendly: _id -> id, ObjectId -> str, datetime -> ISO."""
    if doc is None:
        return None
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        key = "id" if k == "_id" else k
        out[key] = _serialize_value(v)
    return out


def _serialize_value(v: Any) -> Any:
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, dict):
        return serialize_doc(v)
    if isinstance(v, list):
        return [_serialize_value(x) for x in v]
    return v
