import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

import config

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]


def get_db():
    """FastAPI dependency; tests override it with an in-memory database."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands back naive UTC datetimes unless the client is tz_aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    return str(ObjectId())


def create_document(database, collection_name: str, data: Union[BaseModel, dict], doc_id: Optional[str] = None) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    doc.pop("id", None)
    doc["_id"] = doc_id or new_id()
    doc["createdAt"] = now()
    database[collection_name].insert_one(doc)
    logger.debug(f"[Database] Inserted {doc['_id']} into {collection_name}")
    return doc["_id"]


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> list:
    cursor = database[collection_name].find(filter_dict or {}).sort("createdAt", -1)
    if limit:
        cursor = cursor.limit(limit)
    docs = list(cursor)
    logger.debug(f"[Database] Fetched {len(docs)} documents from {collection_name}")
    return docs


def ensure_indexes(database) -> None:
    database["users"].create_index([("email", ASCENDING)], unique=True)
    database["sessions"].create_index([("token", ASCENDING)], unique=True)
    for name in ("clients", "quotations", "invoices", "receipts", "statements"):
        database[name].create_index([("createdBy", ASCENDING)])
        database[name].create_index([("companyId", ASCENDING)])
    database["user_products"].create_index([("userId", ASCENDING)])
    database["user_products"].create_index([("companyId", ASCENDING)])
    database["invoices"].create_index([("quotationId", ASCENDING)])
    database["receipts"].create_index([("invoiceId", ASCENDING)])
