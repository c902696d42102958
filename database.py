"""
MongoDB access for the local store.

`db` is None when no DATABASE_URL is configured; the helpers accept an
explicit database so tests can hand in their own.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL


def connect(url: str, name: str) -> Database:
    client = MongoClient(url, serverSelectionTimeoutMS=5000, tz_aware=True)
    return client[name]


db: Optional[Database] = connect(DATABASE_URL, DATABASE_NAME) if DATABASE_URL else None


def _resolve(database: Optional[Database]) -> Database:
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not configured, set DATABASE_URL")
    return database


def to_document(data: Union[BaseModel, dict]) -> dict:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    if "id" in doc:
        doc["_id"] = doc["id"]
    return doc


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    doc = to_document(data)
    doc.setdefault("updated_at", datetime.now(timezone.utc))
    result = _resolve(database)[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[str] = None, database: Optional[Database] = None) -> list:
    cursor = _resolve(database)[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort, 1)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
