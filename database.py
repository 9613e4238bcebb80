"""
Database helpers

One process-wide pymongo client. Route functions receive the database through
the get_db dependency so tests can swap in an in-memory one.
"""
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

import config

client = MongoClient(config.DATABASE_URL) if config.DATABASE_URL else None
db = client[config.DATABASE_NAME] if client is not None and config.DATABASE_NAME else None


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="伺服器錯誤")
    return db


def init_indexes(database: Database):
    database["users"].create_index([("account", ASCENDING)], unique=True)
    database["users"].create_index([("email", ASCENDING)], unique=True)


def create_document(database: Database, collection_name: str, data) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    else:
        data = dict(data)
    result = database[collection_name].insert_one(data)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def _clean(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_clean(v) for v in value]
    return value


def to_str_id(doc: dict) -> dict:
    if not doc:
        return doc
    d = _clean(dict(doc))
    if d.get("_id") is not None:
        d["id"] = d.pop("_id")
    return d


def parse_object_id(id_str: str, message: str = "資料不存在") -> ObjectId:
    # Malformed ids are reported the same way as missing documents
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=message)
