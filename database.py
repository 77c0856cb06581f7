"""
MongoDB access helpers.

Collections:
- user: accounts
- cycle_log: one daily log per user and calendar day
- progress: points ledger and unlocks, one document per user
- donation_submission: donation proofs awaiting review
- badge_mint: one on-chain badge per wallet and badge id
- proposal: DAO proposals
- location: donation centers
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
    return _client


def get_db():
    """FastAPI dependency returning the application database."""
    return get_client()[DATABASE_NAME]


def ensure_indexes(db) -> None:
    db["user"].create_index("user_id", unique=True)
    db["user"].create_index("name_lower", unique=True)
    db["cycle_log"].create_index([("user_id", ASCENDING), ("date_iso", ASCENDING)], unique=True)
    db["cycle_log"].create_index([("user_id", ASCENDING), ("date_iso", DESCENDING)])
    db["progress"].create_index("user_id", unique=True)
    db["donation_submission"].create_index("user_id")
    db["donation_submission"].create_index("status")
    db["badge_mint"].create_index([("wallet_address", ASCENDING), ("badge_id", ASCENDING)], unique=True)


def now_utc():
    return datetime.now(timezone.utc)


def object_id(value: str) -> Optional[ObjectId]:
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a JSON-friendly copy of a stored document."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    for key, value in out.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
        elif isinstance(value, ObjectId):
            out[key] = str(value)
    return out


def create_document(db, collection_name: str, data: Dict[str, Any]) -> str:
    doc = dict(data)
    ts = now_utc()
    doc.setdefault("created_at", ts)
    doc["updated_at"] = ts
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)
