"""
Document store helpers.

Every function takes the pymongo `Database` explicitly so the services can
be handed a real database or an in-memory one. Queries are equality filters
only and never carry an order clause; ordering is done in memory with
`sort_by` after the fetch.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from .config import Settings

logger = logging.getLogger(__name__)

USERS = "users"
USER_ROLES = "userRoles"
DONORS = "donors"
DONATIONS = "donations"
HOSPITALS = "hospitals"
HOSPITAL_INVENTORY = "hospitalInventory"
DONATION_EVENTS = "donationEvents"
DONATION_RECORDS = "donationRecords"
DONATION_ALERTS = "donationAlerts"
BLOOD_REQUESTS = "bloodRequests"
IDENTITIES = "identities"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def connect(settings: Settings) -> Optional[Database]:
    if not (settings.database_url and settings.database_name):
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
        return None
    client = MongoClient(settings.database_url)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db[DONORS].create_index("user_id")
    db[DONORS].create_index("blood_type")
    db[DONATIONS].create_index("user_id")
    db[HOSPITALS].create_index("user_id")
    db[HOSPITAL_INVENTORY].create_index(
        [("hospital_id", ASCENDING), ("blood_type", ASCENDING)], unique=True
    )
    db[DONATION_EVENTS].create_index("hospital_id")
    db[DONATION_EVENTS].create_index("status")
    db[DONATION_RECORDS].create_index("hospital_id")
    db[DONATION_RECORDS].create_index("donor_id")
    db[DONATION_ALERTS].create_index("user_id")
    db[DONATION_ALERTS].create_index("key", unique=True, sparse=True)
    db[BLOOD_REQUESTS].create_index("user_id")
    db[BLOOD_REQUESTS].create_index("hospital_id")
    db[BLOOD_REQUESTS].create_index("status")
    db[IDENTITIES].create_index("email")


def _id_query(doc_id: Any) -> Optional[Dict[str, Any]]:
    # users and userRoles are keyed by the identity subject id, everything
    # else by ObjectId
    if isinstance(doc_id, ObjectId):
        return {"_id": doc_id}
    if not isinstance(doc_id, str) or not doc_id:
        return None
    if ObjectId.is_valid(doc_id):
        return {"_id": {"$in": [ObjectId(doc_id), doc_id]}}
    return {"_id": doc_id}


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc["_id"] = str(doc["_id"])
    return doc


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict], doc_id: Optional[str] = None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    if doc_id is not None:
        data_dict["_id"] = doc_id
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_document(db: Database, collection_name: str, doc_id: Any) -> Optional[Dict[str, Any]]:
    query = _id_query(doc_id)
    if query is None:
        return None
    doc = db[collection_name].find_one(query)
    if doc is None:
        logger.debug("%s/%s not found", collection_name, doc_id)
    return serialize(doc)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(doc) for doc in cursor]


def find_one(db: Database, collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Equality query returning the first match, or None."""
    docs = get_documents(db, collection_name, filter_dict, limit=1)
    return docs[0] if docs else None


def update_document(db: Database, collection_name: str, doc_id: Any, fields: Dict[str, Any], stamp: str = "updated_at") -> bool:
    """Merge `fields` into the document and stamp the update time."""
    query = _id_query(doc_id)
    if query is None:
        return False
    changes = {k: v for k, v in fields.items() if k != "_id"}
    changes[stamp] = utcnow()
    result = db[collection_name].update_one(query, {"$set": changes})
    return result.matched_count > 0


def delete_document(db: Database, collection_name: str, doc_id: Any) -> bool:
    query = _id_query(doc_id)
    if query is None:
        return False
    return db[collection_name].delete_one(query).deleted_count > 0


def as_utc(value: Any) -> datetime:
    """Coerce a stored timestamp to an aware UTC datetime; missing -> epoch."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return EPOCH


def sort_by(docs: Iterable[Dict[str, Any]], *fields: str, descending: bool = True) -> List[Dict[str, Any]]:
    """
    Sort fetched documents in memory on the first present timestamp field.

    Documents with none of the fields sort as the epoch, i.e. last when
    descending.
    """
    def key(doc):
        for field in fields:
            if doc.get(field) is not None:
                return as_utc(doc[field])
        return EPOCH

    return sorted(docs, key=key, reverse=descending)
