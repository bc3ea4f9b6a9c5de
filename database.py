"""
Database helpers (MongoDB)

A single MongoClient is opened when this module is imported and shared by every
request. Collections are addressed by the lowercase entity name.
"""
import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from pymongo import MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "leatherworking-tracker")

client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[DATABASE_NAME]

COLLECTIONS = ["customer", "product", "material", "order", "project"]


def now() -> datetime:
    return datetime.now(timezone.utc)


def ping() -> None:
    db.command("ping")


def oid(obj: Optional[str]) -> Optional[ObjectId]:
    if obj is None:
        return None
    if isinstance(obj, ObjectId):
        return obj
    if not ObjectId.is_valid(obj):
        return None
    return ObjectId(obj)


def to_str_id(doc: Any) -> Any:
    """Render a stored document as JSON-ready data.

    ObjectIds become strings and datetimes ISO-8601 strings, at any depth.
    """
    if isinstance(doc, dict):
        return {k: to_str_id(v) for k, v in doc.items()}
    if isinstance(doc, list):
        return [to_str_id(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        if doc.tzinfo is None:
            doc = doc.replace(tzinfo=timezone.utc)
        return doc.isoformat()
    return doc


def create_document(collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    stamp = now()
    doc = {**data, "createdAt": stamp, "updatedAt": stamp}
    res = db[collection_name].insert_one(doc)
    return db[collection_name].find_one({"_id": res.inserted_id})


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)


def populate(docs: Iterable[Dict[str, Any]], path: str, collection_name: str) -> List[Dict[str, Any]]:
    """Replace reference ids at ``path`` with the referenced documents.

    ``path`` is either a top-level field (``customerId``) or an array field and
    the reference inside each element (``items.productId``). All referenced ids
    are fetched with a single ``$in`` query; ids that no longer resolve are
    replaced with None.
    """
    docs = list(docs)
    array_field, _, ref_field = path.rpartition(".")

    def holders(d: Dict[str, Any]) -> List[Dict[str, Any]]:
        if not array_field:
            return [d]
        return [el for el in d.get(array_field) or [] if isinstance(el, dict)]

    ids = {h.get(ref_field) for d in docs for h in holders(d)}
    ids = [i for i in ids if isinstance(i, ObjectId)]

    ref_map: Dict[ObjectId, Dict[str, Any]] = {}
    if ids:
        for ref in db[collection_name].find({"_id": {"$in": ids}}):
            ref_map[ref["_id"]] = ref

    for d in docs:
        for h in holders(d):
            if ref_field in h:
                h[ref_field] = ref_map.get(h[ref_field])
    return docs
