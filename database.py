"""
Database helpers

MongoDB connection plus the small set of helpers every module uses.
Collections follow the storefront tables: users, products, categories, carts,
cart_items, wishlists, wishlist_items, orders, order_items, product_reviews,
product_vectors.
"""

import logging
import math
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from errors import StorefrontError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL is not set, database is not initialized")


def get_db() -> Database:
    """FastAPI dependency returning the active database."""
    if db is None:
        raise StorefrontError("Database not configured", status_code=500)
    return db


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse a string id, returning None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at, and return its id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    data_dict.setdefault("created_at", datetime.now(timezone.utc))
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def _cosine_similarity(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def match_product_vectors(database: Database, query_embedding: List[float], match_count: int = 5) -> List[Dict[str, Any]]:
    """
    Nearest-neighbour lookup over the product_vectors collection.

    Returns up to match_count dicts of {"product_id", "similarity"}, most
    similar first.

    Scores every stored vector in Python. On MongoDB Atlas a $vectorSearch
    aggregation stage over an indexed embedding field does this server-side.
    """
    scored = []
    for row in database["product_vectors"].find({}, {"product_id": 1, "embedding": 1}):
        embedding = row.get("embedding")
        if not embedding or len(embedding) != len(query_embedding):
            continue
        scored.append({
            "product_id": row["product_id"],
            "similarity": _cosine_similarity(query_embedding, embedding),
        })
    scored.sort(key=lambda m: m["similarity"], reverse=True)
    return scored[:max(match_count, 0)]
