"""
Catalog browsing and search.

The whole catalog is small enough to load at once; search, brand and category
filters and sorting run in memory over the loaded rows.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import get_documents, serialize_doc, to_object_id
from errors import InvalidInputError, NotFoundError, StorefrontError
from schemas import Review

logger = logging.getLogger(__name__)

SORT_KEYS = {
    "price_asc": (lambda p: float(p.get("price", 0)), False),
    "price_desc": (lambda p: float(p.get("price", 0)), True),
    "name_asc": (lambda p: (p.get("name") or "").lower(), False),
    "name_desc": (lambda p: (p.get("name") or "").lower(), True),
}


def list_products(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, "products")


def list_categories(db: Database) -> List[Dict[str, Any]]:
    return get_documents(db, "categories")


def list_brands(products: List[Dict[str, Any]]) -> List[str]:
    return sorted({p["brand"] for p in products if p.get("brand")})


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    obj_id = to_object_id(product_id)
    product = db["products"].find_one({"_id": obj_id}) if obj_id else None
    if not product:
        raise NotFoundError("Product not found")
    return serialize_doc(product)


def get_product_by_name(db: Database, name: str) -> Dict[str, Any]:
    product = db["products"].find_one({"name": name})
    if not product:
        raise NotFoundError(f"No product named {name!r}")
    return serialize_doc(product)


def get_products_by_brand(db: Database, brand: str) -> List[Dict[str, Any]]:
    return get_documents(db, "products", {"brand": brand})


def get_products_by_category(db: Database, category_id: str) -> List[Dict[str, Any]]:
    obj_id = to_object_id(category_id)
    if not obj_id or not db["categories"].find_one({"_id": obj_id}):
        raise NotFoundError("Category not found")
    return get_documents(db, "products", {"category_id": category_id})


def _matches_query(product: Dict[str, Any], needle: str) -> bool:
    if needle in (product.get("name") or "").lower():
        return True
    return any(needle in tag.lower() for tag in product.get("tags") or [])


def filter_products(
    products: List[Dict[str, Any]],
    query: Optional[str] = None,
    brand: Optional[str] = None,
    category_id: Optional[str] = None,
    sort_by: Optional[str] = None,
) -> List[Dict[str, Any]]:
    if sort_by and sort_by not in SORT_KEYS:
        raise InvalidInputError(f"Unknown sort option {sort_by!r}")
    needle = (query or "").strip().lower()
    result = [
        p for p in products
        if (not needle or _matches_query(p, needle))
        and (not brand or p.get("brand") == brand)
        and (not category_id or p.get("category_id") == category_id)
    ]
    if sort_by:
        key, reverse = SORT_KEYS[sort_by]
        result.sort(key=key, reverse=reverse)
    return result


# Reviews

def list_reviews(db: Database, product_id: str) -> List[Dict[str, Any]]:
    reviews = []
    for r in db["product_reviews"].find({"product_id": product_id}).sort("created_at", -1):
        review = serialize_doc(r)
        author = db["users"].find_one({"_id": to_object_id(r["user_id"])})
        review["reviewer"] = author.get("full_name") if author else None
        reviews.append(review)
    return reviews


def add_review(db: Database, user_id: str, product_id: str, rating: int, review_text: str) -> Dict[str, Any]:
    get_product(db, product_id)
    if not 1 <= rating <= 5:
        raise InvalidInputError("Rating must be between 1 and 5")
    if not review_text.strip():
        raise InvalidInputError("Review text is required")
    review = Review(product_id=product_id, user_id=user_id, rating=rating, review_text=review_text.strip())
    doc = review.model_dump()
    doc["created_at"] = datetime.now(timezone.utc)
    try:
        result = db["product_reviews"].insert_one(doc)
    except PyMongoError as e:
        logger.error("Saving review of product %s failed: %s", product_id, e)
        raise StorefrontError("Failed to save review", status_code=500)
    return serialize_doc(db["product_reviews"].find_one({"_id": result.inserted_id}))
