"""Wishlist controller: a set of product references per user."""

import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import serialize_doc, to_object_id
from errors import NotFoundError, StorefrontError

logger = logging.getLogger(__name__)

DEFAULT_WISHLIST_NAME = "My Wishlist"


def find_wishlist_id(db: Database, user_id: str) -> Optional[str]:
    wishlist = db["wishlists"].find_one({"user_id": user_id})
    return str(wishlist["_id"]) if wishlist else None


def get_or_create_wishlist(db: Database, user_id: str) -> str:
    wishlist_id = find_wishlist_id(db, user_id)
    if wishlist_id:
        return wishlist_id
    result = db["wishlists"].insert_one({"user_id": user_id, "name": DEFAULT_WISHLIST_NAME})
    return str(result.inserted_id)


def _ensure_product(db: Database, product_id: str) -> None:
    obj_id = to_object_id(product_id)
    if not obj_id or not db["products"].find_one({"_id": obj_id}):
        raise NotFoundError("Product not found")


def add_to_wishlist(db: Database, user_id: str, product_id: str) -> None:
    _ensure_product(db, product_id)
    wishlist_id = get_or_create_wishlist(db, user_id)
    try:
        db["wishlist_items"].update_one(
            {"wishlist_id": wishlist_id, "product_id": product_id},
            {"$setOnInsert": {"wishlist_id": wishlist_id, "product_id": product_id}},
            upsert=True,
        )
    except PyMongoError as e:
        logger.error("addToWishlist failed for product %s: %s", product_id, e)
        raise StorefrontError("Failed to add to wishlist", status_code=500)


def toggle_wishlist(db: Database, user_id: str, product_id: str) -> bool:
    """Add the product if absent, remove it if present. Returns True when it is now wishlisted."""
    _ensure_product(db, product_id)
    wishlist_id = get_or_create_wishlist(db, user_id)
    try:
        removed = db["wishlist_items"].delete_many({"wishlist_id": wishlist_id, "product_id": product_id})
        if removed.deleted_count:
            return False
        db["wishlist_items"].insert_one({"wishlist_id": wishlist_id, "product_id": product_id})
    except PyMongoError as e:
        logger.error("toggleWishlist failed for product %s: %s", product_id, e)
        raise StorefrontError("Failed to update wishlist", status_code=500)
    return True


def get_wishlist_items(db: Database, user_id: str) -> List[Dict[str, Any]]:
    wishlist_id = find_wishlist_id(db, user_id)
    if not wishlist_id:
        return []
    items = []
    for wi in db["wishlist_items"].find({"wishlist_id": wishlist_id}):
        product = db["products"].find_one({"_id": to_object_id(wi["product_id"])})
        if not product:
            continue
        item = serialize_doc(wi)
        item["product"] = serialize_doc(product)
        items.append(item)
    return items


def delete_item(db: Database, user_id: str, item_id: str) -> None:
    wishlist_id = find_wishlist_id(db, user_id)
    obj_id = to_object_id(item_id)
    if not wishlist_id or not obj_id:
        raise NotFoundError("Wishlist item not found")
    res = db["wishlist_items"].delete_one({"_id": obj_id, "wishlist_id": wishlist_id})
    if res.deleted_count == 0:
        raise NotFoundError("Wishlist item not found")
