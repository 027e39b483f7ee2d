"""
Cart controller.

Keeps 0 < quantity <= product.stock_quantity for every cart line at the time
it is written. The cart row itself is created on first use.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import serialize_doc, to_object_id
from errors import InsufficientStockError, NotFoundError, StorefrontError

logger = logging.getLogger(__name__)


def find_cart_id(db: Database, user_id: str) -> Optional[str]:
    cart = db["carts"].find_one({"user_id": user_id})
    return str(cart["_id"]) if cart else None


def get_or_create_cart(db: Database, user_id: str) -> str:
    cart_id = find_cart_id(db, user_id)
    if cart_id:
        return cart_id
    result = db["carts"].insert_one({"user_id": user_id})
    logger.debug("Created cart %s for user %s", result.inserted_id, user_id)
    return str(result.inserted_id)


def _get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["products"].find_one({"_id": to_object_id(product_id)}) if to_object_id(product_id) else None
    if not product:
        raise NotFoundError("Product not found")
    return product


def _get_owned_item(db: Database, user_id: str, item_id: str) -> Dict[str, Any]:
    cart_id = find_cart_id(db, user_id)
    obj_id = to_object_id(item_id)
    item = db["cart_items"].find_one({"_id": obj_id, "cart_id": cart_id}) if cart_id and obj_id else None
    if not item:
        raise NotFoundError("Cart item not found")
    return item


def get_cart_items(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """Cart lines joined with their product rows; lines of deleted products are dropped."""
    cart_id = find_cart_id(db, user_id)
    if not cart_id:
        return []
    items = []
    for it in db["cart_items"].find({"cart_id": cart_id}):
        product = db["products"].find_one({"_id": to_object_id(it["product_id"])})
        if not product:
            continue
        line = serialize_doc(it)
        line["product"] = serialize_doc(product)
        items.append(line)
    return items


def calculate_total(lines: List[Dict[str, Any]]) -> float:
    return round(sum(line["quantity"] * float(line["product"].get("price", 0)) for line in lines), 2)


def add_to_cart(db: Database, user_id: str, product_id: str) -> Dict[str, Any]:
    product = _get_product(db, product_id)
    cart_id = get_or_create_cart(db, user_id)
    existing = db["cart_items"].find_one({"cart_id": cart_id, "product_id": product_id})
    current = existing["quantity"] if existing else 0
    stock = int(product.get("stock_quantity", 0))
    if current + 1 > stock:
        raise InsufficientStockError(f"Only {stock} left in stock")
    try:
        if existing:
            db["cart_items"].update_one({"_id": existing["_id"]}, {"$set": {"quantity": current + 1}})
            item_id = existing["_id"]
        else:
            item_id = db["cart_items"].insert_one({"cart_id": cart_id, "product_id": product_id, "quantity": 1}).inserted_id
    except PyMongoError as e:
        logger.error("addToCart failed for product %s: %s", product_id, e)
        raise StorefrontError("Failed to add item to cart", status_code=500)
    return serialize_doc(db["cart_items"].find_one({"_id": item_id}))


def delete_item(db: Database, user_id: str, item_id: str) -> None:
    item = _get_owned_item(db, user_id, item_id)
    try:
        db["cart_items"].delete_one({"_id": item["_id"]})
    except PyMongoError as e:
        logger.error("Failed to remove cart item %s: %s", item_id, e)
        raise StorefrontError("Failed to remove item", status_code=500)


def update_quantity(db: Database, user_id: str, item_id: str, delta: int) -> Optional[Dict[str, Any]]:
    """
    Change a line's quantity by delta. Dropping to zero or below removes the
    line and returns None; going above stock raises and leaves it unchanged.
    """
    item = _get_owned_item(db, user_id, item_id)
    new_quantity = item["quantity"] + delta
    if new_quantity <= 0:
        delete_item(db, user_id, item_id)
        return None
    product = db["products"].find_one({"_id": to_object_id(item["product_id"])}) or {}
    stock = int(product.get("stock_quantity", 0))
    if new_quantity > stock:
        raise InsufficientStockError(f"Only {stock} available in stock")
    try:
        db["cart_items"].update_one({"_id": item["_id"]}, {"$set": {"quantity": new_quantity}})
    except PyMongoError as e:
        logger.error("Failed to update quantity of cart item %s: %s", item_id, e)
        raise StorefrontError("Failed to update quantity", status_code=500)
    return serialize_doc(db["cart_items"].find_one({"_id": item["_id"]}))


def clear_cart(db: Database, cart_id: str) -> int:
    return db["cart_items"].delete_many({"cart_id": cart_id}).deleted_count
