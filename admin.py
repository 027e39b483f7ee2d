"""
Admin back office: dashboard numbers, analytics, and staged edits of orders,
users and products.

Staged edits are saved one row at a time. A failure stops the loop; rows saved
before it stay saved.
"""

import logging
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, serialize_doc, to_object_id
from errors import BulkUpdateError, InvalidInputError, NotFoundError, StorefrontError
from schemas import OrderStatus, Product, Role

logger = logging.getLogger(__name__)

STATUS_OPTIONS = [s.value for s in OrderStatus]
ROLE_OPTIONS = [r.value for r in Role]

STATS_RETRY_DELAY = 0.35


def fetch_stats(db: Database) -> Dict[str, int]:
    return {
        "total_orders": db["orders"].count_documents({}),
        "pending_orders": db["orders"].count_documents({"status": OrderStatus.pending.value}),
        "total_users": db["users"].count_documents({}),
    }


def fetch_stats_with_retry(
    db: Database,
    retries: int = 1,
    delay: float = STATS_RETRY_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    while True:
        try:
            stats = fetch_stats(db)
        except PyMongoError as e:
            if retries <= 0:
                raise
            logger.warning("Dashboard stats failed, retrying in %.2fs: %s", delay, e)
            retries -= 1
            sleep(delay)
            continue
        stats["last_updated"] = datetime.now(timezone.utc)
        return stats


def analytics(db: Database, today: Optional[datetime] = None) -> Dict[str, Any]:
    orders = list(db["orders"].find({}, {"order_date": 1, "total_amount": 1, "status": 1}))
    today = today or datetime.now(timezone.utc)

    total_revenue = round(sum(float(o.get("total_amount", 0)) for o in orders), 2)
    status_counts = dict(Counter(o.get("status") for o in orders))

    by_day: Dict[str, List[Dict[str, Any]]] = {}
    for o in orders:
        by_day.setdefault(o["order_date"].strftime("%Y-%m-%d"), []).append(o)
    last_7_days = []
    for i in range(6, -1, -1):
        day_key = (today - timedelta(days=i)).strftime("%Y-%m-%d")
        day_orders = by_day.get(day_key, [])
        last_7_days.append({
            "date": day_key,
            "orders": len(day_orders),
            "revenue": round(sum(float(o.get("total_amount", 0)) for o in day_orders), 2),
        })

    return {
        "total_revenue": total_revenue,
        "total_orders": len(orders),
        "status_counts": status_counts,
        "last_7_days": last_7_days,
    }


# Orders

def list_orders(db: Database) -> List[Dict[str, Any]]:
    orders = []
    for o in db["orders"].find().sort("order_date", -1):
        order = serialize_doc(o)
        customer = db["users"].find_one({"_id": to_object_id(o["user_id"])}, {"full_name": 1, "email": 1})
        order["customer"] = {"full_name": customer.get("full_name"), "email": customer.get("email")} if customer else None
        items = []
        for it in db["order_items"].find({"order_id": order["id"]}):
            product = db["products"].find_one({"_id": to_object_id(it["product_id"])}, {"name": 1})
            item = serialize_doc(it)
            item["product_name"] = product.get("name") if product else None
            items.append(item)
        order["items"] = items
        orders.append(order)
    return orders


def normalize_status(status: str) -> str:
    if not isinstance(status, str):
        raise InvalidInputError(f"Invalid status {status!r}")
    normalized = status.strip().lower()
    if normalized not in STATUS_OPTIONS:
        raise InvalidInputError(f'Invalid status "{status}"')
    return normalized


def _save_rows(db: Database, collection: str, dirty: Dict[str, Dict[str, Any]], build_payload) -> int:
    updated = 0
    for row_id, changes in dirty.items():
        try:
            payload = build_payload(changes)
            obj_id = to_object_id(row_id)
            if not obj_id:
                raise NotFoundError(f"Unknown id {row_id}")
            res = db[collection].update_one({"_id": obj_id}, {"$set": payload})
            if res.matched_count == 0:
                raise NotFoundError(f"Unknown id {row_id}")
        except (InvalidInputError, NotFoundError, PyMongoError) as e:
            message = getattr(e, "message", str(e))
            status_code = 500 if isinstance(e, PyMongoError) else 400
            logger.error("Saving %s stopped at %s after %d updates: %s", collection, row_id, updated, message)
            raise BulkUpdateError(
                f"{message} ({updated} of {len(dirty)} changes saved)", updated=updated, status_code=status_code
            )
        updated += 1
    logger.info("Saved %d staged %s changes", updated, collection)
    return updated


def save_order_changes(db: Database, dirty: Dict[str, Dict[str, Any]]) -> int:
    """Apply {order_id: {"status": ...}}. Any status can be set from any other."""
    def build_payload(changes):
        if "status" not in changes:
            raise InvalidInputError("Missing status")
        return {"status": normalize_status(changes["status"])}

    return _save_rows(db, "orders", dirty, build_payload)


# Users

def list_users(db: Database) -> List[Dict[str, Any]]:
    rows = db["users"].find({}, {"full_name": 1, "email": 1, "role": 1}).sort("full_name", 1)
    return [serialize_doc(u) for u in rows]


def save_user_changes(db: Database, dirty: Dict[str, Dict[str, Any]]) -> int:
    """Apply {user_id: {"full_name"?: ..., "role"?: ...}}."""
    def build_payload(changes):
        payload = {}
        if changes.get("full_name") is not None:
            full_name = changes["full_name"]
            if not isinstance(full_name, str) or not full_name.strip():
                raise InvalidInputError("Full name cannot be empty")
            payload["full_name"] = full_name.strip()
        if changes.get("role") is not None:
            role = changes["role"]
            if not isinstance(role, str) or role.strip() not in ROLE_OPTIONS:
                raise InvalidInputError(f"Invalid role {role!r}")
            payload["role"] = role.strip()
        if not payload:
            raise InvalidInputError("No fields to update")
        return payload

    return _save_rows(db, "users", dirty, build_payload)


# Products

def list_products(db: Database) -> List[Dict[str, Any]]:
    products = []
    for p in db["products"].find().sort("name", 1):
        product = serialize_doc(p)
        category = db["categories"].find_one({"_id": to_object_id(p.get("category_id"))}) if p.get("category_id") else None
        product["category_name"] = category.get("name") if category else None
        products.append(product)
    return products


def create_product(db: Database, product: Product) -> Dict[str, Any]:
    try:
        product_id = create_document(db, "products", product)
    except PyMongoError as e:
        logger.error("Creating product %r failed: %s", product.name, e)
        raise StorefrontError("Failed to create product", status_code=500)
    return serialize_doc(db["products"].find_one({"_id": to_object_id(product_id)}))


def update_product(db: Database, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    obj_id = to_object_id(product_id)
    if not obj_id:
        raise InvalidInputError("Invalid product id")
    if not changes:
        raise InvalidInputError("No fields to update")
    changes["updated_at"] = datetime.now(timezone.utc)
    try:
        res = db["products"].update_one({"_id": obj_id}, {"$set": changes})
    except PyMongoError as e:
        logger.error("Updating product %s failed: %s", product_id, e)
        raise StorefrontError("Failed to update product", status_code=500)
    if res.matched_count == 0:
        raise NotFoundError("Product not found")
    return serialize_doc(db["products"].find_one({"_id": obj_id}))


def delete_product(db: Database, product_id: str) -> None:
    obj_id = to_object_id(product_id)
    if not obj_id:
        raise InvalidInputError("Invalid product id")
    try:
        res = db["products"].delete_one({"_id": obj_id})
        if res.deleted_count == 0:
            raise NotFoundError("Product not found")
        db["product_vectors"].delete_many({"product_id": product_id})
    except PyMongoError as e:
        logger.error("Deleting product %s failed: %s", product_id, e)
        raise StorefrontError("Failed to delete product", status_code=500)
