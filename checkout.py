"""
Checkout workflow: turn a user's cart into an order and reserve stock.

The writes happen in order (order row, order items, stock decrements, cart
clear). A failure after the order row exists is compensated: decremented
stock is restored and the order with its items is removed, so the store is
left as it was before the attempt. The cart is only cleared once every other
step has succeeded; if clearing it fails, the order is rolled back too.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from pymongo.database import Database
from pymongo.errors import PyMongoError

from cart import calculate_total, clear_cart, find_cart_id, get_cart_items
from database import serialize_doc, to_object_id
from errors import (
    EmptyCartError,
    InsufficientStockError,
    OrderCreationError,
    OrderItemsError,
    StockUpdateError,
)
from schemas import Order, OrderItem

logger = logging.getLogger(__name__)


def check_availability(lines: List[Dict[str, Any]]) -> None:
    over = [line for line in lines if line["quantity"] > int(line["product"].get("stock_quantity", 0))]
    if over:
        raise InsufficientStockError("Some items exceed available stock. Update quantities.")


def decrement_stock(db: Database, product_id: str, quantity: int) -> None:
    """Atomically take quantity units, refusing to go below zero."""
    try:
        res = db["products"].update_one(
            {"_id": to_object_id(product_id), "stock_quantity": {"$gte": quantity}},
            {"$inc": {"stock_quantity": -quantity}},
        )
    except PyMongoError as e:
        raise StockUpdateError(f"Could not update stock for product {product_id}: {e}")
    if res.modified_count == 0:
        raise InsufficientStockError(f"Not enough stock left for product {product_id}")


def _compensate(db: Database, order_id, reserved: List[Dict[str, Any]]) -> None:
    failed = 0
    for line in reserved:
        try:
            db["products"].update_one(
                {"_id": to_object_id(line["product_id"])},
                {"$inc": {"stock_quantity": line["quantity"]}},
            )
        except PyMongoError as e:
            failed += 1
            logger.error("Could not restore %d units of product %s for order %s: %s",
                         line["quantity"], line["product_id"], order_id, e)
    try:
        db["order_items"].delete_many({"order_id": str(order_id)})
        db["orders"].delete_one({"_id": order_id})
    except PyMongoError as e:
        logger.error("Could not remove rolled back order %s: %s", order_id, e)
    logger.warning("Rolled back order %s (%d of %d stock reservations restored)",
                   order_id, len(reserved) - failed, len(reserved))


def place_order(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    user_id = user["id"]
    lines = get_cart_items(db, user_id)
    if not lines:
        raise EmptyCartError("Your cart is empty")
    check_availability(lines)

    total_amount = calculate_total(lines)
    order = Order(
        user_id=user_id,
        order_date=datetime.now(timezone.utc),
        status="pending",
        total_amount=total_amount,
        shipping_address=user.get("address") or "",
    )
    try:
        order_id = db["orders"].insert_one(order.model_dump()).inserted_id
    except PyMongoError as e:
        logger.error("Order insert failed for user %s: %s", user_id, e)
        raise OrderCreationError("Failed to place order")

    reserved: List[Dict[str, Any]] = []
    try:
        order_items = [
            OrderItem(
                order_id=str(order_id),
                product_id=line["product"]["id"],
                quantity=line["quantity"],
                price_at_purchase=float(line["product"]["price"]),
            ).model_dump()
            for line in lines
        ]
        try:
            db["order_items"].insert_many(order_items)
        except PyMongoError as e:
            raise OrderItemsError(f"Failed to save order items: {e}")

        for line in lines:
            decrement_stock(db, line["product"]["id"], line["quantity"])
            reserved.append({"product_id": line["product"]["id"], "quantity": line["quantity"]})

        try:
            clear_cart(db, find_cart_id(db, user_id))
        except PyMongoError as e:
            logger.error("Cart clear failed for user %s: %s", user_id, e)
            raise OrderCreationError("Failed to place order")
    except (OrderItemsError, InsufficientStockError, StockUpdateError, OrderCreationError) as e:
        logger.error("Checkout failed for order %s: %s", order_id, e)
        _compensate(db, order_id, reserved)
        raise

    logger.info("Placed order %s for user %s, total %.2f", order_id, user_id, total_amount)

    result = serialize_doc(db["orders"].find_one({"_id": order_id}))
    result["items"] = [serialize_doc(it) for it in db["order_items"].find({"order_id": str(order_id)})]
    return result


def order_history(db: Database, user_id: str) -> List[Dict[str, Any]]:
    """The user's orders, newest first, each with its items and product names."""
    orders = []
    for o in db["orders"].find({"user_id": user_id}).sort("order_date", -1):
        order = serialize_doc(o)
        items = []
        for it in db["order_items"].find({"order_id": order["id"]}):
            product = db["products"].find_one({"_id": to_object_id(it["product_id"])})
            item = serialize_doc(it)
            item["product_name"] = product.get("name") if product else None
            items.append(item)
        order["items"] = items
        orders.append(order)
    return orders
