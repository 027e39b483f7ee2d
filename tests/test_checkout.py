import pytest
from pymongo.errors import PyMongoError

import cart
import checkout
from database import to_object_id
from errors import EmptyCartError, InsufficientStockError, OrderCreationError, OrderItemsError


def stock_of(db, pid):
    return db["products"].find_one({"_id": to_object_id(pid)})["stock_quantity"]


@pytest.fixture
def filled_cart(db, user, make_product):
    a = make_product(name="A", price=10.0, stock=3)
    b = make_product(name="B", price=25.0, stock=1)
    cart.add_to_cart(db, user["id"], a)
    cart.add_to_cart(db, user["id"], a)
    cart.add_to_cart(db, user["id"], b)
    return a, b


def test_place_order_scenario(db, user, filled_cart):
    a, b = filled_cart
    assert cart.calculate_total(cart.get_cart_items(db, user["id"])) == 45.0

    order = checkout.place_order(db, user)

    assert order["status"] == "pending"
    assert order["total_amount"] == 45.0
    assert order["shipping_address"] == user["address"]
    assert len(order["items"]) == 2
    assert stock_of(db, a) == 1
    assert stock_of(db, b) == 0
    assert db["orders"].count_documents({}) == 1
    assert db["order_items"].count_documents({"order_id": order["id"]}) == 2
    assert cart.get_cart_items(db, user["id"]) == []


def test_order_total_matches_items(db, user, filled_cart):
    order = checkout.place_order(db, user)

    items = list(db["order_items"].find({"order_id": order["id"]}))
    assert order["total_amount"] == round(sum(i["quantity"] * i["price_at_purchase"] for i in items), 2)


def test_price_at_purchase_survives_price_change(db, user, filled_cart):
    a, _ = filled_cart
    order = checkout.place_order(db, user)
    db["products"].update_one({"_id": to_object_id(a)}, {"$set": {"price": 99.0}})

    history = checkout.order_history(db, user["id"])

    line = next(i for i in history[0]["items"] if i["product_id"] == a)
    assert line["price_at_purchase"] == 10.0
    assert line["product_name"] == "A"
    assert history[0]["id"] == order["id"]


def test_empty_cart_is_rejected(db, user):
    with pytest.raises(EmptyCartError):
        checkout.place_order(db, user)
    assert db["orders"].count_documents({}) == 0


def test_second_checkout_of_same_cart_is_rejected(db, user, filled_cart):
    checkout.place_order(db, user)
    with pytest.raises(EmptyCartError):
        checkout.place_order(db, user)
    assert db["orders"].count_documents({}) == 1


def test_lines_over_stock_are_rejected_before_writing(db, user, filled_cart):
    _, b = filled_cart
    db["products"].update_one({"_id": to_object_id(b)}, {"$set": {"stock_quantity": 0}})

    with pytest.raises(InsufficientStockError):
        checkout.place_order(db, user)

    assert db["orders"].count_documents({}) == 0
    assert len(cart.get_cart_items(db, user["id"])) == 2


def test_failed_stock_decrement_rolls_back(db, user, filled_cart, monkeypatch):
    a, b = filled_cart
    # stock taken by someone else between the availability check and the decrement
    monkeypatch.setattr(checkout, "check_availability", lambda lines: None)
    db["products"].update_one({"_id": to_object_id(b)}, {"$set": {"stock_quantity": 0}})

    with pytest.raises(InsufficientStockError):
        checkout.place_order(db, user)

    assert stock_of(db, a) == 3
    assert stock_of(db, b) == 0
    assert db["orders"].count_documents({}) == 0
    assert db["order_items"].count_documents({}) == 0
    assert len(cart.get_cart_items(db, user["id"])) == 2


def test_decrement_stock_never_goes_negative(db, make_product):
    pid = make_product(stock=2)

    checkout.decrement_stock(db, pid, 2)
    with pytest.raises(InsufficientStockError):
        checkout.decrement_stock(db, pid, 1)

    assert stock_of(db, pid) == 0


def assert_nothing_changed(db, user, a, b):
    assert stock_of(db, a) == 3
    assert stock_of(db, b) == 1
    assert db["orders"].count_documents({}) == 0
    assert db["order_items"].count_documents({}) == 0
    assert len(cart.get_cart_items(db, user["id"])) == 2


def test_failed_cart_clear_rolls_back(db, user, filled_cart, monkeypatch):
    a, b = filled_cart

    def broken_clear(database, cart_id):
        raise PyMongoError("network down")

    monkeypatch.setattr(checkout, "clear_cart", broken_clear)

    with pytest.raises(OrderCreationError):
        checkout.place_order(db, user)

    assert_nothing_changed(db, user, a, b)


def test_failed_order_items_insert_rolls_back(db, user, filled_cart, fail_db_call):
    a, b = filled_cart
    fail_db_call("insert_many", "order_items")

    with pytest.raises(OrderItemsError):
        checkout.place_order(db, user)

    assert_nothing_changed(db, user, a, b)


class FailFirstUpdate:
    def __init__(self, collection):
        self.collection = collection
        self.failed = False

    def update_one(self, *args, **kwargs):
        if not self.failed:
            self.failed = True
            raise PyMongoError("write failed")
        return self.collection.update_one(*args, **kwargs)


def test_compensation_continues_after_failed_restore(db, user, make_product):
    a = make_product(name="A", stock=2)
    b = make_product(name="B", stock=4)
    order_id = db["orders"].insert_one({"user_id": user["id"], "status": "pending"}).inserted_id
    db["order_items"].insert_one({"order_id": str(order_id), "product_id": a, "quantity": 1})
    reserved = [{"product_id": a, "quantity": 1}, {"product_id": b, "quantity": 2}]
    tables = {"products": FailFirstUpdate(db["products"]), "order_items": db["order_items"], "orders": db["orders"]}

    checkout._compensate(tables, order_id, reserved)

    assert stock_of(db, a) == 2
    assert stock_of(db, b) == 6
    assert db["orders"].count_documents({}) == 0
    assert db["order_items"].count_documents({}) == 0
