from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import PyMongoError

import admin
from errors import BulkUpdateError, InvalidInputError, StorefrontError
from schemas import Product


def insert_order(db, user_id, status="pending", total=10.0, when=None):
    return str(db["orders"].insert_one({
        "user_id": user_id,
        "order_date": when or datetime.now(timezone.utc),
        "status": status,
        "total_amount": total,
        "shipping_address": "1 Main St",
    }).inserted_id)


def test_fetch_stats(db, user, admin_user):
    insert_order(db, user["id"])
    insert_order(db, user["id"], status="shipped")

    assert admin.fetch_stats(db) == {"total_orders": 2, "pending_orders": 1, "total_users": 2}


def test_stats_retry_once(db, monkeypatch):
    real = admin.fetch_stats
    attempts = []

    def flaky(database):
        attempts.append(1)
        if len(attempts) == 1:
            raise PyMongoError("connection reset")
        return real(database)

    monkeypatch.setattr(admin, "fetch_stats", flaky)
    sleeps = []

    stats = admin.fetch_stats_with_retry(db, sleep=sleeps.append)

    assert stats["total_orders"] == 0
    assert "last_updated" in stats
    assert sleeps == [0.35]
    assert len(attempts) == 2


def test_stats_gives_up_after_retry(db, monkeypatch):
    def broken(database):
        raise PyMongoError("down")

    monkeypatch.setattr(admin, "fetch_stats", broken)
    sleeps = []

    with pytest.raises(PyMongoError):
        admin.fetch_stats_with_retry(db, sleep=sleeps.append)
    assert sleeps == [0.35]


def test_analytics(db, user):
    today = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)
    insert_order(db, user["id"], total=30.0, when=today)
    insert_order(db, user["id"], status="delivered", total=15.5, when=today - timedelta(days=2))
    insert_order(db, user["id"], status="delivered", total=100.0, when=today - timedelta(days=30))

    stats = admin.analytics(db, today=today)

    assert stats["total_revenue"] == 145.5
    assert stats["total_orders"] == 3
    assert stats["status_counts"] == {"pending": 1, "delivered": 2}
    days = stats["last_7_days"]
    assert [d["date"] for d in days][0] == "2024-05-04"
    assert days[-1] == {"date": "2024-05-10", "orders": 1, "revenue": 30.0}
    assert days[-3] == {"date": "2024-05-08", "orders": 1, "revenue": 15.5}


def test_save_order_changes_normalizes_status(db, user):
    oid = insert_order(db, user["id"], status="cancelled")

    assert admin.save_order_changes(db, {oid: {"status": "  Delivered "}}) == 1

    assert admin.list_orders(db)[0]["status"] == "delivered"


def test_save_order_changes_stops_at_first_failure(db, user):
    first = insert_order(db, user["id"])
    second = insert_order(db, user["id"])
    third = insert_order(db, user["id"])

    with pytest.raises(BulkUpdateError) as exc:
        admin.save_order_changes(db, {
            first: {"status": "shipped"},
            second: {"status": "lost"},
            third: {"status": "shipped"},
        })

    assert exc.value.updated == 1
    assert "Invalid status" in exc.value.message
    statuses = {o["id"]: o["status"] for o in admin.list_orders(db)}
    assert statuses == {first: "shipped", second: "pending", third: "pending"}


def test_list_orders_includes_customer_and_items(db, user, make_product):
    pid = make_product(name="Mint Pod")
    oid = insert_order(db, user["id"])
    db["order_items"].insert_one({"order_id": oid, "product_id": pid, "quantity": 2, "price_at_purchase": 10.0})

    order = admin.list_orders(db)[0]

    assert order["customer"]["email"] == user["email"]
    assert order["items"][0]["product_name"] == "Mint Pod"


def test_save_user_changes(db, user):
    admin.save_user_changes(db, {user["id"]: {"full_name": " Jane Doe ", "role": "admin"}})

    row = admin.list_users(db)[0]
    assert row["full_name"] == "Jane Doe"
    assert row["role"] == "admin"

    with pytest.raises(BulkUpdateError):
        admin.save_user_changes(db, {user["id"]: {"role": "superuser"}})


def test_product_crud(db):
    category_id = str(db["categories"].insert_one({"name": "Pods"}).inserted_id)
    created = admin.create_product(db, Product(name="Mint Pod", price=12.5, stock_quantity=4, category_id=category_id))

    updated = admin.update_product(db, created["id"], {"price": 11.0})
    assert updated["price"] == 11.0
    assert admin.list_products(db)[0]["category_name"] == "Pods"

    admin.delete_product(db, created["id"])
    assert admin.list_products(db) == []
    with pytest.raises(InvalidInputError):
        admin.update_product(db, created["id"], {})


def test_admin_routes_require_admin_role(client, user, admin_user, headers_for):
    assert client.get("/admin/stats").status_code == 401
    assert client.get("/admin/stats", headers=headers_for(user)).status_code == 403

    resp = client.get("/admin/stats", headers=headers_for(admin_user))
    assert resp.status_code == 200
    assert resp.json()["total_users"] == 2


def test_admin_bulk_save_endpoint(client, db, user, admin_user, headers_for):
    oid = insert_order(db, user["id"])

    resp = client.put("/admin/orders", json={"changes": {oid: {"status": "shipped"}}}, headers=headers_for(admin_user))
    assert resp.json() == {"updated": 1}

    resp = client.put("/admin/orders", json={"changes": {oid: {"status": "teleported"}}}, headers=headers_for(admin_user))
    assert resp.status_code == 400
    assert "Invalid status" in resp.json()["error"]


@pytest.mark.parametrize("status", [3, None, ["shipped"]])
def test_non_string_status_is_rejected(db, user, status):
    oid = insert_order(db, user["id"])

    with pytest.raises(BulkUpdateError) as exc:
        admin.save_order_changes(db, {oid: {"status": status}})

    assert exc.value.status_code == 400
    assert exc.value.updated == 0
    assert admin.list_orders(db)[0]["status"] == "pending"


@pytest.mark.parametrize("changes", [
    {"full_name": "   "},
    {"full_name": 42},
    {"role": 3},
])
def test_bad_user_changes_are_rejected(db, user, changes):
    with pytest.raises(BulkUpdateError) as exc:
        admin.save_user_changes(db, {user["id"]: changes})

    assert exc.value.status_code == 400
    assert admin.list_users(db)[0]["full_name"] == user["full_name"]


def test_admin_bulk_save_endpoint_rejects_non_string_status(client, db, user, admin_user, headers_for):
    oid = insert_order(db, user["id"])

    resp = client.put("/admin/orders", json={"changes": {oid: {"status": 3}}}, headers=headers_for(admin_user))

    assert resp.status_code == 400
    assert "Invalid status" in resp.json()["error"]


def test_product_write_failure_is_reported(db, make_product, fail_db_call):
    pid = make_product()
    fail_db_call("update_one", "products")

    with pytest.raises(StorefrontError) as exc:
        admin.update_product(db, pid, {"price": 1.0})

    assert exc.value.status_code == 500
    assert exc.value.message == "Failed to update product"
