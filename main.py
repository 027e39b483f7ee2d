import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import admin
import cart as cart_controller
import catalog
import checkout as checkout_workflow
import database
import wishlist as wishlist_controller
from assistant import ProductAssistant, build_assistant
from auth import (
    bearer_token,
    get_current_user,
    require_admin,
    sign_in_with_password,
    sign_out,
    sign_up,
    update_user,
)
from database import get_db
from errors import InvalidInputError, StorefrontError
from schemas import Product as ProductSchema

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request, exc: RequestValidationError):
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first["loc"] if part != "body")
    message = f"{field}: {first['msg']}" if field else first["msg"]
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(PyMongoError)
async def database_error_handler(request, exc: PyMongoError):
    logger.error("%s %s hit a database error: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Database error, please try again"})


def get_assistant(db: Database = Depends(get_db)) -> ProductAssistant:
    return build_assistant(db)


# Request models
class SignupInput(BaseModel):
    full_name: str
    email: EmailStr
    password: str
    confirm_password: str


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class AccountUpdate(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    place_formatted_address: Optional[str] = Field(None, description="formatted_address of the selected autocomplete place")
    password: Optional[str] = None


class ProductRef(BaseModel):
    product_id: str


class QuantityChange(BaseModel):
    delta: int


class ReviewInput(BaseModel):
    rating: int = Field(5, ge=1, le=5)
    review_text: str


class ChatMessage(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    messages: List[ChatMessage]


class ProductUpdate(BaseModel):
    category_id: Optional[str] = None
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    image_url: Optional[str] = None
    features: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    stock_quantity: Optional[int] = Field(None, ge=0)


class StagedEdits(BaseModel):
    changes: Dict[str, Dict[str, Any]] = Field(..., description="{row_id: {field: value}}")


# Routes
@app.get("/")
def read_root():
    return {"message": "Storefront API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_url"] = "✅ Set"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
@app.post("/auth/signup")
def register(payload: SignupInput, db: Database = Depends(get_db)):
    return sign_up(db, payload.full_name, payload.email, payload.password, payload.confirm_password)


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginInput, db: Database = Depends(get_db)):
    return sign_in_with_password(db, payload.email, payload.password)


@app.post("/auth/logout")
def logout(token: str = Depends(bearer_token), db: Database = Depends(get_db)):
    sign_out(db, token)
    return {"ok": True}


@app.get("/auth/me")
def me(current_user: dict = Depends(get_current_user)):
    return current_user


@app.put("/account")
def update_account(payload: AccountUpdate, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return update_user(db, current_user["id"], **payload.model_dump())


# Products
@app.get("/api/getProducts")
def get_products(db: Database = Depends(get_db)):
    return catalog.list_products(db)


@app.get("/api/getProductByName")
def get_product_by_name(name: Optional[str] = None, db: Database = Depends(get_db)):
    if not name:
        raise InvalidInputError("Missing product name")
    return catalog.get_product_by_name(db, name)


@app.get("/api/getProductsByBrand")
def get_products_by_brand(brand: Optional[str] = None, db: Database = Depends(get_db)):
    if not brand:
        raise InvalidInputError("Missing brand")
    return catalog.get_products_by_brand(db, brand)


@app.get("/products/search")
def search_products(
    q: Optional[str] = None,
    brand: Optional[str] = None,
    category_id: Optional[str] = None,
    sort: Optional[str] = Query(None, description="price_asc | price_desc | name_asc | name_desc"),
    db: Database = Depends(get_db),
):
    return catalog.filter_products(catalog.list_products(db), q, brand, category_id, sort)


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.get("/categories")
def list_categories(db: Database = Depends(get_db)):
    return catalog.list_categories(db)


@app.get("/categories/{category_id}/products")
def list_category_products(category_id: str, db: Database = Depends(get_db)):
    return catalog.get_products_by_category(db, category_id)


@app.get("/brands")
def list_brands(db: Database = Depends(get_db)):
    return catalog.list_brands(catalog.list_products(db))


# Reviews
@app.get("/products/{product_id}/reviews")
def list_reviews(product_id: str, db: Database = Depends(get_db)):
    return catalog.list_reviews(db, product_id)


@app.post("/products/{product_id}/reviews")
def add_review(product_id: str, payload: ReviewInput, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return catalog.add_review(db, current_user["id"], product_id, payload.rating, payload.review_text)


# Cart
@app.get("/cart")
def get_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    items = cart_controller.get_cart_items(db, current_user["id"])
    return {
        "cart_id": cart_controller.find_cart_id(db, current_user["id"]),
        "items": items,
        "total": cart_controller.calculate_total(items),
    }


@app.post("/cart/items")
def add_to_cart(payload: ProductRef, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart_controller.add_to_cart(db, current_user["id"], payload.product_id)


@app.patch("/cart/items/{item_id}")
def update_cart_item(item_id: str, payload: QuantityChange, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    item = cart_controller.update_quantity(db, current_user["id"], item_id, payload.delta)
    return {"item": item, "removed": item is None}


@app.delete("/cart/items/{item_id}")
def delete_cart_item(item_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart_controller.delete_item(db, current_user["id"], item_id)
    return {"ok": True}


# Checkout & orders
@app.post("/checkout")
def place_order(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return checkout_workflow.place_order(db, current_user)


@app.get("/orders")
def order_history(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return checkout_workflow.order_history(db, current_user["id"])


# Wishlist
@app.get("/wishlist")
def get_wishlist(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"items": wishlist_controller.get_wishlist_items(db, current_user["id"])}


@app.post("/wishlist/toggle")
def toggle_wishlist(payload: ProductRef, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"wishlisted": wishlist_controller.toggle_wishlist(db, current_user["id"], payload.product_id)}


@app.post("/wishlist/items")
def add_to_wishlist(payload: ProductRef, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    wishlist_controller.add_to_wishlist(db, current_user["id"], payload.product_id)
    return {"ok": True}


@app.delete("/wishlist/items/{item_id}")
def delete_wishlist_item(item_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    wishlist_controller.delete_item(db, current_user["id"], item_id)
    return {"ok": True}


# Chat
@app.post("/api/chat")
def chat(req: ChatRequest, assistant: ProductAssistant = Depends(get_assistant)):
    return assistant.reply([m.model_dump() for m in req.messages])


# Admin
@app.get("/admin/stats")
def admin_stats(_: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return admin.fetch_stats_with_retry(db)


@app.get("/admin/analytics")
def admin_analytics(_: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return admin.analytics(db)


@app.get("/admin/orders")
def admin_list_orders(_: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return admin.list_orders(db)


@app.put("/admin/orders")
def admin_save_orders(payload: StagedEdits, _: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return {"updated": admin.save_order_changes(db, payload.changes)}


@app.get("/admin/users")
def admin_list_users(_: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return admin.list_users(db)


@app.put("/admin/users")
def admin_save_users(payload: StagedEdits, _: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return {"updated": admin.save_user_changes(db, payload.changes)}


@app.get("/admin/products")
def admin_list_products(_: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return admin.list_products(db)


@app.post("/admin/products")
def admin_create_product(data: ProductSchema, _: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return admin.create_product(db, data)


@app.put("/admin/products/{product_id}")
def admin_update_product(product_id: str, data: ProductUpdate, _: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return admin.update_product(db, product_id, data.model_dump(exclude_unset=True))


@app.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: str, _: dict = Depends(require_admin), db: Database = Depends(get_db)):
    admin.delete_product(db, product_id)
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
