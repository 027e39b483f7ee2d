"""
Database Schemas

Each Pydantic model describes one MongoDB collection of the storefront.
The collection name is noted in the model docstring. Foreign keys are stored
as string ids.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    user = "user"
    admin = "admin"


class OrderStatus(str, Enum):
    pending = "pending"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    model_config = ConfigDict(use_enum_values=True)

    full_name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt hashed password")
    phone_number: Optional[str] = None
    address: Optional[str] = Field(None, description="Shipping address")
    role: Role = Field("user", description="Role: user | admin")


class Category(BaseModel):
    """Collection name: "categories" """
    name: str
    description: Optional[str] = None


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    category_id: Optional[str] = None
    name: str
    brand: Optional[str] = None
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    stock_quantity: int = Field(0, ge=0, description="Units available")


class Cart(BaseModel):
    """Collection name: "carts", one per user"""
    user_id: str


class CartItem(BaseModel):
    """Collection name: "cart_items" """
    cart_id: str
    product_id: str
    quantity: int = Field(1, ge=1)


class Wishlist(BaseModel):
    """Collection name: "wishlists" """
    user_id: str
    name: str = "My Wishlist"


class WishlistItem(BaseModel):
    """Collection name: "wishlist_items" """
    wishlist_id: str
    product_id: str


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    order_date: datetime
    status: OrderStatus = "pending"
    total_amount: float
    shipping_address: Optional[str] = None


class OrderItem(BaseModel):
    """
    Collection name: "order_items"

    price_at_purchase is copied from the product when the order is placed.
    """
    order_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    price_at_purchase: float


class Review(BaseModel):
    """Collection name: "product_reviews" """
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    review_text: str


class ProductVector(BaseModel):
    """Collection name: "product_vectors" """
    product_id: str
    embedding: List[float]
